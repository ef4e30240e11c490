"""Console adapter: prints replies to stdout. Used by ``remote-agent send``."""

from __future__ import annotations

import sys
from typing import TextIO

from remote_agent.core.types import Platform
from remote_agent.messenger.base import MessengerAdapter


class ConsoleAdapter(MessengerAdapter):
    def __init__(self, streaming_mode: str = "stream", stream: TextIO | None = None):
        super().__init__("console", {"streaming_mode": streaming_mode})
        self._out = stream or sys.stdout
        self.sent: list[tuple[str, str]] = []

    @property
    def platform_type(self) -> str:
        return Platform.CLI

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def send_message(self, conversation_id: str, text: str) -> None:
        self.sent.append((conversation_id, text))
        print(text, file=self._out)
        print(file=self._out)
        self._out.flush()
