"""Abstract messenger adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from remote_agent.core.types import StreamingMode
from remote_agent.messenger.models import IncomingMessage


def split_message(text: str, limit: int) -> list[str]:
    """Split *text* into chunks of at most *limit* characters.

    Paragraph breaks are preferred, then line breaks; a single line longer
    than *limit* is hard-cut.
    """
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    current = ""
    for paragraph in text.split("\n\n"):
        candidate = f"{current}\n\n{paragraph}" if current else paragraph
        if len(candidate) <= limit:
            current = candidate
            continue
        if current:
            chunks.append(current)
            current = ""
        if len(paragraph) <= limit:
            current = paragraph
            continue
        for line in paragraph.split("\n"):
            candidate = f"{current}\n{line}" if current else line
            if len(candidate) <= limit:
                current = candidate
                continue
            if current:
                chunks.append(current)
            while len(line) > limit:
                chunks.append(line[:limit])
                line = line[limit:]
            current = line
    if current:
        chunks.append(current)
    return chunks


class MessengerAdapter(ABC):
    """Base class for all messenger platform adapters.

    To add a new messenger, subclass this and implement all abstract methods.
    The orchestrator only relies on ``send_message``, ``streaming_mode``,
    ``platform_type`` and ``is_unscoped``.
    """

    def __init__(self, bot_id: str, config: dict):
        self.bot_id = bot_id
        self.config = config
        self._message_callback: Callable[[IncomingMessage], Awaitable[None]] | None = None

    @abstractmethod
    async def start(self) -> None:
        """Connect to the platform and begin receiving messages."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully disconnect."""
        ...

    @abstractmethod
    async def send_message(self, conversation_id: str, text: str) -> None:
        """Send text to a conversation, splitting it to the platform's size limit."""
        ...

    async def send_typing_indicator(self, conversation_id: str) -> None:
        """Show typing/processing indicator. No-op unless the platform supports it."""

    async def create_topic(self, conversation_id: str, name: str) -> Optional[str]:
        """Open a project thread beside *conversation_id* and return its conversation id.

        Returns None on platforms without threads or when creation fails.
        """
        return None

    def on_message(self, callback: Callable[[IncomingMessage], Awaitable[None]]) -> None:
        """Register the callback invoked for every incoming message."""
        self._message_callback = callback

    @property
    @abstractmethod
    def platform_type(self) -> str:
        """Return platform identifier string."""
        ...

    @property
    def streaming_mode(self) -> StreamingMode:
        return StreamingMode(self.config.get("streaming_mode", StreamingMode.STREAM))

    def is_unscoped(self, conversation_id: str) -> bool:
        """True when *conversation_id* is a general chat with no project context."""
        return False
