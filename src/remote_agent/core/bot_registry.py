"""Registry of running messenger adapters, keyed by bot id."""

from __future__ import annotations

from typing import TYPE_CHECKING

from remote_agent.log import get_logger

if TYPE_CHECKING:
    from remote_agent.messenger.base import MessengerAdapter

logger = get_logger(__name__)


class BotRegistry:
    """Tracks started adapters so they can be stopped together."""

    def __init__(self) -> None:
        self._adapters: dict[str, MessengerAdapter] = {}

    def register(self, adapter: MessengerAdapter) -> None:
        if adapter.bot_id in self._adapters:
            raise ValueError(f"Duplicate bot id: {adapter.bot_id}")
        self._adapters[adapter.bot_id] = adapter

    def get(self, bot_id: str) -> MessengerAdapter | None:
        return self._adapters.get(bot_id)

    def by_platform(self, platform_type: str) -> list[MessengerAdapter]:
        return [a for a in self._adapters.values() if a.platform_type == platform_type]

    def __len__(self) -> int:
        return len(self._adapters)

    async def stop_all(self) -> None:
        """Stop every adapter; one failing adapter does not keep the others running."""
        for bot_id, adapter in list(self._adapters.items()):
            try:
                await adapter.stop()
            except Exception as e:
                logger.error("bot_stop_error", bot_id=bot_id, error=str(e))
        self._adapters.clear()
