"""Per-conversation serialization with a global concurrency cap."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from remote_agent.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: defaultdict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class ConversationLockManager:
    """Runs at most one handler per conversation and *max_concurrent* overall.

    Messages for a busy conversation wait their turn in arrival order.
    """

    def __init__(self, max_concurrent: int = 10):
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._locks = KeyedLocks()
        self._active = 0

    async def run(self, conversation_key: str, handler: Callable[[], Awaitable[T]]) -> T:
        async with self._locks.hold(conversation_key):
            if self._semaphore.locked():
                logger.info(
                    "conversation_queued",
                    conversation=conversation_key,
                    max_concurrent=self._max_concurrent,
                )
            async with self._semaphore:
                self._active += 1
                try:
                    return await handler()
                finally:
                    self._active -= 1

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def tracked_conversations(self) -> int:
        return len(self._locks)
