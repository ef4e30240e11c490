"""Tests for per-conversation serialization."""

import asyncio

import pytest

from remote_agent.orchestrator.locks import ConversationLockManager, KeyedLocks


class TestConversationLockManager:
    @pytest.mark.asyncio
    async def test_same_conversation_runs_in_arrival_order(self):
        manager = ConversationLockManager(max_concurrent=5)
        order: list[str] = []

        async def handler(name: str, delay: float):
            order.append(f"start-{name}")
            await asyncio.sleep(delay)
            order.append(f"end-{name}")

        await asyncio.gather(
            manager.run("chat-1", lambda: handler("a", 0.05)),
            manager.run("chat-1", lambda: handler("b", 0)),
        )

        assert order == ["start-a", "end-a", "start-b", "end-b"]

    @pytest.mark.asyncio
    async def test_different_conversations_overlap(self):
        manager = ConversationLockManager(max_concurrent=5)
        both_running = asyncio.Event()
        running = 0

        async def handler():
            nonlocal running
            running += 1
            if running == 2:
                both_running.set()
            await asyncio.wait_for(both_running.wait(), timeout=1)
            running -= 1

        await asyncio.gather(manager.run("chat-1", handler), manager.run("chat-2", handler))

        assert both_running.is_set()

    @pytest.mark.asyncio
    async def test_global_cap(self):
        manager = ConversationLockManager(max_concurrent=2)
        peak = 0

        async def handler():
            nonlocal peak
            peak = max(peak, manager.active_count)
            await asyncio.sleep(0.01)

        await asyncio.gather(*(manager.run(f"chat-{i}", handler) for i in range(6)))

        assert peak == 2
        assert manager.active_count == 0
        assert manager.tracked_conversations == 0

    @pytest.mark.asyncio
    async def test_handler_errors_propagate_and_release_lock(self):
        manager = ConversationLockManager()

        async def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await manager.run("chat-1", boom)

        assert await manager.run("chat-1", lambda: asyncio.sleep(0, result="ok")) == "ok"


@pytest.mark.asyncio
async def test_keyed_locks_are_dropped_when_idle():
    locks = KeyedLocks()
    async with locks.hold("a"):
        assert len(locks) == 1
    assert len(locks) == 0
