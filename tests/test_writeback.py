"""
Tests for post-response writeback.

Tests cover:
- Turn persistence into the short-term and semantic tiers
- Failure isolation
- Queue capacity, draining and correlation ID propagation
"""

from typing import List, Optional
from unittest.mock import AsyncMock

import pytest

from recall.core.errors import StoreUnavailable
from recall.core.logging import get_correlation_id, set_correlation_id
from recall.memory.writeback import WritebackQueue


class RecordingWriteback:
    """Stand-in for MemoryWriteback that remembers what it was asked to write."""

    def __init__(self) -> None:
        self.turns: List[tuple] = []
        self.correlation_ids: List[Optional[str]] = []

    async def record(self, user_id, conversation_id, user_prompt, assistant_response) -> None:
        self.turns.append((user_id, conversation_id, user_prompt, assistant_response))
        self.correlation_ids.append(get_correlation_id())


class TestMemoryWriteback:
    """Tests for MemoryWriteback.record."""

    @pytest.mark.asyncio
    async def test_salient_turn_creates_memory(self, writeback, short_term, semantic):
        await writeback.record("u1", "c1", "My name is Alex and I like blue", "Nice to meet you, Alex!")

        entries = await short_term.get("u1", "c1")
        assert [(e.role, e.content) for e in entries] == [
            ("user", "My name is Alex and I like blue"),
            ("assistant", "Nice to meet you, Alex!"),
        ]

        memories = await semantic.list_for_user("u1")
        assert len(memories) == 1
        memory = memories[0]
        assert memory.content == "I like blue"
        assert memory.category == "preference"
        assert memory.importance == pytest.approx(0.8)
        assert memory.confidence == pytest.approx(0.9)
        assert memory.keywords == ["name", "alex", "blue"]

    @pytest.mark.asyncio
    async def test_plain_turn_only_goes_to_short_term(self, writeback, short_term, semantic):
        await writeback.record("u1", "c1", "What's the weather like tomorrow?", "Sunny.")

        assert len(await short_term.get("u1", "c1")) == 2
        assert await semantic.list_for_user("u1") == []

    @pytest.mark.asyncio
    async def test_disabled_tiers_are_skipped(self, writeback, settings_store, short_term, semantic):
        await settings_store.update("u1", short_term_memory_enabled=False, semantic_memory_enabled=False)

        await writeback.record("u1", "c1", "My name is Alex and I like blue", "Hi Alex")

        assert await short_term.get("u1", "c1") == []
        assert await semantic.list_for_user("u1") == []

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self, writeback):
        writeback.short_term.append = AsyncMock(side_effect=RuntimeError("boom"))

        await writeback.record("u1", "c1", "My name is Alex", "Hi")

    @pytest.mark.asyncio
    async def test_short_term_outage_still_creates_semantic_memory(self, writeback, semantic):
        writeback.short_term.append = AsyncMock(side_effect=StoreUnavailable("window store down"))

        await writeback.record("u1", "c1", "My name is Alex and I like blue", "Hi Alex")

        assert [m.content for m in await semantic.list_for_user("u1")] == ["I like blue"]

    @pytest.mark.asyncio
    async def test_semantic_failure_still_keeps_short_term(self, writeback, short_term):
        writeback.semantic.create = AsyncMock(side_effect=RuntimeError("boom"))

        await writeback.record("u1", "c1", "My name is Alex and I like blue", "Hi Alex")

        assert len(await short_term.get("u1", "c1")) == 2

    @pytest.mark.asyncio
    async def test_embedding_outage_still_keeps_short_term(self, writeback, short_term, semantic, embedder):
        embedder.fail = True

        await writeback.record("u1", "c1", "My name is Alex and I like blue", "Hi Alex")

        assert len(await short_term.get("u1", "c1")) == 2
        assert await semantic.list_for_user("u1") == []


class TestWritebackQueue:
    """Tests for WritebackQueue."""

    @pytest.mark.asyncio
    async def test_full_queue_drops(self):
        queue = WritebackQueue(RecordingWriteback(), maxsize=1, workers=1)

        assert queue.submit("u1", "c1", "first", "a") is True
        assert queue.submit("u1", "c1", "second", "b") is False
        assert queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_workers_process_jobs(self):
        writeback = RecordingWriteback()
        queue = WritebackQueue(writeback, maxsize=10, workers=2)
        queue.start()
        try:
            for i in range(5):
                assert queue.submit("u1", "c1", f"prompt {i}", f"answer {i}")
            await queue.join()
        finally:
            await queue.stop()

        assert sorted(t[2] for t in writeback.turns) == [f"prompt {i}" for i in range(5)]
        assert not queue.running

    @pytest.mark.asyncio
    async def test_stop_drains_pending_jobs(self):
        writeback = RecordingWriteback()
        queue = WritebackQueue(writeback, maxsize=10, workers=1)
        queue.submit("u1", "c1", "queued before start", "a")
        queue.start()

        await queue.stop(drain=True)

        assert [t[2] for t in writeback.turns] == ["queued before start"]

    @pytest.mark.asyncio
    async def test_correlation_id_follows_the_job(self):
        writeback = RecordingWriteback()
        queue = WritebackQueue(writeback, maxsize=10, workers=1)
        queue.start()
        try:
            set_correlation_id("req-123")
            queue.submit("u1", "c1", "prompt", "answer")
            set_correlation_id(None)
            await queue.join()
        finally:
            await queue.stop()

        assert writeback.correlation_ids == ["req-123"]

    @pytest.mark.asyncio
    async def test_end_to_end_with_real_writeback(self, writeback_queue, short_term):
        writeback_queue.start()
        try:
            writeback_queue.submit("u1", "c1", "I prefer tea over coffee", "Noted")
            await writeback_queue.join()
        finally:
            await writeback_queue.stop()

        assert len(await short_term.get("u1", "c1")) == 2
