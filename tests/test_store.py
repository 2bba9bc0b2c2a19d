"""
Tests for the document store layer.

Tests cover:
- In-memory store reads, writes, merges and queries
- Timeout decoration
- Redis store failure handling and circuit breaker
- Backend factory
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from recall.config import Settings, StoreSettings
from recall.core.errors import StoreUnavailable
from recall.store.base import FieldFilter, TimeoutDocumentStore, where
from recall.store.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from recall.store.factory import create_document_store
from recall.store.memory_store import InMemoryDocumentStore
from recall.store.redis_store import RedisDocumentStore


class TestInMemoryDocumentStore:
    """Tests for InMemoryDocumentStore."""

    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        store = InMemoryDocumentStore()
        await store.set("notes", "n1", {"user_id": "u1", "text": "hello"})

        assert await store.get("notes", "n1") == {"user_id": "u1", "text": "hello"}
        assert await store.delete("notes", "n1") is True
        assert await store.delete("notes", "n1") is False
        assert await store.get("notes", "n1") is None

    @pytest.mark.asyncio
    async def test_merge_keeps_other_fields(self):
        store = InMemoryDocumentStore()
        await store.set("notes", "n1", {"a": 1, "b": 2})
        await store.set("notes", "n1", {"b": 3}, merge=True)

        assert await store.get("notes", "n1") == {"a": 1, "b": 3}

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self):
        store = InMemoryDocumentStore()
        await store.set("notes", "n1", {"tags": ["x"]})

        data = await store.get("notes", "n1")
        data["tags"].append("y")

        assert await store.get("notes", "n1") == {"tags": ["x"]}

    @pytest.mark.asyncio
    async def test_query_filters_orders_and_limits(self):
        store = InMemoryDocumentStore()
        await store.set("m", "1", {"user_id": "u1", "importance": 0.2, "seen": "2024-01-03T00:00:00+00:00"})
        await store.set("m", "2", {"user_id": "u1", "importance": 0.9, "seen": "2024-01-01T00:00:00+00:00"})
        await store.set("m", "3", {"user_id": "u1", "importance": 0.2, "seen": "2024-01-02T00:00:00+00:00"})
        await store.set("m", "4", {"user_id": "u2", "importance": 1.0, "seen": "2024-01-01T00:00:00+00:00"})

        docs = await store.query(
            "m",
            filters=[where("user_id", "==", "u1")],
            order_by=[("importance", "asc"), ("seen", "asc")],
        )
        assert [d.id for d in docs] == ["3", "1", "2"]

        top = await store.query("m", filters=[where("importance", ">=", 0.9)], order_by=[("importance", "desc")], limit=1)
        assert [d.id for d in top] == ["4"]

    @pytest.mark.asyncio
    async def test_datetime_strings_compare_chronologically(self):
        store = InMemoryDocumentStore()
        await store.set("m", "a", {"at": "2024-01-01T10:00:00.500000+00:00"})
        await store.set("m", "b", {"at": "2024-01-01T10:00:00+00:00"})

        docs = await store.query("m", order_by=[("at", "asc")])
        assert [d.id for d in docs] == ["b", "a"]

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValueError):
            FieldFilter("a", "~=", 1)


class TestTimeoutDocumentStore:
    """Tests for the timeout decorator."""

    @pytest.mark.asyncio
    async def test_slow_call_becomes_store_unavailable(self):
        inner = InMemoryDocumentStore()

        async def slow_get(collection, doc_id):
            await asyncio.sleep(1)

        inner.get = slow_get
        store = TimeoutDocumentStore(inner, timeout=0.01)

        with pytest.raises(StoreUnavailable):
            await store.get("notes", "n1")

    @pytest.mark.asyncio
    async def test_connection_error_becomes_store_unavailable(self):
        inner = InMemoryDocumentStore()
        inner.query = AsyncMock(side_effect=ConnectionRefusedError("refused"))
        store = TimeoutDocumentStore(inner, timeout=1.0)

        with pytest.raises(StoreUnavailable):
            await store.query("notes")

    @pytest.mark.asyncio
    async def test_passes_through_results(self):
        store = TimeoutDocumentStore(InMemoryDocumentStore(), timeout=1.0)
        await store.set("notes", "n1", {"x": 1})
        assert await store.get("notes", "n1") == {"x": 1}


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=2, recovery_timeout=60))
        breaker.record_failure()
        assert breaker.allow_request() is True
        breaker.record_failure()
        assert breaker.get_state() == CircuitState.OPEN
        assert breaker.allow_request() is False

    def test_half_open_then_closes(self):
        breaker = CircuitBreaker(
            "test", CircuitBreakerConfig(failure_threshold=1, recovery_timeout=0, half_open_max_calls=2)
        )
        breaker.record_failure()
        assert breaker.get_state() == CircuitState.HALF_OPEN

        breaker.record_success()
        breaker.record_success()
        assert breaker.get_state() == CircuitState.CLOSED

    def test_failure_in_half_open_reopens(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1, recovery_timeout=0))
        breaker.record_failure()
        assert breaker.get_state() == CircuitState.HALF_OPEN
        breaker.config.recovery_timeout = 60
        breaker.record_failure()
        assert breaker.get_state() == CircuitState.OPEN

    def test_success_pays_back_one_failure(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=2, recovery_timeout=60))
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.get_state() == CircuitState.CLOSED

    def test_seconds_until_retry(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1, recovery_timeout=60))
        assert breaker.seconds_until_retry() == 0.0

        breaker.record_failure()
        assert 59.0 < breaker.seconds_until_retry() <= 60.0


class TestRedisDocumentStore:
    """Failure handling of RedisDocumentStore against a mocked client."""

    @pytest.mark.asyncio
    async def test_get_decodes_json(self):
        client = AsyncMock()
        client.get.return_value = '{"user_id": "u1"}'
        store = RedisDocumentStore(client, key_prefix="t:")

        assert await store.get("notes", "n1") == {"user_id": "u1"}
        client.get.assert_awaited_once_with("t:notes:n1")

    @pytest.mark.asyncio
    async def test_redis_error_raises_store_unavailable(self):
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("down")
        store = RedisDocumentStore(client)

        with pytest.raises(StoreUnavailable):
            await store.get("notes", "n1")

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calling_redis(self):
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("down")
        store = RedisDocumentStore(client, breaker_config=CircuitBreakerConfig(failure_threshold=2, recovery_timeout=60))

        for _ in range(2):
            with pytest.raises(StoreUnavailable):
                await store.get("notes", "n1")
        assert client.get.await_count == 2

        with pytest.raises(StoreUnavailable, match="circuit open, retry in"):
            await store.get("notes", "n1")
        assert client.get.await_count == 2

    @pytest.mark.asyncio
    async def test_ping_reports_failure(self):
        client = AsyncMock()
        client.ping.side_effect = RedisConnectionError("down")
        store = RedisDocumentStore(client)

        assert await store.ping() is False


class TestFactory:
    """Tests for create_document_store."""

    def test_memory_backend_wrapped_with_timeout(self):
        cfg = Settings(store=StoreSettings(backend="memory"))
        store = create_document_store(cfg)

        assert isinstance(store, TimeoutDocumentStore)
        assert isinstance(store.inner, InMemoryDocumentStore)

    def test_unknown_backend(self):
        cfg = Settings(store=StoreSettings(backend="cassandra"))
        with pytest.raises(ValueError, match="Unknown document store backend"):
            create_document_store(cfg)
