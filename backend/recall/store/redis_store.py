"""
Redis-backed document store.

Layout per collection:
- ``<prefix><collection>:<id>``  JSON document
- ``<prefix><collection>:__ids__``  set of document ids (query index)

Queries load the collection's documents and filter in process, which is
adequate for per-user memory sets bounded in the low thousands. Merge
writes use WATCH/MULTI so a concurrent writer to the same document forces
a retry instead of a lost update.
"""

import json
from typing import Any, Awaitable, Dict, List, Optional, Sequence, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from recall.core.errors import StoreUnavailable
from recall.core.logging import get_logger
from recall.store.base import Document, DocumentStore, FieldFilter, OrderBy, apply_query
from recall.store.circuit_breaker import CircuitBreaker, CircuitBreakerConfig

logger = get_logger(__name__)

T = TypeVar("T")

MGET_BATCH_SIZE = 200
MAX_WATCH_RETRIES = 10


class RedisDocumentStore(DocumentStore):
    """Document store with circuit breaker over a Redis connection."""

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "recall:",
        breaker_config: Optional[CircuitBreakerConfig] = None,
    ) -> None:
        self._redis = client
        self.key_prefix = key_prefix
        self.circuit_breaker = CircuitBreaker("redis", breaker_config)

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "recall:", socket_timeout: float = 5.0) -> "RedisDocumentStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=socket_timeout,
            socket_timeout=socket_timeout,
        )
        logger.info(f"Redis document store configured: {url}")
        return cls(client, key_prefix=key_prefix)

    def _doc_key(self, collection: str, doc_id: str) -> str:
        return f"{self.key_prefix}{collection}:{doc_id}"

    def _index_key(self, collection: str) -> str:
        return f"{self.key_prefix}{collection}:__ids__"

    async def _guard(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Run a Redis call under the circuit breaker."""
        if not self.circuit_breaker.allow_request():
            # Close the coroutine we will not await
            close = getattr(awaitable, "close", None)
            if close:
                close()
            retry_in = self.circuit_breaker.seconds_until_retry()
            raise StoreUnavailable(f"{operation} rejected: circuit open, retry in {retry_in:.1f}s")
        try:
            result = await awaitable
        except RedisError as e:
            self.circuit_breaker.record_failure()
            logger.warning(f"Redis {operation} failed: {e}")
            raise StoreUnavailable(f"{operation} failed: {e}") from e
        self.circuit_breaker.record_success()
        return result

    async def ping(self) -> bool:
        try:
            return bool(await self._guard("ping", self._redis.ping()))
        except StoreUnavailable:
            return False

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raw = await self._guard("get", self._redis.get(self._doc_key(collection, doc_id)))
        return json.loads(raw) if raw else None

    async def _load_collection(self, collection: str) -> List[Document]:
        ids = sorted(await self._redis.smembers(self._index_key(collection)))
        documents: List[Document] = []
        for start in range(0, len(ids), MGET_BATCH_SIZE):
            batch = ids[start:start + MGET_BATCH_SIZE]
            raws = await self._redis.mget([self._doc_key(collection, i) for i in batch])
            for doc_id, raw in zip(batch, raws):
                if raw:
                    documents.append(Document(id=doc_id, data=json.loads(raw)))
        return documents

    async def query(
        self,
        collection: str,
        filters: Optional[Sequence[FieldFilter]] = None,
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        documents = await self._guard("query", self._load_collection(collection))
        return apply_query(documents, filters=filters, order_by=order_by, limit=limit)

    async def _set(self, collection: str, doc_id: str, fields: Dict[str, Any], merge: bool) -> None:
        key = self._doc_key(collection, doc_id)
        index_key = self._index_key(collection)

        if not merge:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(key, json.dumps(fields))
                pipe.sadd(index_key, doc_id)
                await pipe.execute()
            return

        async with self._redis.pipeline(transaction=True) as pipe:
            for _ in range(MAX_WATCH_RETRIES):
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    current = json.loads(raw) if raw else {}
                    current.update(fields)
                    pipe.multi()
                    pipe.set(key, json.dumps(current))
                    pipe.sadd(index_key, doc_id)
                    await pipe.execute()
                    return
                except WatchError:
                    logger.debug(f"Concurrent write on {key}, retrying merge")
                    continue
        raise StoreUnavailable(f"merge on {key} did not converge after {MAX_WATCH_RETRIES} retries")

    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        merge: bool = False,
    ) -> None:
        await self._guard("set", self._set(collection, doc_id, fields, merge))

    async def _delete(self, collection: str, doc_id: str) -> bool:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._doc_key(collection, doc_id))
            pipe.srem(self._index_key(collection), doc_id)
            deleted, _ = await pipe.execute()
        return bool(deleted)

    async def delete(self, collection: str, doc_id: str) -> bool:
        return await self._guard("delete", self._delete(collection, doc_id))

    async def close(self) -> None:
        await self._redis.aclose()
