"""
Document Store Factory - Backend selection and instantiation.

To add a new backend:

1. Create implementation in recall/store/ (e.g., firestore_store.py)
2. Register a builder in the BACKENDS dict below
3. Set STORE__BACKEND in config/env

Supported backends:
- memory: In-process dictionaries (default, single process only)
- redis: JSON documents in Redis via redis.asyncio
"""

from functools import lru_cache
from typing import Callable, Dict, Optional

from recall.config import Settings, settings as default_settings
from recall.core.logging import get_logger
from recall.store.base import DocumentStore, TimeoutDocumentStore
from recall.store.memory_store import InMemoryDocumentStore
from recall.store.redis_store import RedisDocumentStore

logger = get_logger(__name__)


def _build_memory(cfg: Settings) -> DocumentStore:
    return InMemoryDocumentStore()


def _build_redis(cfg: Settings) -> DocumentStore:
    return RedisDocumentStore.from_url(
        cfg.redis.url,
        key_prefix=cfg.redis.key_prefix,
        socket_timeout=cfg.redis.socket_timeout,
    )


# Registry of available backends
BACKENDS: Dict[str, Callable[[Settings], DocumentStore]] = {
    "memory": _build_memory,
    "inmemory": _build_memory,  # Alias
    "redis": _build_redis,
}


def create_document_store(cfg: Optional[Settings] = None) -> DocumentStore:
    """
    Build the configured document store, bounded by the store timeout.

    Raises:
        ValueError: If the configured backend is not registered
    """
    cfg = cfg or default_settings
    backend = cfg.store.backend.lower()

    if backend not in BACKENDS:
        available = ", ".join(BACKENDS.keys())
        raise ValueError(
            f"Unknown document store backend: '{backend}'. "
            f"Available backends: {available}"
        )

    store = BACKENDS[backend](cfg)
    logger.info(f"Document store ready: {backend} (timeout {cfg.store.timeout}s)")
    return TimeoutDocumentStore(store, timeout=cfg.store.timeout)


@lru_cache(maxsize=1)
def get_document_store() -> DocumentStore:
    """Get the process-wide document store."""
    return create_document_store()
