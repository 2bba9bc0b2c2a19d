"""Central Dependency Module.

Builds the default object graph for an application process. The core never
reaches for these itself; every component takes its collaborators as
constructor arguments, so tests build their own graph with fakes instead.

Usage:
    from recall.dependencies import init_logging, lifespan

    init_logging()
    async with lifespan() as service:
        result = await service.assemble_context(user_id, conversation_id, prompt)
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator

from recall.config import settings
from recall.core.logging import get_logger, setup_logging
from recall.embeddings import EmbeddingClient, get_embedding_client
from recall.memory.context import ContextAssembler
from recall.memory.episodic import EpisodicMemoryStore
from recall.memory.extraction import RegexExtractionStrategy
from recall.memory.pruner import MemoryPruner, start_pruning_scheduler, stop_pruning_scheduler
from recall.memory.semantic import SemanticMemoryStore
from recall.memory.settings_store import MemorySettingsStore
from recall.memory.short_term import ShortTermMemoryStore
from recall.memory.writeback import MemoryWriteback, WritebackQueue
from recall.services.memory_service import MemoryService
from recall.store.base import DocumentStore
from recall.store.factory import get_document_store

logger = get_logger(__name__)


# ============================================================
# COLLABORATORS
# ============================================================

def get_store() -> DocumentStore:
    """Get the configured document store."""
    return get_document_store()


def get_embedder() -> EmbeddingClient:
    """Get the configured embedding client."""
    return get_embedding_client()


# ============================================================
# MEMORY TIERS
# ============================================================

@lru_cache(maxsize=1)
def get_settings_store() -> MemorySettingsStore:
    return MemorySettingsStore(get_store())


@lru_cache(maxsize=1)
def get_short_term_store() -> ShortTermMemoryStore:
    # Single instance so the per-conversation append locks are shared
    return ShortTermMemoryStore(get_store())


@lru_cache(maxsize=1)
def get_semantic_store() -> SemanticMemoryStore:
    return SemanticMemoryStore(get_store(), get_embedder(), strategy=RegexExtractionStrategy())


@lru_cache(maxsize=1)
def get_episodic_store() -> EpisodicMemoryStore:
    return EpisodicMemoryStore(get_store())


# ============================================================
# SERVICES
# ============================================================

@lru_cache(maxsize=1)
def get_context_assembler() -> ContextAssembler:
    return ContextAssembler(
        get_settings_store(),
        get_short_term_store(),
        get_semantic_store(),
        get_episodic_store(),
    )


@lru_cache(maxsize=1)
def get_writeback_queue() -> WritebackQueue:
    writeback = MemoryWriteback(get_settings_store(), get_short_term_store(), get_semantic_store())
    return WritebackQueue(writeback)


@lru_cache(maxsize=1)
def get_memory_pruner() -> MemoryPruner:
    return MemoryPruner(get_settings_store(), get_short_term_store(), get_semantic_store())


@lru_cache(maxsize=1)
def get_memory_service() -> MemoryService:
    """Get the process-wide MemoryService."""
    return MemoryService(
        settings_store=get_settings_store(),
        short_term=get_short_term_store(),
        semantic=get_semantic_store(),
        episodic=get_episodic_store(),
        assembler=get_context_assembler(),
        writeback_queue=get_writeback_queue(),
    )


# ============================================================
# PROCESS LIFECYCLE
# ============================================================

def init_logging() -> None:
    """Configure logging from settings. Call once at process startup."""
    cfg = settings.logging
    setup_logging(
        log_level=cfg.level,
        log_file=cfg.log_file,
        log_dir=cfg.log_dir,
        max_bytes=cfg.max_bytes,
        backup_count=cfg.backup_count,
        json_format=cfg.json_format,
    )


@asynccontextmanager
async def lifespan() -> AsyncIterator[MemoryService]:
    """
    Run the memory core for the lifetime of an application.

    Starts the writeback workers and, when retention is enabled, the
    pruning scheduler. On exit queued writebacks are drained before the
    embedding client and document store are closed.
    """
    service = get_memory_service()
    service.start()
    if settings.retention.enabled:
        start_pruning_scheduler(get_memory_pruner())

    try:
        yield service
    finally:
        stop_pruning_scheduler()
        await service.stop(drain=True)
        await get_embedder().close()
        await get_store().close()
        logger.info("Memory core stopped")
