"""
Memory Service - the interface the chat layer talks to.

Wraps the memory tiers behind one object:
1. Context assembly before every model call
2. Turn writeback after the model answers (queued, off the response path)
3. Search, statistics and settings for the memory management surface
4. Export and confirmed bulk deletion of a user's memories

All collaborators are passed in; recall.dependencies builds the default
wiring for an application.
"""

from typing import Any, List, Optional

from recall.config import MemoryDefaults, settings
from recall.core.errors import DecodeError, EmbeddingUnavailable, InvalidConfirmation, StoreUnavailable
from recall.core.logging import ensure_correlation_id, get_logger, log_tier_degraded
from recall.memory.context import ContextAssembler
from recall.memory.episodic import EpisodicMemoryStore
from recall.memory.semantic import SemanticMemoryStore
from recall.memory.settings_store import MemorySettingsStore
from recall.memory.short_term import ShortTermMemoryStore
from recall.memory.writeback import WritebackQueue
from recall.models.schemas import (
    ClearResult,
    ContextResult,
    ExportSummary,
    ImportancePattern,
    MemoryExport,
    MemoryFilter,
    MemorySettings,
    MemoryStats,
    ScoredMemory,
)

logger = get_logger(__name__)


class MemoryService:
    """Facade over the short-term, semantic and episodic memory tiers."""

    def __init__(
        self,
        settings_store: MemorySettingsStore,
        short_term: ShortTermMemoryStore,
        semantic: SemanticMemoryStore,
        episodic: EpisodicMemoryStore,
        assembler: ContextAssembler,
        writeback_queue: WritebackQueue,
        defaults: Optional[MemoryDefaults] = None,
    ) -> None:
        self.settings_store = settings_store
        self.short_term = short_term
        self.semantic = semantic
        self.episodic = episodic
        self.assembler = assembler
        self.writeback_queue = writeback_queue
        self.defaults = defaults or settings.memory

    # ============================================================
    # LIFECYCLE
    # ============================================================

    def start(self) -> None:
        """Start background writeback workers."""
        self.writeback_queue.start()

    async def stop(self, drain: bool = True) -> None:
        await self.writeback_queue.stop(drain=drain)

    # ============================================================
    # REQUEST PATH
    # ============================================================

    async def assemble_context(
        self,
        user_id: str,
        conversation_id: str,
        prompt: str,
        max_tokens: Optional[int] = None,
    ) -> ContextResult:
        """Build the memory-augmented prompt for the next model call."""
        # The writeback for this turn picks up the same ID
        ensure_correlation_id()
        return await self.assembler.build(user_id, conversation_id, prompt, max_tokens)

    def record_turn(
        self,
        user_id: str,
        conversation_id: str,
        user_prompt: str,
        assistant_response: str,
    ) -> bool:
        """
        Queue a completed turn for writeback.

        Returns immediately. False means the queue was full and the turn
        was not recorded.
        """
        return self.writeback_queue.submit(user_id, conversation_id, user_prompt, assistant_response)

    # ============================================================
    # MEMORY MANAGEMENT
    # ============================================================

    async def search_memories(
        self,
        user_id: str,
        query: str,
        filters: Optional[MemoryFilter] = None,
        limit: int = 10,
        threshold: Optional[float] = None,
    ) -> List[ScoredMemory]:
        """Similarity search over the user's semantic memories; [] if unavailable."""
        try:
            return await self.semantic.search(user_id, query, filters=filters, limit=limit, threshold=threshold)
        except (EmbeddingUnavailable, StoreUnavailable, DecodeError) as e:
            log_tier_degraded("semantic", "search", user_id, e)
            return []

    async def get_memory_stats(self, user_id: str) -> MemoryStats:
        return await self.semantic.stats(user_id)

    async def get_settings(self, user_id: str) -> MemorySettings:
        return await self.settings_store.get(user_id)

    async def update_settings(self, user_id: str, **partial: Any) -> MemorySettings:
        return await self.settings_store.update(user_id, **partial)

    async def delete_memory(self, user_id: str, memory_id: str) -> bool:
        """Delete one semantic memory. False if it is missing or not the user's."""
        return await self.semantic.delete(memory_id, user_id)

    async def boost_importance(self, memory_id: str, pattern: ImportancePattern) -> None:
        await self.semantic.update_importance(memory_id, pattern)

    async def export_all_memories(self, user_id: str) -> MemoryExport:
        """Everything stored for a user, embeddings included."""
        memory_settings = await self.settings_store.get(user_id)
        semantic = await self.semantic.list_for_user(user_id)
        episodic = await self.episodic.list_for_user(user_id)
        short_term = await self.short_term.list_windows(user_id)

        logger.info(f"Exported memories for user {user_id}", extra={"user_id": user_id})
        return MemoryExport(
            user_id=user_id,
            settings=memory_settings,
            semantic=semantic,
            episodic=episodic,
            short_term=short_term,
            summary=ExportSummary(
                total_semantic_memories=len(semantic),
                total_episodic_memories=len(episodic),
                total_short_term_contexts=len(short_term),
            ),
        )

    async def clear_all_memories(self, user_id: str, confirmation_token: str) -> ClearResult:
        """
        Delete every memory of a user across all tiers.

        The settings record is kept.

        Raises:
            InvalidConfirmation: If the token is not exactly the configured
                confirmation string; nothing is deleted
        """
        required = self.defaults.clear_confirmation_token
        if confirmation_token != required:
            logger.warning("Rejected bulk memory deletion: bad confirmation token", extra={"user_id": user_id})
            raise InvalidConfirmation(required)

        cleared = await self.semantic.clear_user(user_id)
        cleared += await self.episodic.clear_user(user_id)
        cleared += await self.short_term.clear_user(user_id)

        logger.info(f"Cleared all memories for user: {user_id}", extra={"user_id": user_id, "cleared": cleared})
        return ClearResult(cleared_count=cleared)
