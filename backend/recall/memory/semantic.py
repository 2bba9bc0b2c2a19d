"""
Semantic memory: durable, embedding-indexed facts about a user.

Memories are extracted from messages with an ExtractionStrategy, embedded,
deduplicated against the user's existing memories (near-duplicates are
merged instead of inserted) and capped per user by evicting the least
important, least recently used records.

Similarity search is a brute-force cosine scan over the user's memories,
which stays cheap for the per-user cap of about a thousand records.
"""

import time
from collections import Counter as CategoryCounter
from datetime import timedelta
from typing import Dict, List, Optional

from recall.config import settings
from recall.core import metrics
from recall.core.errors import DecodeError, EmbeddingUnavailable, StoreUnavailable
from recall.core.logging import get_logger, log_tier_degraded
from recall.embeddings import EmbeddingClient, cosine_similarity
from recall.memory.extraction import ExtractionStrategy, RegexExtractionStrategy
from recall.models.schemas import (
    ImportancePattern,
    MemoryFilter,
    MemorySettings,
    MemoryStats,
    Message,
    ScoredMemory,
    SemanticMemory,
    decode_document,
    encode_document,
    utcnow,
)
from recall.store.base import DocumentStore, FieldFilter, where

logger = get_logger(__name__)


IMPORTANCE_BOOSTS: Dict[str, float] = {
    "frequent": 0.10,
    "recent": 0.05,
    "relevant": 0.15,
}


class SemanticMemoryStore:
    """
    Create, search, merge and evict semantic memories.

    Args:
        store: Document store holding the memories
        embedder: Embedding client; failures surface as EmbeddingUnavailable
        strategy: Extraction heuristics (defaults to regex rules)
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingClient,
        strategy: Optional[ExtractionStrategy] = None,
        collection: Optional[str] = None,
        duplicate_threshold: Optional[float] = None,
        similarity_threshold: Optional[float] = None,
        relevance_threshold: Optional[float] = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.strategy = strategy or RegexExtractionStrategy()
        self.collection = collection or settings.store.semantic_collection
        memory_cfg = settings.memory
        self.duplicate_threshold = (
            memory_cfg.duplicate_threshold if duplicate_threshold is None else duplicate_threshold
        )
        self.similarity_threshold = (
            memory_cfg.similarity_threshold if similarity_threshold is None else similarity_threshold
        )
        self.relevance_threshold = (
            memory_cfg.relevance_threshold if relevance_threshold is None else relevance_threshold
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _decode(self, doc_id: Optional[str], data: Dict) -> SemanticMemory:
        return decode_document(SemanticMemory, self.collection, doc_id, data)

    async def _candidates(self, user_id: str, filters: Optional[MemoryFilter] = None) -> List[SemanticMemory]:
        conditions: List[FieldFilter] = [where("user_id", "==", user_id)]
        if filters is not None:
            if filters.category:
                conditions.append(where("category", "==", filters.category))
            if filters.conversation_id:
                conditions.append(where("conversation_id", "==", filters.conversation_id))
            if filters.min_importance is not None:
                conditions.append(where("importance", ">=", filters.min_importance))

        docs = await self.store.query(self.collection, filters=conditions)
        return [self._decode(d.id, d.data) for d in docs]

    async def list_for_user(self, user_id: str) -> List[SemanticMemory]:
        docs = await self.store.query(
            self.collection,
            filters=[where("user_id", "==", user_id)],
            order_by=[("created_at", "desc")],
        )
        return [self._decode(d.id, d.data) for d in docs]

    async def top_by_importance(self, user_id: str, limit: int = 10) -> List[SemanticMemory]:
        """Most important memories first, ties broken by most recent access."""
        docs = await self.store.query(
            self.collection,
            filters=[where("user_id", "==", user_id)],
            order_by=[("importance", "desc"), ("last_accessed_at", "desc")],
            limit=limit,
        )
        return [self._decode(d.id, d.data) for d in docs]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(
        self,
        message: Message,
        category: str = "general",
        importance: float = 0.5,
        memory_settings: Optional[MemorySettings] = None,
        keywords: Optional[List[str]] = None,
        confidence: Optional[float] = None,
    ) -> Optional[SemanticMemory]:
        """
        Create a semantic memory from a message.

        Returns the stored record, the merged record when a near-duplicate
        already existed, or None when the tier is disabled, nothing is worth
        remembering, or a collaborator is unavailable.
        """
        memory_settings = memory_settings or MemorySettings(user_id=message.user_id)
        if not memory_settings.semantic_active():
            metrics.memory_semantic_skipped_total.labels(reason="disabled").inc()
            return None

        content = self.strategy.extract_content(message)
        if not content.strip():
            metrics.memory_semantic_skipped_total.labels(reason="no_content").inc()
            return None

        try:
            embedding = await self.embedder.embed(content)
        except EmbeddingUnavailable as e:
            metrics.memory_semantic_skipped_total.labels(reason="embedding").inc()
            log_tier_degraded("semantic", "create", message.user_id, e)
            return None

        if category == "general":
            category = self.strategy.categorize(content)

        memory = SemanticMemory(
            user_id=message.user_id,
            conversation_id=message.conversation_id,
            content=content,
            embedding=embedding,
            category=category,
            keywords=keywords if keywords is not None else self.strategy.extract_keywords(content),
            importance=importance,
            confidence=confidence if confidence is not None else self.strategy.confidence(message, content),
            source_message_ids=[message.id],
            privacy_level="full" if memory_settings.allow_cross_conversation_memory else "limited",
        )

        try:
            duplicate = await self._find_duplicate(memory)
            if duplicate is not None:
                return await self._merge(duplicate, memory)

            await self.enforce_memory_limits(memory.user_id, memory_settings)
            await self.store.set(self.collection, memory.id, encode_document(memory))
        except (StoreUnavailable, DecodeError) as e:
            metrics.memory_semantic_skipped_total.labels(reason="store").inc()
            log_tier_degraded("semantic", "create", message.user_id, e)
            return None

        metrics.memory_semantic_created_total.labels(category=category).inc()
        logger.info(
            f"Created semantic memory: {memory.id} ({category})",
            extra={"user_id": memory.user_id, "memory_id": memory.id, "category": category},
        )
        return memory

    async def _find_duplicate(self, memory: SemanticMemory) -> Optional[SemanticMemory]:
        """The most similar existing memory at or above the duplicate threshold."""
        best: Optional[SemanticMemory] = None
        best_score = self.duplicate_threshold
        for existing in await self._candidates(memory.user_id):
            score = cosine_similarity(memory.embedding, existing.embedding)
            if score >= best_score:
                best, best_score = existing, score
        return best

    async def _merge(self, existing: SemanticMemory, new: SemanticMemory) -> SemanticMemory:
        keywords = list(existing.keywords)
        keywords.extend(k for k in new.keywords if k not in keywords)

        merged = existing.model_copy(update={
            "content": f"{existing.content}\n\n{new.content}",
            "keywords": keywords,
            "importance": max(existing.importance, new.importance),
            "confidence": (existing.confidence + new.confidence) / 2,
            "last_accessed_at": utcnow(),
            "access_count": existing.access_count + 1,
            "source_message_ids": existing.source_message_ids + new.source_message_ids,
        })
        await self.store.set(self.collection, merged.id, encode_document(merged))

        metrics.memory_semantic_merged_total.inc()
        logger.info(
            f"Merged near-duplicate into semantic memory {merged.id}",
            extra={"user_id": merged.user_id, "memory_id": merged.id},
        )
        return merged

    async def enforce_memory_limits(self, user_id: str, memory_settings: Optional[MemorySettings] = None) -> int:
        """
        Make room for one insert under ``max_semantic_memories``.

        Deletes the lowest ranked memories by (importance asc,
        last_accessed_at asc). Concurrent creates may briefly exceed the cap.

        Returns:
            Number of memories deleted
        """
        max_memories = (
            memory_settings.max_semantic_memories if memory_settings
            else settings.memory.max_semantic_memories
        )
        docs = await self.store.query(
            self.collection,
            filters=[where("user_id", "==", user_id)],
            order_by=[("importance", "asc"), ("last_accessed_at", "asc")],
        )
        if len(docs) < max_memories:
            return 0

        to_delete = len(docs) - max_memories + 1
        deleted = 0
        for doc in docs[:to_delete]:
            if await self.store.delete(self.collection, doc.id):
                deleted += 1

        metrics.memory_semantic_evicted_total.inc(deleted)
        logger.info(f"Deleted {deleted} old semantic memories for user {user_id}")
        return deleted

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        user_id: str,
        query: str,
        filters: Optional[MemoryFilter] = None,
        limit: int = 10,
        threshold: Optional[float] = None,
    ) -> List[ScoredMemory]:
        """
        Cosine search over the user's memories.

        Results are sorted by similarity descending and truncated to
        ``limit``; each returned memory has its access tracking bumped.

        Raises:
            EmbeddingUnavailable: If the query cannot be embedded
            StoreUnavailable: If candidates cannot be loaded
        """
        threshold = self.similarity_threshold if threshold is None else threshold
        start = time.perf_counter()

        query_embedding = await self.embedder.embed(query)
        candidates = await self._candidates(user_id, filters)

        scored = []
        for memory in candidates:
            similarity = cosine_similarity(query_embedding, memory.embedding)
            if similarity >= threshold:
                scored.append(ScoredMemory(memory=memory, similarity=similarity))

        scored.sort(key=lambda s: s.similarity, reverse=True)
        results = scored[:max(0, limit)]

        for result in results:
            result.memory = await self._touch(result.memory)

        metrics.memory_search_duration_seconds.observe(time.perf_counter() - start)
        metrics.memory_search_results.observe(len(results))
        return results

    async def _touch(self, memory: SemanticMemory) -> SemanticMemory:
        touched = memory.model_copy(update={
            "last_accessed_at": utcnow(),
            "access_count": memory.access_count + 1,
        })
        await self.store.set(
            self.collection,
            memory.id,
            {
                "last_accessed_at": touched.last_accessed_at.isoformat(),
                "access_count": touched.access_count,
            },
            merge=True,
        )
        return touched

    async def get_relevant(
        self,
        user_id: str,
        context_text: str,
        max_count: int = 5,
    ) -> List[SemanticMemory]:
        """Memories related to the conversation, or [] if the tier is unavailable."""
        try:
            results = await self.search(
                user_id,
                context_text,
                limit=max_count,
                threshold=self.relevance_threshold,
            )
        except (EmbeddingUnavailable, StoreUnavailable, DecodeError) as e:
            log_tier_degraded("semantic", "get_relevant", user_id, e)
            return []
        return [r.memory for r in results]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def update_importance(self, memory_id: str, pattern: ImportancePattern) -> None:
        """Reinforce a memory's importance. Missing memories are ignored."""
        if pattern not in IMPORTANCE_BOOSTS:
            raise ValueError(f"Unknown access pattern: {pattern}")

        data = await self.store.get(self.collection, memory_id)
        if data is None:
            return
        memory = self._decode(memory_id, data)

        await self.store.set(
            self.collection,
            memory_id,
            {
                "importance": min(memory.importance + IMPORTANCE_BOOSTS[pattern], 1.0),
                "last_accessed_at": utcnow().isoformat(),
            },
            merge=True,
        )

    async def delete(self, memory_id: str, user_id: str) -> bool:
        """Delete a memory owned by ``user_id``. False if missing or foreign."""
        data = await self.store.get(self.collection, memory_id)
        if data is None or data.get("user_id") != user_id:
            return False

        deleted = await self.store.delete(self.collection, memory_id)
        if deleted:
            logger.info(f"Deleted semantic memory: {memory_id}", extra={"user_id": user_id})
        return deleted

    async def clear_user(self, user_id: str) -> int:
        docs = await self.store.query(self.collection, filters=[where("user_id", "==", user_id)])
        deleted = 0
        for doc in docs:
            if await self.store.delete(self.collection, doc.id):
                deleted += 1
        return deleted

    async def prune(
        self,
        user_id: str,
        importance_threshold: float,
        retention_days: int = 0,
        unused_grace_days: int = 1,
    ) -> int:
        """
        Remove expired and low-value memories.

        A memory is removed when it is older than ``retention_days`` (if
        positive), or when its importance is below ``importance_threshold``,
        it was never accessed, and it is older than ``unused_grace_days``.
        """
        now = utcnow()
        retention_cutoff = now - timedelta(days=retention_days) if retention_days > 0 else None
        unused_cutoff = now - timedelta(days=unused_grace_days)

        deleted = 0
        for memory in await self._candidates(user_id):
            expired = retention_cutoff is not None and memory.created_at < retention_cutoff
            unused = (
                memory.importance < importance_threshold
                and memory.access_count == 0
                and memory.created_at < unused_cutoff
            )
            if (expired or unused) and await self.store.delete(self.collection, memory.id):
                deleted += 1
        return deleted

    async def stats(self, user_id: str) -> MemoryStats:
        memories = await self._candidates(user_id)
        if not memories:
            return MemoryStats()

        categories = CategoryCounter(m.category for m in memories)
        created = [m.created_at for m in memories]
        return MemoryStats(
            total_memories=len(memories),
            category_counts=dict(categories),
            average_importance=sum(m.importance for m in memories) / len(memories),
            most_accessed=sorted(memories, key=lambda m: m.access_count, reverse=True)[:5],
            oldest_memory=min(created),
            newest_memory=max(created),
        )
