"""Episodic memory: summaries of past conversations, read by recency."""

from typing import List, Optional

from recall.config import settings
from recall.core.logging import get_logger
from recall.models.schemas import (
    EpisodicMemory,
    EpisodicStats,
    MemorySettings,
    decode_document,
    encode_document,
    utcnow,
)
from recall.store.base import DocumentStore, where

logger = get_logger(__name__)


class EpisodicMemoryStore:
    """
    Read and write conversation summaries.

    Summaries are produced elsewhere (a summariser job or an LLM call);
    this store only persists them and caps the count per user.
    """

    def __init__(self, store: DocumentStore, collection: Optional[str] = None) -> None:
        self.store = store
        self.collection = collection or settings.store.episodic_collection

    async def get_recent(self, user_id: str, limit: int = 10) -> List[EpisodicMemory]:
        """Most recent episodes first."""
        docs = await self.store.query(
            self.collection,
            filters=[where("user_id", "==", user_id)],
            order_by=[("created_at", "desc")],
            limit=limit,
        )
        return [decode_document(EpisodicMemory, self.collection, d.id, d.data) for d in docs]

    async def list_for_user(self, user_id: str) -> List[EpisodicMemory]:
        docs = await self.store.query(
            self.collection,
            filters=[where("user_id", "==", user_id)],
            order_by=[("created_at", "desc")],
        )
        return [decode_document(EpisodicMemory, self.collection, d.id, d.data) for d in docs]

    async def save(
        self,
        memory: EpisodicMemory,
        memory_settings: Optional[MemorySettings] = None,
    ) -> EpisodicMemory:
        """Persist an episode, evicting the least important, oldest ones over the cap."""
        max_episodes = (
            memory_settings.max_episodic_memories if memory_settings
            else settings.memory.max_episodic_memories
        )

        docs = await self.store.query(
            self.collection,
            filters=[where("user_id", "==", memory.user_id)],
            order_by=[("importance", "asc"), ("created_at", "asc")],
        )
        existing = [d for d in docs if d.id != memory.id]
        if len(existing) >= max_episodes:
            for doc in existing[: len(existing) - max_episodes + 1]:
                await self.store.delete(self.collection, doc.id)
            logger.info(f"Evicted old episodes for user {memory.user_id}")

        memory.updated_at = utcnow()
        await self.store.set(self.collection, memory.id, encode_document(memory))
        return memory

    async def stats(self, user_id: str) -> EpisodicStats:
        episodes = await self.list_for_user(user_id)
        if not episodes:
            return EpisodicStats()
        return EpisodicStats(
            total_episodes=len(episodes),
            oldest_episode=min(e.created_at for e in episodes),
            newest_episode=max(e.created_at for e in episodes),
        )

    async def clear_user(self, user_id: str) -> int:
        docs = await self.store.query(self.collection, filters=[where("user_id", "==", user_id)])
        deleted = 0
        for doc in docs:
            if await self.store.delete(self.collection, doc.id):
                deleted += 1
        return deleted
