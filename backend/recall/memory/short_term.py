"""
Short-term memory: a sliding window of recent turns per conversation.

One document per (user, conversation) holds at most ``window_size`` entries,
oldest first. Appends are read-modify-write on that single document, so
appends to the same key are serialised with an in-process lock.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Dict, List, Optional

from recall.config import settings
from recall.models.schemas import (
    Role,
    ShortTermEntry,
    ShortTermWindow,
    decode_document,
    encode_document,
    utcnow,
)
from recall.store.base import DocumentStore, where

logger = logging.getLogger(__name__)


class ShortTermMemoryStore:
    """Sliding conversation window backed by a document store."""

    def __init__(
        self,
        store: DocumentStore,
        collection: Optional[str] = None,
        window_size: Optional[int] = None,
        user_importance: Optional[float] = None,
        assistant_importance: Optional[float] = None,
    ) -> None:
        self.store = store
        self.collection = collection or settings.store.short_term_collection
        self.window_size = window_size or settings.window_size
        self.user_importance = (
            settings.memory.user_turn_importance if user_importance is None else user_importance
        )
        self.assistant_importance = (
            settings.memory.assistant_turn_importance
            if assistant_importance is None else assistant_importance
        )
        # Locks exist only while a call holds or waits for them
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        """Serialise writes to one window; the lock is dropped when no caller needs it."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _default_importance(self, role: Role) -> float:
        return self.user_importance if role == "user" else self.assistant_importance

    async def _load(self, key: str) -> Optional[ShortTermWindow]:
        data = await self.store.get(self.collection, key)
        if data is None:
            return None
        return decode_document(ShortTermWindow, self.collection, key, data)

    async def append(
        self,
        user_id: str,
        conversation_id: str,
        role: Role,
        content: str,
        importance: Optional[float] = None,
    ) -> ShortTermWindow:
        """
        Append a turn and persist the truncated window.

        The window is created on first append. Entries beyond ``window_size``
        are dropped from the front.
        """
        key = ShortTermWindow.key(user_id, conversation_id)
        entry = ShortTermEntry(
            role=role,
            content=content,
            importance=self._default_importance(role) if importance is None else importance,
        )

        async with self._key_lock(key):
            window = await self._load(key)
            if window is None:
                window = ShortTermWindow(
                    id=key,
                    user_id=user_id,
                    conversation_id=conversation_id,
                    window_size=self.window_size,
                )
            window.push(entry)
            await self.store.set(self.collection, key, encode_document(window))

        logger.debug(f"Appended {role} turn to {key} ({len(window.messages)}/{window.window_size})")
        return window

    async def get(
        self,
        user_id: str,
        conversation_id: str,
        limit: Optional[int] = None,
    ) -> List[ShortTermEntry]:
        """Entries of the window, most recent last, optionally only the last ``limit``."""
        window = await self._load(ShortTermWindow.key(user_id, conversation_id))
        if window is None:
            return []
        messages = window.messages
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    async def clear(self, user_id: str, conversation_id: str) -> bool:
        key = ShortTermWindow.key(user_id, conversation_id)
        async with self._key_lock(key):
            deleted = await self.store.delete(self.collection, key)
        return deleted

    async def list_windows(self, user_id: str) -> List[ShortTermWindow]:
        docs = await self.store.query(
            self.collection,
            filters=[where("user_id", "==", user_id)],
            order_by=[("updated_at", "desc")],
        )
        return [decode_document(ShortTermWindow, self.collection, d.id, d.data) for d in docs]

    async def clear_user(self, user_id: str) -> int:
        """Delete every window of a user. Returns the number deleted."""
        windows = await self.list_windows(user_id)
        deleted = 0
        for window in windows:
            if await self.clear(user_id, window.conversation_id):
                deleted += 1
        return deleted

    async def cleanup_older_than(self, user_id: str, retention_days: int) -> int:
        """Delete windows idle for longer than ``retention_days``. 0 keeps everything."""
        if retention_days <= 0:
            return 0
        cutoff = utcnow() - timedelta(days=retention_days)
        docs = await self.store.query(
            self.collection,
            filters=[where("user_id", "==", user_id), where("updated_at", "<", cutoff.isoformat())],
        )
        deleted = 0
        for doc in docs:
            if await self.store.delete(self.collection, doc.id):
                deleted += 1
        if deleted:
            logger.info(f"Removed {deleted} idle short-term windows for user {user_id}")
        return deleted
