"""Per-user memory settings with defaults materialised on first read."""

from typing import Any, List, Optional

from recall.config import MemoryDefaults, settings
from recall.core.errors import DecodeError, StoreUnavailable
from recall.core.logging import get_logger, log_tier_degraded
from recall.models.schemas import MemorySettings, decode_document, encode_document, utcnow
from recall.store.base import DocumentStore

logger = get_logger(__name__)

# Fields a caller may not change through update()
READ_ONLY_FIELDS = frozenset({"user_id", "created_at", "updated_at"})


class MemorySettingsStore:
    """One MemorySettings document per user, keyed by user id."""

    def __init__(
        self,
        store: DocumentStore,
        collection: Optional[str] = None,
        defaults: Optional[MemoryDefaults] = None,
    ) -> None:
        self.store = store
        self.collection = collection or settings.store.settings_collection
        self.defaults = defaults or settings.memory

    def default_settings(self, user_id: str) -> MemorySettings:
        return MemorySettings(
            user_id=user_id,
            data_retention_days=self.defaults.data_retention_days,
            max_semantic_memories=self.defaults.max_semantic_memories,
            max_episodic_memories=self.defaults.max_episodic_memories,
            memory_importance_threshold=self.defaults.importance_threshold,
        )

    async def _load(self, user_id: str) -> Optional[MemorySettings]:
        data = await self.store.get(self.collection, user_id)
        if data is None:
            return None
        return decode_document(MemorySettings, self.collection, user_id, data)

    async def get(self, user_id: str) -> MemorySettings:
        """
        Settings for a user, creating the default record on first access.

        If the store is unavailable the defaults are returned without being
        persisted so callers can keep serving the request.
        """
        try:
            current = await self._load(user_id)
            if current is not None:
                return current
            current = self.default_settings(user_id)
            await self.store.set(self.collection, user_id, encode_document(current))
            logger.info(f"Created default memory settings for user {user_id}")
            return current
        except (StoreUnavailable, DecodeError) as e:
            log_tier_degraded("settings", "get", user_id, e)
            return self.default_settings(user_id)

    async def update(self, user_id: str, **partial: Any) -> MemorySettings:
        """
        Merge a partial update into the user's settings.

        A missing record is treated as defaults before applying the update.

        Raises:
            ValueError: On unknown or read-only fields, or invalid values
            StoreUnavailable: If the store cannot be read or written
        """
        unknown = set(partial) - set(MemorySettings.model_fields)
        if unknown:
            raise ValueError(f"Unknown memory settings: {', '.join(sorted(unknown))}")
        read_only = set(partial) & READ_ONLY_FIELDS
        if read_only:
            raise ValueError(f"Read-only memory settings: {', '.join(sorted(read_only))}")

        current = await self._load(user_id) or self.default_settings(user_id)
        data = current.model_dump()
        data.update(partial)
        data["updated_at"] = utcnow()
        # Raises pydantic.ValidationError (a ValueError) for bad values
        updated = MemorySettings.model_validate(data)

        await self.store.set(self.collection, user_id, encode_document(updated), merge=True)
        logger.info(
            f"Updated memory settings for user {user_id}",
            extra={"user_id": user_id, "fields": sorted(partial)},
        )
        return updated

    async def delete(self, user_id: str) -> bool:
        return await self.store.delete(self.collection, user_id)

    async def list_user_ids(self) -> List[str]:
        """Users that have a settings record."""
        docs = await self.store.query(self.collection)
        return [d.id for d in docs]
