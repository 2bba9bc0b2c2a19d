"""
Retention pruning for the memory tiers.

Applies each user's retention settings: semantic memories past
``data_retention_days`` are removed, as are never-accessed memories below
``memory_importance_threshold``; short-term windows idle past retention are
dropped. A background loop runs the pass periodically for every user with
a settings record.
"""

import asyncio
import logging
from typing import Dict, Optional

from recall.config import settings
from recall.core import metrics
from recall.core.errors import DecodeError, StoreUnavailable
from recall.memory.semantic import SemanticMemoryStore
from recall.memory.settings_store import MemorySettingsStore
from recall.memory.short_term import ShortTermMemoryStore

logger = logging.getLogger(__name__)

# Global scheduler task
_scheduler_task: Optional[asyncio.Task] = None


class MemoryPruner:
    def __init__(
        self,
        settings_store: MemorySettingsStore,
        short_term: ShortTermMemoryStore,
        semantic: SemanticMemoryStore,
        unused_grace_days: Optional[int] = None,
    ) -> None:
        self.settings_store = settings_store
        self.short_term = short_term
        self.semantic = semantic
        self.unused_grace_days = (
            settings.retention.unused_grace_days if unused_grace_days is None else unused_grace_days
        )

    async def prune_user(self, user_id: str) -> Dict[str, int]:
        """
        Prune one user's memories according to their settings.

        Returns:
            Records removed per tier
        """
        memory_settings = await self.settings_store.get(user_id)

        semantic_removed = await self.semantic.prune(
            user_id,
            importance_threshold=memory_settings.memory_importance_threshold,
            retention_days=memory_settings.data_retention_days,
            unused_grace_days=self.unused_grace_days,
        )
        short_term_removed = await self.short_term.cleanup_older_than(
            user_id, memory_settings.data_retention_days
        )

        metrics.memory_pruned_total.labels(tier="semantic").inc(semantic_removed)
        metrics.memory_pruned_total.labels(tier="short_term").inc(short_term_removed)
        if semantic_removed or short_term_removed:
            logger.info(
                f"Pruned memories for user {user_id}: "
                f"{semantic_removed} semantic, {short_term_removed} short-term"
            )
        return {"semantic": semantic_removed, "short_term": short_term_removed}

    async def prune_all(self) -> int:
        """Prune every known user. A failing user does not stop the pass."""
        total = 0
        for user_id in await self.settings_store.list_user_ids():
            try:
                removed = await self.prune_user(user_id)
            except (StoreUnavailable, DecodeError) as e:
                logger.warning(f"Pruning skipped for user {user_id}: {e}")
                continue
            total += sum(removed.values())
        return total


async def _pruning_loop(pruner: MemoryPruner, interval_seconds: int) -> None:
    """Background task that periodically prunes every user's memories."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            await pruner.prune_all()
        except asyncio.CancelledError:
            logger.info("Pruning scheduler cancelled")
            break
        except Exception as e:
            logger.error(f"Error in pruning scheduler: {e}")


def start_pruning_scheduler(pruner: MemoryPruner, interval_seconds: Optional[int] = None) -> None:
    """Start the background pruning scheduler."""
    global _scheduler_task
    interval_seconds = interval_seconds or settings.retention.interval_seconds
    if _scheduler_task is None or _scheduler_task.done():
        _scheduler_task = asyncio.create_task(_pruning_loop(pruner, interval_seconds))
        logger.info(f"Started memory pruning scheduler (interval: {interval_seconds}s)")


def stop_pruning_scheduler() -> None:
    """Stop the background pruning scheduler."""
    global _scheduler_task
    if _scheduler_task and not _scheduler_task.done():
        _scheduler_task.cancel()
        logger.info("Stopped memory pruning scheduler")
    _scheduler_task = None
