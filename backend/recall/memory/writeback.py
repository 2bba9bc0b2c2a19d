"""
Post-response memory writeback.

After the model answers, the turn is persisted off the response path:
both turns go into the short-term window and salient user statements
become semantic memories. Jobs are handed to a bounded in-process queue
drained by worker tasks; when the queue is full new jobs are dropped and
counted rather than blocking the caller.
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from recall.config import WritebackSettings, settings
from recall.core import metrics
from recall.core.logging import get_correlation_id, get_logger, set_correlation_id
from recall.memory.extraction import ExtractionStrategy
from recall.memory.semantic import SemanticMemoryStore
from recall.memory.settings_store import MemorySettingsStore
from recall.memory.short_term import ShortTermMemoryStore
from recall.models.schemas import Message

logger = get_logger(__name__)


class MemoryWriteback:
    """Persists one conversation turn into the memory tiers."""

    def __init__(
        self,
        settings_store: MemorySettingsStore,
        short_term: ShortTermMemoryStore,
        semantic: SemanticMemoryStore,
        strategy: Optional[ExtractionStrategy] = None,
        config: Optional[WritebackSettings] = None,
    ) -> None:
        self.settings_store = settings_store
        self.short_term = short_term
        self.semantic = semantic
        self.strategy = strategy or semantic.strategy
        self.config = config or settings.writeback

    async def record(
        self,
        user_id: str,
        conversation_id: str,
        user_prompt: str,
        assistant_response: str,
    ) -> None:
        """
        Write one turn. Never raises: every failure is logged.

        Each tier is written independently, so a short-term outage does not
        lose the semantic memory and vice versa.
        """
        try:
            memory_settings = await self.settings_store.get(user_id)
        except Exception as e:
            self._log_failure("settings", user_id, conversation_id, e)
            metrics.memory_writeback_total.labels(outcome="failed").inc()
            return

        failed = False

        if memory_settings.short_term_active():
            try:
                await self.short_term.append(user_id, conversation_id, "user", user_prompt)
                await self.short_term.append(user_id, conversation_id, "assistant", assistant_response)
            except Exception as e:
                self._log_failure("short_term", user_id, conversation_id, e)
                failed = True

        if memory_settings.semantic_active() and self.strategy.is_salient(user_prompt):
            user_message = Message(
                user_id=user_id,
                conversation_id=conversation_id,
                content=user_prompt,
                role="user",
            )
            try:
                await self.semantic.create(
                    user_message,
                    category=self.config.semantic_category,
                    importance=self.config.semantic_importance,
                    memory_settings=memory_settings,
                    keywords=self.strategy.extract_keywords(user_prompt),
                    confidence=self.config.semantic_confidence,
                )
            except Exception as e:
                self._log_failure("semantic", user_id, conversation_id, e)
                failed = True

        metrics.memory_writeback_total.labels(outcome="failed" if failed else "completed").inc()
        if not failed:
            logger.debug(f"Saved turn to memory: {conversation_id}", extra={"user_id": user_id})

    @staticmethod
    def _log_failure(tier: str, user_id: str, conversation_id: str, error: Exception) -> None:
        # Writeback failures must never reach the user-facing response
        metrics.memory_tier_degraded_total.labels(tier=tier, operation="writeback").inc()
        logger.error(
            f"Error saving turn to {tier} memory: {error}",
            exc_info=error,
            extra={"user_id": user_id, "conversation_id": conversation_id, "tier": tier},
        )


@dataclass
class WritebackJob:
    user_id: str
    conversation_id: str
    user_prompt: str
    assistant_response: str
    correlation_id: Optional[str] = field(default_factory=get_correlation_id)


class WritebackQueue:
    """
    Bounded queue of writeback jobs drained by worker tasks.

    Usage:
        queue = WritebackQueue(writeback)
        queue.start()
        queue.submit(user_id, conversation_id, prompt, answer)
        ...
        await queue.stop()
    """

    def __init__(
        self,
        writeback: MemoryWriteback,
        maxsize: Optional[int] = None,
        workers: Optional[int] = None,
    ) -> None:
        self.writeback = writeback
        self.maxsize = settings.writeback.queue_size if maxsize is None else maxsize
        self.worker_count = settings.writeback.workers if workers is None else workers
        self._queue: "asyncio.Queue[WritebackJob]" = asyncio.Queue(maxsize=self.maxsize)
        self._workers: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._workers)

    def qsize(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Start the worker tasks. Must be called from a running event loop."""
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"memory-writeback-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"Writeback queue started ({self.worker_count} workers, capacity {self.maxsize})")

    def submit(
        self,
        user_id: str,
        conversation_id: str,
        user_prompt: str,
        assistant_response: str,
    ) -> bool:
        """
        Enqueue a turn without waiting.

        Returns:
            False if the queue is full and the job was dropped
        """
        job = WritebackJob(user_id, conversation_id, user_prompt, assistant_response)
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            metrics.memory_writeback_total.labels(outcome="dropped").inc()
            logger.warning(
                "Writeback queue full, dropping turn",
                extra={"user_id": user_id, "conversation_id": conversation_id, "capacity": self.maxsize},
            )
            return False

        metrics.memory_writeback_queue_depth.set(self._queue.qsize())
        return True

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                set_correlation_id(job.correlation_id)
                await self.writeback.record(
                    job.user_id,
                    job.conversation_id,
                    job.user_prompt,
                    job.assistant_response,
                )
            finally:
                set_correlation_id(None)
                self._queue.task_done()
                metrics.memory_writeback_queue_depth.set(self._queue.qsize())

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers, optionally finishing queued jobs first."""
        if drain and self.running:
            await self.join()

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Writeback queue stopped")
