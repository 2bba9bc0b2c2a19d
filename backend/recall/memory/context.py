"""
Context assembly for model calls.

Builds the prompt block injected before every model call from the three
memory tiers under a token budget. Tiers are consulted in a fixed priority
order (recent turns, then known facts, then conversation history) and each
optional block is admitted only if it fits its fraction of the budget left
at that point. The current prompt is always appended last, regardless of
budget.

Token counts use the ceil(chars / 4) estimate from recall.core.token_utils.
"""

import time
from typing import Callable, List, Optional, Tuple

from recall.config import ContextSettings, settings
from recall.core import metrics
from recall.core.errors import DecodeError, StoreUnavailable
from recall.core.logging import get_logger, log_context_built, log_tier_degraded
from recall.core.token_utils import estimate_tokens
from recall.memory.episodic import EpisodicMemoryStore
from recall.memory.semantic import SemanticMemoryStore
from recall.memory.settings_store import MemorySettingsStore
from recall.memory.short_term import ShortTermMemoryStore
from recall.models.schemas import (
    ComponentsUsed,
    ContextResult,
    EpisodicMemory,
    SemanticMemory,
    ShortTermEntry,
)

logger = get_logger(__name__)

RECENT_HEADER = "RECENT CONVERSATION:"
FACTS_HEADER = "KNOWN FACTS:"
HISTORY_HEADER = "CONVERSATION HISTORY:"


def format_turns(entries: List[ShortTermEntry]) -> str:
    lines = "\n".join(f"{e.role.upper()}: {e.content}" for e in entries)
    return f"{RECENT_HEADER}\n{lines}"


def relates_to_prompt(memory: SemanticMemory, prompt: str) -> bool:
    """Cheap textual relevance: the prompt's first word in the memory, or a keyword in the prompt."""
    prompt_lower = prompt.lower()
    words = prompt_lower.split()
    if words and words[0] in memory.content.lower():
        return True
    return any(keyword.lower() in prompt_lower for keyword in memory.keywords if keyword)


def fill_block(
    header: str,
    items: List[str],
    separator: str,
    allowance: float,
) -> Tuple[Optional[str], int]:
    """
    Greedily add items to a block while its estimate stays within ``allowance``.

    An item that would overflow the block is skipped and later, smaller
    items are still tried.

    Returns the block text (None when no item fits) and how many items it holds.
    """
    included: List[str] = []
    block: Optional[str] = None
    for item in items:
        candidate = f"{header}\n" + separator.join(included + [item])
        if estimate_tokens(candidate) > allowance:
            continue
        included.append(item)
        block = candidate
    return block, len(included)


class ContextAssembler:
    """
    Token-bounded context builder over the memory tiers.

    Tier failures (store down, undecodable documents) skip that tier and
    are logged; assembly itself never fails because a tier is unavailable.
    """

    def __init__(
        self,
        settings_store: MemorySettingsStore,
        short_term: ShortTermMemoryStore,
        semantic: SemanticMemoryStore,
        episodic: EpisodicMemoryStore,
        config: Optional[ContextSettings] = None,
    ) -> None:
        self.settings_store = settings_store
        self.short_term = short_term
        self.semantic = semantic
        self.episodic = episodic
        self.config = config or settings.context

    async def _tier(self, tier: str, user_id: str, fetch: Callable):
        try:
            return await fetch()
        except (StoreUnavailable, DecodeError) as e:
            metrics.memory_tier_degraded_total.labels(tier=tier, operation="context").inc()
            log_tier_degraded(tier, "context", user_id, e)
            return None

    async def build(
        self,
        user_id: str,
        conversation_id: str,
        current_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> ContextResult:
        start = time.perf_counter()
        cfg = self.config
        max_tokens = cfg.default_max_tokens if max_tokens is None else max_tokens
        memory_settings = await self.settings_store.get(user_id)

        blocks: List[str] = []
        components = ComponentsUsed()

        preamble = f"SYSTEM: {cfg.system_prompt}"
        blocks.append(preamble)
        token_count = estimate_tokens(preamble)
        remaining = max_tokens - token_count

        # 1. Recent turns
        if memory_settings.short_term_active() and remaining > 0:
            entries = await self._tier(
                "short_term", user_id,
                lambda: self.short_term.get(user_id, conversation_id, limit=cfg.short_term_messages),
            )
            if entries:
                block = format_turns(entries)
                block_tokens = estimate_tokens(block)
                if block_tokens <= remaining * cfg.short_term_fraction:
                    blocks.append(block)
                    token_count += block_tokens
                    remaining -= block_tokens
                    components.short_term = True
                    metrics.memory_context_block_total.labels(tier="short_term", outcome="included").inc()
                else:
                    metrics.memory_context_block_total.labels(tier="short_term", outcome="over_budget").inc()
        else:
            metrics.memory_context_block_total.labels(tier="short_term", outcome="disabled").inc()

        # 2. Known facts
        if memory_settings.semantic_active() and remaining > cfg.semantic_min_remaining:
            candidates = await self._tier(
                "semantic", user_id,
                lambda: self.semantic.top_by_importance(user_id, limit=cfg.semantic_candidates),
            )
            related = [m for m in candidates or [] if relates_to_prompt(m, current_prompt)]
            block, _ = fill_block(
                FACTS_HEADER,
                [f"- {m.content}" for m in related],
                "\n",
                remaining * cfg.semantic_fraction,
            )
            if block is not None:
                block_tokens = estimate_tokens(block)
                blocks.append(block)
                token_count += block_tokens
                remaining -= block_tokens
                components.semantic = True
                metrics.memory_context_block_total.labels(tier="semantic", outcome="included").inc()
            else:
                outcome = "over_budget" if related else "empty"
                metrics.memory_context_block_total.labels(tier="semantic", outcome=outcome).inc()
        else:
            metrics.memory_context_block_total.labels(tier="semantic", outcome="disabled").inc()

        # 3. Conversation history
        if memory_settings.episodic_active() and remaining > cfg.episodic_min_remaining:
            episodes: Optional[List[EpisodicMemory]] = await self._tier(
                "episodic", user_id,
                lambda: self.episodic.get_recent(user_id, limit=cfg.episodic_candidates),
            )
            block, _ = fill_block(
                HISTORY_HEADER,
                [f"Previous conversation: {e.summary}" for e in episodes or []],
                "\n\n",
                remaining * cfg.episodic_fraction,
            )
            if block is not None:
                block_tokens = estimate_tokens(block)
                blocks.append(block)
                token_count += block_tokens
                remaining -= block_tokens
                components.episodic = True
                metrics.memory_context_block_total.labels(tier="episodic", outcome="included").inc()
            else:
                outcome = "over_budget" if episodes else "empty"
                metrics.memory_context_block_total.labels(tier="episodic", outcome=outcome).inc()
        else:
            metrics.memory_context_block_total.labels(tier="episodic", outcome="disabled").inc()

        # 4. Current prompt, never subject to the budget
        prompt_block = f"USER: {current_prompt}"
        blocks.append(prompt_block)
        token_count += estimate_tokens(prompt_block)

        result = ContextResult(
            context="\n\n".join(blocks),
            token_count=token_count,
            remaining_tokens=max(0, max_tokens - token_count),
            components_used=components,
        )

        metrics.memory_context_tokens.observe(token_count)
        log_context_built(
            user_id,
            conversation_id,
            token_count,
            max_tokens,
            components.model_dump(),
            (time.perf_counter() - start) * 1000,
        )
        return result
