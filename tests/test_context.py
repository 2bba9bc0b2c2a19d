"""
Tests for ContextAssembler.

Tests cover:
- Block order and token accounting
- Budget fractions per tier
- Per-user tier toggles
- Degradation when a tier's store is unavailable
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from conftest import put_memory, unit
from recall.core.errors import StoreUnavailable
from recall.core.token_utils import estimate_tokens
from recall.memory.context import fill_block, relates_to_prompt
from recall.models.schemas import EpisodicMemory, SemanticMemory, utcnow

PREAMBLE = "SYSTEM: You are helpful."


def fact(content: str, keywords, importance: float = 0.5) -> SemanticMemory:
    return SemanticMemory(
        user_id="u1", conversation_id="c1", content=content, embedding=unit(0),
        keywords=keywords, importance=importance,
    )


class TestBuild:
    """Tests for build."""

    @pytest.mark.asyncio
    async def test_blocks_in_priority_order(self, assembler, short_term, store, episodic):
        await short_term.append("u1", "c1", "user", "I like blue")
        await short_term.append("u1", "c1", "assistant", "Noted")
        await put_memory(store, fact("I like blue", ["blue"]))
        await episodic.save(EpisodicMemory(
            user_id="u1", conversation_id="c0", summary="Talked about colours",
            created_at=utcnow() - timedelta(days=1),
        ))

        result = await assembler.build("u1", "c1", "which blue should I paint the hall")

        blocks = [
            PREAMBLE,
            "RECENT CONVERSATION:\nUSER: I like blue\nASSISTANT: Noted",
            "KNOWN FACTS:\n- I like blue",
            "CONVERSATION HISTORY:\nPrevious conversation: Talked about colours",
            "USER: which blue should I paint the hall",
        ]
        assert result.context == "\n\n".join(blocks)
        assert result.token_count == sum(estimate_tokens(b) for b in blocks)
        assert result.remaining_tokens == 8000 - result.token_count
        assert result.components_used.short_term
        assert result.components_used.semantic
        assert result.components_used.episodic

    @pytest.mark.asyncio
    async def test_prompt_present_even_without_budget(self, assembler, short_term):
        await short_term.append("u1", "c1", "user", "earlier turn")

        result = await assembler.build("u1", "c1", "hi", max_tokens=1)

        assert result.context == f"{PREAMBLE}\n\nUSER: hi"
        assert result.token_count == estimate_tokens(PREAMBLE) + estimate_tokens("USER: hi")
        assert result.remaining_tokens == 0
        assert not result.components_used.short_term

    @pytest.mark.asyncio
    async def test_empty_memory(self, assembler):
        result = await assembler.build("u1", "c1", "hello")

        assert result.context == f"{PREAMBLE}\n\nUSER: hello"
        assert result.components_used.model_dump() == {"short_term": False, "semantic": False, "episodic": False}

    @pytest.mark.asyncio
    async def test_disabled_semantic_tier_skipped(self, assembler, settings_store, store):
        await put_memory(store, fact("I like blue", ["blue"]))
        await settings_store.update("u1", semantic_memory_enabled=False)

        result = await assembler.build("u1", "c1", "what about blue")

        assert "KNOWN FACTS" not in result.context
        assert not result.components_used.semantic

    @pytest.mark.asyncio
    async def test_master_switch_skips_everything(self, assembler, settings_store, short_term, store):
        await short_term.append("u1", "c1", "user", "I like blue")
        await put_memory(store, fact("I like blue", ["blue"]))
        await settings_store.update("u1", memory_enabled=False)

        result = await assembler.build("u1", "c1", "what about blue")

        assert result.context == f"{PREAMBLE}\n\nUSER: what about blue"

    @pytest.mark.asyncio
    async def test_short_term_over_half_budget_excluded(self, assembler, short_term):
        await short_term.append("u1", "c1", "user", "x" * 500)

        result = await assembler.build("u1", "c1", "next", max_tokens=200)

        assert "RECENT CONVERSATION" not in result.context
        assert not result.components_used.short_term

    @pytest.mark.asyncio
    async def test_semantic_block_limited_to_its_fraction(self, assembler, store):
        for letter, importance in [("a", 0.9), ("b", 0.8), ("c", 0.7)]:
            await put_memory(store, fact(letter * 1000, ["topic"], importance=importance))
        # 2000 tokens remain after the preamble; 600 fit two facts but not three
        max_tokens = 2000 + estimate_tokens(PREAMBLE)

        result = await assembler.build("u1", "c1", "tell me about topic", max_tokens=max_tokens)

        assert "a" * 1000 in result.context
        assert "b" * 1000 in result.context
        assert "c" * 1000 not in result.context
        assert result.components_used.semantic

    @pytest.mark.asyncio
    async def test_oversized_fact_does_not_hide_smaller_ones(self, assembler, store):
        await put_memory(store, fact("x" * 4000, ["topic"], importance=0.9))
        await put_memory(store, fact("small fact", ["topic"], importance=0.5))

        result = await assembler.build("u1", "c1", "tell me about topic", max_tokens=2000)

        assert "KNOWN FACTS:\n- small fact" in result.context
        assert "x" * 4000 not in result.context
        assert result.components_used.semantic

    @pytest.mark.asyncio
    async def test_unrelated_facts_left_out(self, assembler, store):
        await put_memory(store, fact("I like pasta", ["pasta"]))

        result = await assembler.build("u1", "c1", "what is the weather")

        assert "KNOWN FACTS" not in result.context

    @pytest.mark.asyncio
    async def test_episodes_newest_first(self, assembler, episodic):
        for summary, days_ago in [("first chat", 3), ("second chat", 1)]:
            await episodic.save(EpisodicMemory(
                user_id="u1", conversation_id=summary, summary=summary,
                created_at=utcnow() - timedelta(days=days_ago),
            ))

        result = await assembler.build("u1", "c1", "hello")

        assert (
            "CONVERSATION HISTORY:\nPrevious conversation: second chat\n\nPrevious conversation: first chat"
            in result.context
        )

    @pytest.mark.asyncio
    async def test_unavailable_tiers_degrade(self, assembler, short_term):
        await short_term.append("u1", "c1", "user", "I like blue")
        assembler.semantic.top_by_importance = AsyncMock(side_effect=StoreUnavailable("down"))
        assembler.episodic.get_recent = AsyncMock(side_effect=StoreUnavailable("down"))

        result = await assembler.build("u1", "c1", "blue again")

        assert "RECENT CONVERSATION:\nUSER: I like blue" in result.context
        assert result.context.endswith("USER: blue again")
        assert not result.components_used.semantic
        assert not result.components_used.episodic


class TestHelpers:
    """Tests for the block helpers."""

    def test_fill_block_counts_header(self):
        block, count = fill_block("HEAD:", ["- abc", "- def"], "\n", allowance=3)
        # "HEAD:\n- abc" is 11 chars, 3 tokens; adding the second item overflows
        assert block == "HEAD:\n- abc"
        assert count == 1

    def test_fill_block_skips_oversized_item(self):
        # "HEAD:\n- abcdefgh" is 4 tokens; "HEAD:\n- d" is 3
        block, count = fill_block("HEAD:", ["- abcdefgh", "- d"], "\n", allowance=3)
        assert block == "HEAD:\n- d"
        assert count == 1

    def test_fill_block_nothing_fits(self):
        assert fill_block("HEAD:", ["- " + "x" * 100], "\n", allowance=5) == (None, 0)

    def test_relates_by_first_word_or_keyword(self):
        memory = fact("Paris is lovely in spring", ["travel"])
        assert relates_to_prompt(memory, "Paris trip ideas")
        assert relates_to_prompt(memory, "any travel tips")
        assert not relates_to_prompt(memory, "what should I cook")
