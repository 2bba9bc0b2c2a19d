"""Memory tiers, context assembly and writeback."""

from recall.memory.context import ContextAssembler
from recall.memory.episodic import EpisodicMemoryStore
from recall.memory.extraction import ExtractionStrategy, RegexExtractionStrategy
from recall.memory.pruner import MemoryPruner
from recall.memory.semantic import SemanticMemoryStore
from recall.memory.settings_store import MemorySettingsStore
from recall.memory.short_term import ShortTermMemoryStore
from recall.memory.writeback import MemoryWriteback, WritebackQueue

__all__ = [
    "ContextAssembler",
    "EpisodicMemoryStore",
    "ExtractionStrategy",
    "MemoryPruner",
    "MemorySettingsStore",
    "MemoryWriteback",
    "RegexExtractionStrategy",
    "SemanticMemoryStore",
    "ShortTermMemoryStore",
    "WritebackQueue",
]
