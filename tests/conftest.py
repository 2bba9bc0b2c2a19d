"""
Pytest configuration and shared fixtures.

Every test builds its own object graph on an in-memory document store and a
deterministic fake embedding client, so no network service is needed.
"""

import hashlib
import re
from typing import Dict, List, Optional, Sequence

import pytest

from recall.config import ContextSettings
from recall.core.errors import EmbeddingUnavailable
from recall.embeddings import EmbeddingClient
from recall.memory.context import ContextAssembler
from recall.memory.episodic import EpisodicMemoryStore
from recall.memory.semantic import SemanticMemoryStore
from recall.memory.settings_store import MemorySettingsStore
from recall.memory.short_term import ShortTermMemoryStore
from recall.memory.writeback import MemoryWriteback, WritebackQueue
from recall.models.schemas import SemanticMemory, encode_document
from recall.services.memory_service import MemoryService
from recall.store.memory_store import InMemoryDocumentStore

DIMENSION = 64


def unit(index: int, dimension: int = DIMENSION) -> List[float]:
    """One-hot vector, orthogonal to every other index."""
    vector = [0.0] * dimension
    vector[index] = 1.0
    return vector


def bag_of_words(text: str, dimension: int = DIMENSION) -> List[float]:
    """Stable hashed word counts; identical texts embed identically."""
    vector = [0.0] * dimension
    for token in re.findall(r"\w+", text.lower()):
        bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % dimension
        vector[bucket] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


class FakeEmbedder(EmbeddingClient):
    """Embedding client with fixed vectors per text and bag-of-words otherwise."""

    dimension = DIMENSION

    def __init__(self, vectors: Optional[Dict[str, Sequence[float]]] = None, fail: bool = False) -> None:
        self.vectors = dict(vectors or {})
        self.fail = fail
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingUnavailable("embedding service down")
        if text in self.vectors:
            return list(self.vectors[text])
        return bag_of_words(text)


async def put_memory(store: InMemoryDocumentStore, memory: SemanticMemory) -> SemanticMemory:
    """Store a semantic memory directly, bypassing extraction and dedup."""
    await store.set("semanticMemories", memory.id, encode_document(memory))
    return memory


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def settings_store(store) -> MemorySettingsStore:
    return MemorySettingsStore(store)


@pytest.fixture
def short_term(store) -> ShortTermMemoryStore:
    return ShortTermMemoryStore(store, window_size=12)


@pytest.fixture
def semantic(store, embedder) -> SemanticMemoryStore:
    return SemanticMemoryStore(store, embedder)


@pytest.fixture
def episodic(store) -> EpisodicMemoryStore:
    return EpisodicMemoryStore(store)


@pytest.fixture
def context_config() -> ContextSettings:
    return ContextSettings(system_prompt="You are helpful.")


@pytest.fixture
def assembler(settings_store, short_term, semantic, episodic, context_config) -> ContextAssembler:
    return ContextAssembler(settings_store, short_term, semantic, episodic, config=context_config)


@pytest.fixture
def writeback(settings_store, short_term, semantic) -> MemoryWriteback:
    return MemoryWriteback(settings_store, short_term, semantic)


@pytest.fixture
def writeback_queue(writeback) -> WritebackQueue:
    return WritebackQueue(writeback, maxsize=10, workers=2)


@pytest.fixture
def service(settings_store, short_term, semantic, episodic, assembler, writeback_queue) -> MemoryService:
    return MemoryService(
        settings_store=settings_store,
        short_term=short_term,
        semantic=semantic,
        episodic=episodic,
        assembler=assembler,
        writeback_queue=writeback_queue,
    )
