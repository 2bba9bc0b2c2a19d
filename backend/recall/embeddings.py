"""
Embedding clients and vector similarity.

Supports any provider exposing an OpenAI-compatible ``/embeddings`` endpoint
(LM Studio, OpenAI, vLLM, Ollama's OpenAI shim). Every call is bounded by a
timeout and every failure surfaces as EmbeddingUnavailable so the memory
tiers can degrade instead of failing the request.
"""

from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Dict, List, Optional, Sequence

import httpx
import numpy as np

from recall.config import settings
from recall.core.errors import EmbeddingUnavailable
from recall.core.logging import get_logger

logger = get_logger(__name__)


class EmbeddingClient(ABC):
    """Maps text to a fixed-length vector."""

    dimension: int

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed one text.

        Raises:
            EmbeddingUnavailable: On timeout, transport error or a vector of
                the wrong length.
        """

    async def close(self) -> None:
        """Release HTTP resources."""


class HTTPEmbeddingClient(EmbeddingClient):
    """Embedding client for OpenAI-compatible embedding APIs."""

    def __init__(
        self,
        base_url: str = "http://localhost:1234/v1",
        model: str = "text-embedding-nomic-embed-text-v1.5",
        dimension: int = 768,
        timeout: float = 10.0,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.dimension = dimension
        self.timeout = timeout

        headers: Dict[str, str] = {}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def embed(self, text: str) -> List[float]:
        try:
            response = await self._client.post(
                f"{self.base_url}/embeddings",
                json={"input": [text], "model": self.model},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise EmbeddingUnavailable(f"Embedding request timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise EmbeddingUnavailable(f"Embedding API returned {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingUnavailable(f"Embedding request failed: {e}") from e

        try:
            # Sort by index to ensure correct order
            items = sorted(data["data"], key=lambda x: x.get("index", 0))
            vector = [float(v) for v in items[0]["embedding"]]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingUnavailable(f"Malformed embedding response: {e}") from e

        if len(vector) != self.dimension:
            raise EmbeddingUnavailable(
                f"Embedding dimension mismatch: expected {self.dimension}, got {len(vector)}"
            )
        return vector

    async def close(self) -> None:
        await self._client.aclose()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 for mismatched lengths or a zero-norm vector.
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def get_embedding_client_for(base_url: str, model: str) -> HTTPEmbeddingClient:
    """Build a client for a specific endpoint using the configured limits."""
    api_key = settings.embedding.api_key
    return HTTPEmbeddingClient(
        base_url=base_url,
        model=model,
        dimension=settings.embedding.dimension,
        timeout=settings.embedding.timeout,
        api_key=api_key.get_secret_value() if api_key else None,
    )


@lru_cache(maxsize=1)
def get_embedding_client() -> EmbeddingClient:
    """Get the process-wide embedding client."""
    logger.info(
        f"Embedding client: {settings.embedding.model} @ {settings.embedding.base_url} "
        f"(dim {settings.embedding.dimension})"
    )
    return get_embedding_client_for(settings.embedding.base_url, settings.embedding.model)
