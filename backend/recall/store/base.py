"""
Abstract base class for document store implementations.

The memory tiers persist everything through this interface: keyed documents
grouped in collections, filtered queries, ordered queries, and single
document upserts. No joins and no multi-document transactions are assumed.

To add a new backend:
1. Create a new file in recall/store/ (e.g., firestore_store.py)
2. Implement the DocumentStore interface
3. Register it in the factory (recall/store/factory.py)
4. Set STORE__BACKEND in config
"""

import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from recall.core.errors import StoreUnavailable

T = TypeVar("T")

OrderBy = Sequence[Tuple[str, str]]  # (field, "asc" | "desc")

_ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}T")


@dataclass(frozen=True)
class FieldFilter:
    """A single ``field <op> value`` predicate."""

    field: str
    op: str
    value: Any

    OPS = ("==", "!=", "<", "<=", ">", ">=")

    def __post_init__(self) -> None:
        if self.op not in self.OPS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, data: Dict[str, Any]) -> bool:
        if self.field not in data:
            return False
        left = _comparable(data[self.field])
        right = _comparable(self.value)
        if self.op == "==":
            return left == right
        if self.op == "!=":
            return left != right
        if left is None or right is None:
            return False
        try:
            if self.op == "<":
                return left < right
            if self.op == "<=":
                return left <= right
            if self.op == ">":
                return left > right
            return left >= right
        except TypeError:
            return False


def where(field: str, op: str, value: Any) -> FieldFilter:
    return FieldFilter(field, op, value)


@dataclass
class Document:
    id: str
    data: Dict[str, Any]


def _comparable(value: Any) -> Any:
    """Parse ISO-8601 strings so stored timestamps compare chronologically."""
    if isinstance(value, str) and _ISO_DATETIME.match(value):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


def apply_query(
    documents: Iterable[Document],
    filters: Optional[Sequence[FieldFilter]] = None,
    order_by: Optional[OrderBy] = None,
    limit: Optional[int] = None,
) -> List[Document]:
    """Filter, sort and truncate documents in process.

    Shared by backends that cannot push predicates down to the server.
    Documents missing an ordering field sort last in either direction.
    """
    results = [d for d in documents if all(f.matches(d.data) for f in filters or ())]

    # Stable sorts applied from the least to the most significant key
    for field, direction in reversed(list(order_by or ())):
        if direction not in ("asc", "desc"):
            raise ValueError(f"Unsupported sort direction: {direction}")
        present = [d for d in results if d.data.get(field) is not None]
        missing = [d for d in results if d.data.get(field) is None]
        present.sort(key=lambda d: _comparable(d.data[field]), reverse=direction == "desc")
        results = present + missing

    if limit is not None:
        results = results[: max(0, limit)]
    return results


class DocumentStore(ABC):
    """
    Keyed document persistence with filtered and ordered queries.

    Implementations raise StoreUnavailable for backend failures.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the document fields, or None when absent."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Optional[Sequence[FieldFilter]] = None,
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        """Return matching documents, optionally ordered and truncated."""

    @abstractmethod
    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        merge: bool = False,
    ) -> None:
        """Upsert one document atomically.

        With ``merge=True`` the given fields are merged into the existing
        document; otherwise the document is replaced.
        """

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete one document. Returns whether it existed."""

    async def close(self) -> None:
        """Release backend resources."""


class TimeoutDocumentStore(DocumentStore):
    """
    Decorator that bounds every call of an inner store.

    Timeouts and unexpected backend exceptions surface as StoreUnavailable so
    callers only ever handle one failure type.
    """

    def __init__(self, inner: DocumentStore, timeout: float) -> None:
        self.inner = inner
        self.timeout = timeout

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except StoreUnavailable:
            raise
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(f"{operation} timed out after {self.timeout}s") from e
        except (ConnectionError, OSError) as e:
            raise StoreUnavailable(f"{operation} failed: {e}") from e

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return await self._call(f"get {collection}", self.inner.get(collection, doc_id))

    async def query(
        self,
        collection: str,
        filters: Optional[Sequence[FieldFilter]] = None,
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        return await self._call(
            f"query {collection}",
            self.inner.query(collection, filters=filters, order_by=order_by, limit=limit),
        )

    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        merge: bool = False,
    ) -> None:
        await self._call(f"set {collection}", self.inner.set(collection, doc_id, fields, merge=merge))

    async def delete(self, collection: str, doc_id: str) -> bool:
        return await self._call(f"delete {collection}", self.inner.delete(collection, doc_id))

    async def close(self) -> None:
        await self.inner.close()
