"""In-process document store.

Used for tests and single-process deployments. Documents are deep-copied on
the way in and out so callers can never mutate stored state by reference.
"""

import copy
from typing import Any, Dict, List, Optional, Sequence

from recall.store.base import Document, DocumentStore, FieldFilter, OrderBy, apply_query


class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        data = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(data) if data is not None else None

    async def query(
        self,
        collection: str,
        filters: Optional[Sequence[FieldFilter]] = None,
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        documents = [
            Document(id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in self._collections.get(collection, {}).items()
        ]
        return apply_query(documents, filters=filters, order_by=order_by, limit=limit)

    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        merge: bool = False,
    ) -> None:
        docs = self._collections.setdefault(collection, {})
        if merge and doc_id in docs:
            docs[doc_id].update(copy.deepcopy(fields))
        else:
            docs[doc_id] = copy.deepcopy(fields)

    async def delete(self, collection: str, doc_id: str) -> bool:
        return self._collections.get(collection, {}).pop(doc_id, None) is not None

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))
