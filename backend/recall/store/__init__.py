"""Document store abstraction and backends."""

from recall.store.base import Document, DocumentStore, FieldFilter, TimeoutDocumentStore, where
from recall.store.factory import create_document_store, get_document_store
from recall.store.memory_store import InMemoryDocumentStore

__all__ = [
    "Document",
    "DocumentStore",
    "FieldFilter",
    "InMemoryDocumentStore",
    "TimeoutDocumentStore",
    "create_document_store",
    "get_document_store",
    "where",
]
