"""Exception taxonomy for the memory core.

Collaborator failures (embedding provider, document store) are raised as
typed errors so each tier can decide to degrade instead of failing the
request. Ownership and missing-record outcomes are boolean returns, not
exceptions.
"""

from typing import Optional


class RecallError(Exception):
    """Base class for memory core errors."""


class EmbeddingUnavailable(RecallError):
    """Embedding call failed, timed out, or returned a malformed vector."""


class StoreUnavailable(RecallError):
    """Document store call failed or timed out."""


class DecodeError(RecallError):
    """A stored document does not match the expected record shape."""

    def __init__(self, collection: str, doc_id: Optional[str], detail: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Cannot decode {collection}/{doc_id}: {detail}")


class InvalidConfirmation(RecallError):
    """Bulk deletion was requested without the exact confirmation token."""

    status_code = 400

    def __init__(self, required: str) -> None:
        self.required = required
        super().__init__("Invalid confirmation token")
