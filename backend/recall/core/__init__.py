"""Core modules for logging, errors, metrics, and token estimation."""

from recall.core.errors import (
    DecodeError,
    EmbeddingUnavailable,
    InvalidConfirmation,
    RecallError,
    StoreUnavailable,
)
from recall.core.logging import get_logger, setup_logging
from recall.core.token_utils import estimate_tokens

__all__ = [
    "DecodeError",
    "EmbeddingUnavailable",
    "InvalidConfirmation",
    "RecallError",
    "StoreUnavailable",
    "estimate_tokens",
    "get_logger",
    "setup_logging",
]
