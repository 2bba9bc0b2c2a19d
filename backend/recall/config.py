"""Application Configuration.

This module provides a structured configuration system using Pydantic v2 settings.
Settings are organized into nested groups for better organization and type safety.

Every value can be overridden from the environment with the ``__`` nested
delimiter, e.g. ``EMBEDDING__BASE_URL`` or ``MEMORY__SHORT_TERM_WINDOW_SIZE``.
"""

from typing import Optional

from pydantic import BaseModel, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmbeddingSettings(BaseModel):
    """Embedding provider settings (OpenAI-compatible /embeddings endpoint)."""

    base_url: str = "http://localhost:1234/v1"
    model: str = "text-embedding-nomic-embed-text-v1.5"
    api_key: Optional[SecretStr] = None
    dimension: int = 768
    timeout: float = 10.0  # Seconds before the tier degrades


class StoreSettings(BaseModel):
    """Document store selection and call timeouts."""

    # "memory" (single process) or "redis"
    backend: str = "memory"
    timeout: float = 5.0

    # Collection names
    short_term_collection: str = "shortTermMemories"
    semantic_collection: str = "semanticMemories"
    episodic_collection: str = "episodicMemories"
    settings_collection: str = "memorySettings"


class RedisSettings(BaseModel):
    """Redis settings for the document store backend."""

    url: str = "redis://localhost:6379"
    key_prefix: str = "recall:"
    socket_timeout: float = 5.0


class MemoryDefaults(BaseModel):
    """Defaults and thresholds for the three memory tiers."""

    # Short-term window
    short_term_window_size: int = 12
    user_turn_importance: float = 0.7
    assistant_turn_importance: float = 0.6

    # Semantic memory
    similarity_threshold: float = 0.7        # Explicit user search
    relevance_threshold: float = 0.6         # Prompt assembly
    duplicate_threshold: float = 0.9         # Merge instead of insert
    max_semantic_memories: int = 1000

    # Episodic memory
    max_episodic_memories: int = 100

    # Per-user defaults
    data_retention_days: int = 0             # 0 = keep forever
    importance_threshold: float = 0.3

    # Bulk deletion guard
    clear_confirmation_token: str = "CONFIRM_DELETE_ALL_MEMORIES"


class ContextSettings(BaseModel):
    """Context assembly budget settings."""

    default_max_tokens: int = 8000
    short_term_messages: int = 10
    semantic_candidates: int = 10
    episodic_candidates: int = 3

    # Fractions of the remaining budget at each step
    short_term_fraction: float = 0.5
    semantic_fraction: float = 0.3
    episodic_fraction: float = 0.2

    # Minimum remaining budget before a tier is considered
    semantic_min_remaining: int = 500
    episodic_min_remaining: int = 300

    system_prompt: str = (
        "You are a helpful multi-turn AI assistant.\n"
        'Use "Known Facts" (retrieved memories), conversation summaries, and recent turns '
        "to maintain continuity. Prefer recent preferences over older ones. If context is "
        "missing, ask a brief clarifying question. Respect privacy: do not reveal hidden "
        "memories unless the user asks. Be clear, concise, and conversational; naturally "
        "reference prior context without repeating it verbatim."
    )


class WritebackSettings(BaseModel):
    """Background writeback queue settings."""

    queue_size: int = 1000
    workers: int = 2
    semantic_category: str = "preference"
    semantic_importance: float = 0.8
    semantic_confidence: float = 0.9


class RetentionSettings(BaseModel):
    """Background retention pruning."""

    enabled: bool = False
    interval_seconds: int = 3600
    unused_grace_days: int = 1  # Low-importance memories must be at least this old


class LoggingSettings(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    log_dir: str = "./logs"
    log_file: str = "recall.log"
    max_bytes: int = 10 * 1024 * 1024  # 10MB per file
    backup_count: int = 30
    json_format: bool = True


class Settings(BaseSettings):
    """Root application settings.

    Combines all configuration groups into a single settings object.
    Supports loading from environment variables with nested prefixes.

    Usage:
        from recall.config import settings

        # Embedding endpoint
        url = settings.embedding.base_url

        # Context budget fractions
        fraction = settings.context.semantic_fraction
    """

    # Grouped settings
    embedding: EmbeddingSettings = EmbeddingSettings()
    store: StoreSettings = StoreSettings()
    redis: RedisSettings = RedisSettings()
    memory: MemoryDefaults = MemoryDefaults()
    context: ContextSettings = ContextSettings()
    writeback: WritebackSettings = WritebackSettings()
    retention: RetentionSettings = RetentionSettings()
    logging: LoggingSettings = LoggingSettings()

    # Shortcuts used across the memory stores
    @property
    def embedding_dimension(self) -> int:
        return self.embedding.dimension

    @property
    def window_size(self) -> int:
        return self.memory.short_term_window_size

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        env_nested_delimiter="__",
        extra="ignore",
    )


settings = Settings()
