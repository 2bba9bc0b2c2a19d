import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from recall.core.errors import DecodeError

Role = Literal["user", "assistant"]
PrivacyLevel = Literal["full", "limited"]
ImportancePattern = Literal["frequent", "recent", "relevant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class Message(BaseModel):
    """A single conversation turn handed to memory creation."""

    id: str = Field(default_factory=lambda: new_id("msg"))
    user_id: str
    conversation_id: str
    content: str
    role: Role
    timestamp: datetime = Field(default_factory=utcnow)


class ShortTermEntry(BaseModel):
    message_id: str = Field(default_factory=lambda: new_id("msg"))
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    importance: float = Field(default=0.5, ge=0.0, le=1.0)


class ShortTermWindow(BaseModel):
    """Sliding window of the most recent turns for one (user, conversation)."""

    id: str
    user_id: str
    conversation_id: str
    messages: List[ShortTermEntry] = Field(default_factory=list)
    window_size: int = Field(default=12, ge=1)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @staticmethod
    def key(user_id: str, conversation_id: str) -> str:
        return f"{conversation_id}_{user_id}"

    def push(self, entry: ShortTermEntry) -> None:
        """Append and drop the oldest entries beyond ``window_size``."""
        self.messages.append(entry)
        if len(self.messages) > self.window_size:
            self.messages = self.messages[-self.window_size:]
        self.updated_at = utcnow()


class SemanticMemory(BaseModel):
    """Durable fact-like memory with an embedding."""

    id: str = Field(default_factory=lambda: new_id("sem"))
    user_id: str
    conversation_id: Optional[str] = None
    content: str
    embedding: List[float]
    category: str = "general"
    keywords: List[str] = Field(default_factory=list)
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utcnow)
    last_accessed_at: datetime = Field(default_factory=utcnow)
    access_count: int = 0
    related_memory_ids: List[str] = Field(default_factory=list)
    source_message_ids: List[str] = Field(default_factory=list)
    privacy_level: PrivacyLevel = "full"


class ScoredMemory(BaseModel):
    memory: SemanticMemory
    similarity: float


class EpisodicMemory(BaseModel):
    """Compressed summary of a prior conversation."""

    id: str = Field(default_factory=lambda: new_id("epi"))
    user_id: str
    conversation_id: str
    summary: str
    key_topics: List[str] = Field(default_factory=list)
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_accessed_at: Optional[datetime] = None


class MemorySettings(BaseModel):
    """Per-user toggles and limits for the memory tiers."""

    user_id: str
    memory_enabled: bool = True
    short_term_memory_enabled: bool = True
    semantic_memory_enabled: bool = True
    episodic_memory_enabled: bool = True
    data_retention_days: int = Field(default=0, ge=0)  # 0 = forever
    allow_cross_conversation_memory: bool = True
    max_semantic_memories: int = Field(default=1000, ge=1)
    max_episodic_memories: int = Field(default=100, ge=1)
    memory_importance_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # memory_enabled is the master switch over every tier
    def short_term_active(self) -> bool:
        return self.memory_enabled and self.short_term_memory_enabled

    def semantic_active(self) -> bool:
        return self.memory_enabled and self.semantic_memory_enabled

    def episodic_active(self) -> bool:
        return self.memory_enabled and self.episodic_memory_enabled


class MemoryFilter(BaseModel):
    conversation_id: Optional[str] = None
    category: Optional[str] = None
    min_importance: Optional[float] = None


class MemoryStats(BaseModel):
    total_memories: int = 0
    category_counts: Dict[str, int] = Field(default_factory=dict)
    average_importance: float = 0.0
    most_accessed: List[SemanticMemory] = Field(default_factory=list)
    oldest_memory: Optional[datetime] = None
    newest_memory: Optional[datetime] = None


class EpisodicStats(BaseModel):
    total_episodes: int = 0
    oldest_episode: Optional[datetime] = None
    newest_episode: Optional[datetime] = None


class ComponentsUsed(BaseModel):
    short_term: bool = False
    semantic: bool = False
    episodic: bool = False


class ContextResult(BaseModel):
    context: str
    token_count: int
    remaining_tokens: int
    components_used: ComponentsUsed = Field(default_factory=ComponentsUsed)


class ExportSummary(BaseModel):
    total_semantic_memories: int
    total_episodic_memories: int
    total_short_term_contexts: int


class MemoryExport(BaseModel):
    export_date: datetime = Field(default_factory=utcnow)
    user_id: str
    settings: MemorySettings
    semantic: List[SemanticMemory] = Field(default_factory=list)
    episodic: List[EpisodicMemory] = Field(default_factory=list)
    short_term: List[ShortTermWindow] = Field(default_factory=list)
    summary: ExportSummary


class ClearResult(BaseModel):
    cleared_count: int


ModelT = TypeVar("ModelT", bound=BaseModel)


def decode_document(
    model: Type[ModelT],
    collection: str,
    doc_id: Optional[str],
    data: Dict[str, Any],
) -> ModelT:
    """Validate a raw store document into ``model`` or raise DecodeError."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise DecodeError(collection, doc_id, str(e)) from e


def encode_document(record: BaseModel) -> Dict[str, Any]:
    """JSON-safe dict for persistence."""
    return record.model_dump(mode="json")
