"""
Conversation Schemas

Persisted records (memories, messages, summaries) and the per-request
query. Persisted records are pydantic models so they validate on the way
in and out of the store.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .candidate import Tier


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_memory_id() -> str:
    """Generate a memory ID: mem_<12 hex chars>"""
    return f"mem_{uuid.uuid4().hex[:12]}"


class Role(str, Enum):
    """Conversation roles"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Query(BaseModel):
    """A submitted query; immutable once created"""
    model_config = ConfigDict(frozen=True)

    text: str
    thread_id: str
    user_id: str
    timestamp: datetime = Field(default_factory=utcnow)


class Message(BaseModel):
    """One conversation turn"""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    thread_id: Optional[str] = None


class Memory(BaseModel):
    """A persisted fact. Never hard-deleted, only tombstoned."""
    id: str = Field(default_factory=generate_memory_id)
    user_id: str
    thread_id: Optional[str] = None
    content: str = Field(..., min_length=1)
    tier: Tier = Tier.TIER3
    priority: float = Field(default=0.5, ge=0.0, le=1.0)
    kind: str = Field(default="fact", description="fact, preference or correction")
    created_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class ConversationSummary(BaseModel):
    """Rolling summary of a thread, refreshed by the audit job"""
    thread_id: str
    summary_text: str
    importance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    generated_at: datetime = Field(default_factory=utcnow)
    next_due_at: datetime = Field(default_factory=utcnow)
    is_fallback: bool = False

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        """Past its importance-derived refresh time"""
        return (now or utcnow()) >= self.next_due_at


class ThreadActivity(BaseModel):
    """Aggregate activity of one thread, read by the audit job"""
    thread_id: str
    user_id: str
    message_count: int = 0
    token_count: int = 0
    last_message_at: Optional[datetime] = None


class ThreadDigest(BaseModel):
    """What the assembler needs to summarize another thread"""
    thread_id: str
    last_activity: datetime
    summary: Optional[ConversationSummary] = None
    messages: List[Message] = Field(default_factory=list)
