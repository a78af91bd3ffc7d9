"""
Hybrid Context Schemas

Transient retrieval types (dataclasses) and persisted conversation
records (pydantic models).
"""

from .candidate import (
    SourceType,
    SOURCE_PRIORITY,
    Tier,
    Candidate,
    ScoredCandidate,
    HybridResult,
)
from .conversation import (
    Role,
    Query,
    Message,
    Memory,
    ConversationSummary,
    ThreadActivity,
    ThreadDigest,
    generate_memory_id,
    utcnow,
)

__all__ = [
    "SourceType",
    "SOURCE_PRIORITY",
    "Tier",
    "Candidate",
    "ScoredCandidate",
    "HybridResult",
    "Role",
    "Query",
    "Message",
    "Memory",
    "ConversationSummary",
    "ThreadActivity",
    "ThreadDigest",
    "generate_memory_id",
    "utcnow",
]
