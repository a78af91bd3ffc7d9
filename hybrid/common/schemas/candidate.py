"""
Retrieval Candidates

Unified result types shared by every source executor, the relevance scorer,
the orchestrator and the context assembler. All of them are transient and
live for a single query.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class SourceType(str, Enum):
    """Retrieval sources"""
    MEMORY = "memory"
    VECTOR = "vector"
    WEB = "web"


# Tie-break order when enhanced scores are equal: memory > web > vector
SOURCE_PRIORITY = {
    SourceType.MEMORY: 0,
    SourceType.WEB: 1,
    SourceType.VECTOR: 2,
}


class Tier(str, Enum):
    """Authority / importance classification"""
    TIER1 = "tier1"
    TIER2 = "tier2"
    TIER3 = "tier3"

    @classmethod
    def parse(cls, value: Any, default: "Tier" = None) -> "Tier":
        """Lenient parse accepting 'TIER1', 'tier1', 1 or a Tier"""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and 1 <= value <= 3:
            return cls(f"tier{value}")
        if isinstance(value, str) and value.strip().lower() in {t.value for t in cls}:
            return cls(value.strip().lower())
        return default or cls.TIER3


@dataclass(frozen=True)
class Candidate:
    """A single retrieved item, before scoring"""
    source_type: SourceType
    text: str
    raw_score: float
    tier: Tier = Tier.TIER3
    priority: float = 0.0  # memory only
    timestamp: Optional[datetime] = None
    origin_host: Optional[str] = None  # web only
    title: Optional[str] = None
    url: Optional[str] = None
    is_correction: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        # raw_score is always within [0, 1]
        score = float(self.raw_score or 0.0)
        object.__setattr__(self, "raw_score", max(0.0, min(1.0, score)))
        if not isinstance(self.tier, Tier):
            object.__setattr__(self, "tier", Tier.parse(self.tier))


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate with its composite relevance score (capped at 1.0)"""
    candidate: Candidate
    enhanced_score: float

    @property
    def source_type(self) -> SourceType:
        return self.candidate.source_type

    @property
    def text(self) -> str:
        return self.candidate.text

    @property
    def raw_score(self) -> float:
        return self.candidate.raw_score

    @property
    def is_correction(self) -> bool:
        return self.candidate.is_correction

    def sort_key(self, recency_first: bool = False) -> Tuple:
        """Descending score, then source priority and recency"""
        ts = self.candidate.timestamp
        recency = -ts.timestamp() if ts else float("inf")
        source_rank = SOURCE_PRIORITY[self.candidate.source_type]
        if recency_first:
            return (-self.enhanced_score, recency, source_rank)
        return (-self.enhanced_score, source_rank, recency)


@dataclass
class HybridResult:
    """Unified, fully sorted response of one orchestrated retrieval"""
    candidates: List[ScoredCandidate]
    layer_breakdown: Dict[str, int]
    confidence: float
    elapsed_ms: int
    strategy: str = "weighted"
    sources_executed: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.candidates

    @classmethod
    def empty(cls, strategy: str = "weighted", elapsed_ms: int = 0) -> "HybridResult":
        return cls(
            candidates=[],
            layer_breakdown={s.value: 0 for s in SourceType},
            confidence=0.0,
            elapsed_ms=elapsed_ms,
            strategy=strategy,
        )
