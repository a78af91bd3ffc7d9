"""
Strategy Planner

Maps a QueryClassification to a RetrievalPlan: which sources to invoke,
their relative weight and the merge strategy. A pure mapping; it never
blocks and never calls external systems.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet

from ..common.config import RetrievalConfig
from ..common.schemas import SourceType
from .query_analyzer import QueryClassification, QueryIntent

logger = logging.getLogger("hybrid.retriever.strategy_planner")

MEMORY = SourceType.MEMORY
VECTOR = SourceType.VECTOR
WEB = SourceType.WEB


class MergeStrategy(str, Enum):
    WEIGHTED = "weighted"
    RECENCY_WEIGHTED = "recency_weighted"
    COMPREHENSIVE = "comprehensive"
    AGENTIC_SYNTHESIS = "agentic_synthesis"


@dataclass(frozen=True)
class RetrievalPlan:
    """Per-query plan, consumed immediately by the orchestrator"""
    sources: FrozenSet[SourceType]
    strategy: MergeStrategy
    per_source_deadline_ms: int
    overall_deadline_ms: int
    weights: Dict[SourceType, float] = field(default_factory=dict, compare=False)
    memory_only_recent: bool = False  # memory listing: recent memories, no relevance filter
    reason: str = ""

    def weight(self, source: SourceType) -> float:
        return self.weights.get(source, 0.0)

    @property
    def is_empty(self) -> bool:
        return not self.sources


class StrategyPlanner:
    """
    Decision table from intent / query shape to sources and strategy.

    Rows are checked top to bottom:
    - memory_save, memory_list -> memory, weighted
    - correction -> memory (boosted), weighted
    - complex_reasoning -> all three, agentic_synthesis
    - web_search -> vector + web, recency_weighted
    - comparative -> all three, comprehensive
    - personal -> memory + vector, weighted
    - temporal -> vector + web, recency_weighted
    - conversational -> memory, weighted
    - default factual -> vector + web, weighted
    """

    def __init__(self, config: RetrievalConfig):
        self._config = config

    def plan(self, classification: QueryClassification) -> RetrievalPlan:
        weights, strategy, reason, only_recent = self._select(classification)
        plan = RetrievalPlan(
            sources=frozenset(weights),
            strategy=strategy,
            per_source_deadline_ms=self._config.per_source_deadline_ms,
            overall_deadline_ms=self._config.overall_deadline_ms,
            weights=weights,
            memory_only_recent=only_recent,
            reason=reason,
        )
        plan = self.apply_overrides(plan)
        logger.debug(
            "Planned %s via %s (%s)",
            sorted(s.value for s in plan.sources), plan.strategy.value, reason,
        )
        return plan

    def _select(self, c: QueryClassification):
        intent = c.intent

        if intent == QueryIntent.MEMORY_LIST:
            return {MEMORY: 1.0}, MergeStrategy.WEIGHTED, "memory_list", True
        if intent == QueryIntent.MEMORY_SAVE:
            return {MEMORY: 1.0}, MergeStrategy.WEIGHTED, "memory_save", False
        if intent == QueryIntent.CORRECTION:
            return {MEMORY: 1.5}, MergeStrategy.WEIGHTED, "correction", False
        if intent == QueryIntent.COMPLEX_REASONING:
            return (
                {MEMORY: 0.8, VECTOR: 1.0, WEB: 0.8},
                MergeStrategy.AGENTIC_SYNTHESIS, "complex_reasoning", False,
            )
        if intent == QueryIntent.WEB_SEARCH:
            return {VECTOR: 0.5, WEB: 1.0}, MergeStrategy.RECENCY_WEIGHTED, "web_search", False
        if c.is_comparative:
            return (
                {MEMORY: 0.7, VECTOR: 1.0, WEB: 1.0},
                MergeStrategy.COMPREHENSIVE, "comparative", False,
            )
        if c.is_personal:
            return {MEMORY: 1.0, VECTOR: 0.5}, MergeStrategy.WEIGHTED, "personal", False
        if c.is_temporal:
            return {VECTOR: 0.6, WEB: 1.0}, MergeStrategy.RECENCY_WEIGHTED, "temporal", False
        if intent == QueryIntent.CONVERSATIONAL:
            return {MEMORY: 1.0}, MergeStrategy.WEIGHTED, "conversational", False
        return {VECTOR: 1.0, WEB: 0.7}, MergeStrategy.WEIGHTED, "factual", False

    def apply_overrides(self, plan: RetrievalPlan) -> RetrievalPlan:
        """Drop sources disabled in configuration"""
        enabled = {
            MEMORY: self._config.enable_memory,
            VECTOR: self._config.enable_vector,
            WEB: self._config.enable_web,
        }
        kept = frozenset(s for s in plan.sources if enabled[s])
        if kept == plan.sources:
            return plan
        return replace(
            plan,
            sources=kept,
            weights={s: w for s, w in plan.weights.items() if s in kept},
        )

    def source_limit(self, plan: RetrievalPlan, source: SourceType) -> int:
        """How many candidates a source may contribute, scaled by its weight"""
        weight = min(1.0, plan.weight(source))
        return max(1, round(self._config.max_candidates * weight))
