"""
Hybrid Orchestrator

Fans a query out to the planned source executors, joins them under the
overall deadline, then scores, merges and ranks the candidates.

Each executor resolves to a list (never an exception); executors still
running at the deadline are cancelled and contribute nothing.
"""

import asyncio
import logging
import time
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional

from ..common.schemas import (
    Candidate,
    HybridResult,
    Query,
    ScoredCandidate,
    SourceType,
    Tier,
    utcnow,
)
from .query_analyzer import QueryClassification, QueryIntent
from .scorer import RelevanceScorer
from .sources.base import SourceExecutor
from .strategy_planner import MergeStrategy, RetrievalPlan, StrategyPlanner

logger = logging.getLogger("hybrid.retriever.orchestrator")


def compute_confidence(candidates: List[ScoredCandidate], planned: int, responding: int) -> float:
    """
    0 when empty, else
    min(1, 0.6 x mean score + 0.25 x responding/planned + 0.15 x min(1, n/5))
    """
    if not candidates:
        return 0.0
    mean = sum(c.enhanced_score for c in candidates) / len(candidates)
    coverage = responding / planned if planned else 0.0
    volume = min(1.0, len(candidates) / 5)
    return round(min(1.0, 0.6 * mean + 0.25 * coverage + 0.15 * volume), 2)


class HybridOrchestrator:
    """Concurrent multi-source retrieval with independent failure domains"""

    def __init__(
        self,
        planner: StrategyPlanner,
        scorer: RelevanceScorer,
        sources: Dict[SourceType, SourceExecutor],
        max_candidates: int = 12,
    ):
        self.planner = planner
        self.scorer = scorer
        self.sources = dict(sources)
        self.max_candidates = max_candidates

    async def retrieve(
        self,
        query: Query,
        classification: QueryClassification,
        plan: Optional[RetrievalPlan] = None,
        now: Optional[datetime] = None,
    ) -> HybridResult:
        """
        Run one orchestrated retrieval.

        Args:
            query: Submitted query
            classification: Analyzer output
            plan: Retrieval plan; derived from the classification if omitted
            now: Reference time for recency scoring

        Returns:
            HybridResult, fully sorted; empty with confidence 0 when nothing matched
        """
        started = time.monotonic()
        plan = plan or self.planner.plan(classification)
        now = now or utcnow()

        runnable = [s for s in plan.sources if s in self.sources]
        for missing in plan.sources - set(runnable):
            logger.warning("No executor registered for %s source", missing.value)

        by_source, timed_out = await self._fan_out(query, classification, plan, runnable)

        pinned: List[Candidate] = []
        if classification.intent == QueryIntent.CORRECTION:
            pinned.append(self._correction_candidate(query))

        candidates = pinned + [c for found in by_source.values() for c in found]
        scored = self.scorer.score_all(candidates, classification, now)
        ranked = self._merge(scored, plan)

        responding = sum(1 for found in by_source.values() if found)
        breakdown = Counter(c.source_type.value for c in ranked)
        result = HybridResult(
            candidates=ranked,
            layer_breakdown={s.value: breakdown.get(s.value, 0) for s in SourceType},
            confidence=compute_confidence(ranked, len(plan.sources), responding),
            elapsed_ms=int((time.monotonic() - started) * 1000),
            strategy=plan.strategy.value,
            sources_executed=sorted(s.value for s in runnable),
            timed_out=sorted(timed_out),
        )
        logger.debug(
            "Retrieved %d candidates %s in %dms (confidence=%.2f, timed_out=%s)",
            len(ranked), result.layer_breakdown, result.elapsed_ms, result.confidence, timed_out,
        )
        return result

    async def _fan_out(
        self,
        query: Query,
        classification: QueryClassification,
        plan: RetrievalPlan,
        runnable: List[SourceType],
    ):
        if not runnable:
            return {}, []

        tasks = {
            asyncio.create_task(
                self.sources[s].retrieve(query, classification, plan, self.planner.source_limit(plan, s))
            ): s
            for s in runnable
        }
        done, pending = await asyncio.wait(tasks, timeout=plan.overall_deadline_ms / 1000.0)

        timed_out = []
        for task in pending:
            task.cancel()
            timed_out.append(tasks[task].value)
            logger.warning(
                "%s source missed the %dms overall deadline", tasks[task].value, plan.overall_deadline_ms
            )

        by_source: Dict[SourceType, List[Candidate]] = {}
        for task in done:
            source = tasks[task]
            if task.exception() is not None:
                logger.warning("%s source raised: %s", source.value, task.exception())
                by_source[source] = []
                continue
            by_source[source] = list(task.result())
        return by_source, timed_out

    def _merge(self, scored: List[ScoredCandidate], plan: RetrievalPlan) -> List[ScoredCandidate]:
        recency_first = plan.strategy == MergeStrategy.RECENCY_WEIGHTED
        ordered = sorted(scored, key=lambda c: c.sort_key(recency_first))

        pinned = [c for c in ordered if c.is_correction]
        rest = [c for c in ordered if not c.is_correction]
        room = max(0, self.max_candidates - len(pinned))
        kept, dropped = rest[:room], rest[room:]

        if plan.strategy in (MergeStrategy.COMPREHENSIVE, MergeStrategy.AGENTIC_SYNTHESIS):
            kept = self._ensure_coverage(kept, dropped)

        return sorted(pinned + kept, key=lambda c: c.sort_key(recency_first))

    @staticmethod
    def _ensure_coverage(kept: List[ScoredCandidate], dropped: List[ScoredCandidate]) -> List[ScoredCandidate]:
        """Every source with results keeps at least its best candidate"""
        kept = list(kept)
        for candidate in dropped:
            counts = Counter(c.source_type for c in kept)
            if counts.get(candidate.source_type):
                continue
            # Replace the weakest candidate of a source that has spares
            for i in range(len(kept) - 1, -1, -1):
                if counts[kept[i].source_type] > 1:
                    kept[i] = candidate
                    break
        return kept

    @staticmethod
    def _correction_candidate(query: Query) -> Candidate:
        return Candidate(
            source_type=SourceType.MEMORY,
            text=query.text.strip(),
            raw_score=1.0,
            tier=Tier.TIER1,
            priority=1.0,
            timestamp=query.timestamp,
            is_correction=True,
            metadata={"pinned": True},
        )
