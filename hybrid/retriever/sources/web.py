"""
Web Source

Live web search with freshness control:
1. Pick a freshness window from the query (past day / week / default)
2. Widen the upstream request (pd -> pw -> pm) while too few results return
3. Post-filter to the window, widening it instead of returning nothing
4. Score by title/snippet term matches, age and domain authority
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from ...common.cache import CacheService
from ...common.schemas import Candidate, Query, SourceType, Tier, utcnow
from ...common.web_search import BraveSearchClient, WebResult
from ..query_analyzer import QueryClassification
from ..strategy_planner import RetrievalPlan
from .base import SourceExecutor

logger = logging.getLogger("hybrid.retriever.sources.web")

# Freshness parameter -> maximum result age
FRESHNESS_MAX_AGE: Dict[str, timedelta] = {
    "pd": timedelta(days=1),
    "pw": timedelta(days=7),
    "pm": timedelta(days=31),
    "py": timedelta(days=365),
}
FRESHNESS_ORDER = ["pd", "pw", "pm", "py"]

# Upstream requests never widen past a month
UPSTREAM_CASCADE = ["pd", "pw", "pm"]


def classify_host(host: str) -> Tier:
    """Domain authority tier of a web host"""
    host = (host or "").lower()
    if WebSource.TIER1_HOSTS.search(host):
        return Tier.TIER1
    if WebSource.TIER2_HOSTS.search(host):
        return Tier.TIER2
    return Tier.TIER3


class WebSource(SourceExecutor):
    """Web executor backed by the Brave Search API"""

    source_type = SourceType.WEB

    TIER1_HOSTS = re.compile(
        r"(^|\.)(reuters|apnews|bbc|ft|wsj|bloomberg|nytimes|theguardian|nature|science|"
        r"arxiv|nasa|who|nih|ecdc)\.|(^|\.)ec\.europa\."
    )
    TIER2_HOSTS = re.compile(
        r"(^|\.)(theverge|techcrunch|wired|engadget|zdnet|infoq|anandtech|semianalysis|"
        r"financialpost|investors|seekingalpha)\."
    )

    RECENCY_LANGUAGE = re.compile(
        r"\b(today|tonight|right now|breaking|latest|just (happened|announced|released)|"
        r"this (morning|afternoon|evening)|yesterday|current(ly)?)\b"
    )
    WEEK_LANGUAGE = re.compile(r"\b(this|past|last) week\b|\brecent(ly)?\b|\bfew days\b")

    def __init__(
        self,
        client: BraveSearchClient,
        result_count: int = 10,
        default_freshness: str = "pw",
        min_results: int = 3,
        cache: Optional[CacheService] = None,
        ttl_s: float = 1800.0,
        negative_ttl_s: float = 300.0,
        clock=utcnow,
    ):
        super().__init__(cache=cache, ttl_s=ttl_s, negative_ttl_s=negative_ttl_s)
        self.client = client
        self.result_count = result_count
        self.default_freshness = default_freshness
        self.min_results = min_results
        self._clock = clock

    def cache_scope(
        self, query: Query, classification: QueryClassification, plan: RetrievalPlan
    ) -> Tuple[str, str]:
        return "global", f"freshness={self.select_freshness(classification)}"

    def select_freshness(self, classification: QueryClassification) -> str:
        text = classification.original.lower()
        if classification.explicit_search or self.RECENCY_LANGUAGE.search(text):
            return "pd"
        if self.WEEK_LANGUAGE.search(text):
            return "pw"
        return self.default_freshness

    async def fetch(
        self,
        query: Query,
        classification: QueryClassification,
        plan: RetrievalPlan,
        limit: int,
    ) -> List[Candidate]:
        freshness = self.select_freshness(classification)
        results = await self._search_with_cascade(classification.search_text, freshness)
        if not results:
            return []

        now = self._clock()
        filtered = self.filter_by_freshness(results, freshness, now)
        terms = classification.keywords

        candidates = [self._to_candidate(r, terms, now) for r in self._dedupe(filtered)]
        candidates.sort(key=lambda c: c.raw_score, reverse=True)
        return candidates[:limit]

    async def _search_with_cascade(self, text: str, freshness: str) -> List[WebResult]:
        """Widen the upstream freshness while fewer than min_results come back"""
        steps = UPSTREAM_CASCADE[UPSTREAM_CASCADE.index(freshness):] if freshness in UPSTREAM_CASCADE else [freshness]

        results: List[WebResult] = []
        seen_urls = set()
        for step in steps:
            batch = await self.client.search(text, count=self.result_count, freshness=step)
            for r in batch:
                if r.url not in seen_urls:
                    seen_urls.add(r.url)
                    results.append(r)
            if len(results) >= self.min_results:
                break
            logger.debug("Web returned %d results at %s, widening", len(results), step)
        return results

    def filter_by_freshness(self, results: List[WebResult], freshness: str, now: datetime) -> List[WebResult]:
        """
        Keep results inside the freshness window.

        Widens day -> week -> month -> year when a window would leave
        nothing, and finally returns the results unfiltered.
        """
        start = FRESHNESS_ORDER.index(freshness) if freshness in FRESHNESS_ORDER else 0
        for window in FRESHNESS_ORDER[start:]:
            limit = FRESHNESS_MAX_AGE[window]
            kept = [r for r in results if r.published is not None and now - r.published <= limit]
            if kept:
                if window != freshness:
                    logger.info("Widened web freshness window from %s to %s", freshness, window)
                return kept
        logger.info("No web results inside any freshness window, returning unfiltered")
        return list(results)

    @staticmethod
    def _dedupe(results: List[WebResult]) -> List[WebResult]:
        seen = set()
        unique = []
        for r in results:
            date = r.published.date().isoformat() if r.published else r.age
            key = f"{r.host}:{date}"
            if key in seen:
                continue
            seen.add(key)
            unique.append(r)
        return unique

    def relevance(self, result: WebResult, terms: List[str], now: datetime) -> float:
        score = 0.5
        title = result.title.lower()
        snippet = result.description.lower()

        score += 0.3 * sum(1 for t in terms if t in title)
        if len(snippet) > 50:
            score += 0.15 * sum(1 for t in terms if t in snippet)

        if result.published is not None:
            age = now - result.published
            if age < timedelta(days=1):
                score += 0.1
            elif age < timedelta(days=7):
                score += 0.05

        if classify_host(result.host) == Tier.TIER1:
            score += 0.1
        return min(1.0, score)

    def _to_candidate(self, result: WebResult, terms: List[str], now: datetime) -> Candidate:
        text = f"{result.title}: {result.description}" if result.description else result.title
        return Candidate(
            source_type=SourceType.WEB,
            text=text,
            raw_score=self.relevance(result, terms, now),
            tier=classify_host(result.host),
            timestamp=result.published,
            origin_host=result.host,
            title=result.title,
            url=result.url,
        )
