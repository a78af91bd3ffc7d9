"""
Relevance Scorer

Turns raw source scores into a comparable composite:

    enhanced = raw x phrase x position x tier x priority x recency

capped at 1.0. Pure and deterministic; the reference time is passed in.
"""

import re
from datetime import datetime
from typing import List, Optional, Sequence

from ..common.config import ScoringConfig
from ..common.schemas import Candidate, ScoredCandidate, SourceType, Tier, utcnow
from .query_analyzer import QueryClassification

_WORD = re.compile(r"[a-z0-9']+")


def term_frequency_score(text: str, terms: Sequence[str]) -> float:
    """
    Occurrence-count boost: 1.0 for up to 2 hits, 1.2 up to 5, else 1.5.
    """
    lowered = (text or "").lower()
    count = sum(lowered.count(t.lower()) for t in terms if t)
    if count <= 2:
        return 1.0
    if count <= 5:
        return 1.2
    return 1.5


class RelevanceScorer:
    """Multi-factor relevance scoring over candidates from any source"""

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()

    def score(
        self,
        candidate: Candidate,
        classification: QueryClassification,
        now: Optional[datetime] = None,
    ) -> ScoredCandidate:
        now = now or utcnow()
        text = candidate.text.lower()

        enhanced = (
            candidate.raw_score
            * self.phrase_boost(text, classification)
            * self.position_boost(text, classification)
            * self.tier_boost(candidate.tier)
            * self.priority_boost(candidate)
            * self.recency_boost(candidate.timestamp, now)
        )
        return ScoredCandidate(candidate=candidate, enhanced_score=min(1.0, enhanced))

    def score_all(
        self,
        candidates: Sequence[Candidate],
        classification: QueryClassification,
        now: Optional[datetime] = None,
    ) -> List[ScoredCandidate]:
        now = now or utcnow()
        return [self.score(c, classification, now) for c in candidates]

    def phrase_boost(self, text: str, classification: QueryClassification) -> float:
        phrases = list(classification.phrases)
        if not phrases and len(classification.normalized.split()) >= 2:
            phrases = [classification.normalized]

        best = 1.0
        text_words = set(_WORD.findall(text))
        for phrase in phrases:
            phrase = phrase.lower().strip()
            if not phrase:
                continue
            if phrase in text:
                return self.config.phrase_exact
            words = _WORD.findall(phrase)
            if not words:
                continue
            overlap = sum(1 for w in words if w in text_words) / len(words)
            if overlap >= 0.8:
                best = max(best, self.config.phrase_strong)
            elif overlap >= 0.5:
                best = max(best, self.config.phrase_partial)
        return best

    def position_boost(self, text: str, classification: QueryClassification) -> float:
        terms = classification.keywords or classification.phrases
        if not terms or not text:
            return 1.0

        boosts = []
        for term in terms:
            idx = text.find(term.lower())
            if idx < 0:
                boosts.append(1.0)
                continue
            relative = idx / len(text)
            if relative < 0.2:
                boosts.append(self.config.position_early)
            elif relative < 0.5:
                boosts.append(self.config.position_mid)
            else:
                boosts.append(1.0)
        return sum(boosts) / len(boosts)

    def tier_boost(self, tier: Tier) -> float:
        if tier == Tier.TIER1:
            return self.config.tier1
        if tier == Tier.TIER2:
            return self.config.tier2
        return 1.0

    def priority_boost(self, candidate: Candidate) -> float:
        # memory only
        if candidate.source_type != SourceType.MEMORY:
            return 1.0
        if candidate.priority >= 0.9:
            return self.config.priority_high
        if candidate.priority >= 0.8:
            return self.config.priority_mid
        if candidate.priority >= 0.7:
            return self.config.priority_low
        return 1.0

    def recency_boost(self, timestamp: Optional[datetime], now: datetime) -> float:
        if timestamp is None:
            return 1.0
        age_s = (now - timestamp).total_seconds()
        if age_s <= 24 * 3600:
            return self.config.recency_day
        if age_s <= 7 * 24 * 3600:
            return self.config.recency_week
        return 1.0
