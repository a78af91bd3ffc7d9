"""
Memory Source

Keyword (and, when embeddings are configured, semantic) match over a
user's persisted memories.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from ...common.cache import CacheService
from ...common.embedding_service import EmbeddingService
from ...common.memory_store import MemoryStore
from ...common.schemas import Candidate, Memory, Query, SourceType, Tier
from ..query_analyzer import QueryClassification
from ..scorer import term_frequency_score
from ..strategy_planner import RetrievalPlan
from .base import SourceExecutor

logger = logging.getLogger("hybrid.retriever.sources.memory")


class MemorySource(SourceExecutor):
    """
    Memory executor.

    Searches the memories visible from the query's thread. A memory saved
    in another thread is only visible when it is tier1.

    Match strength is the fraction of query keywords found in a memory
    (scaled by term frequency), or the cosine similarity when that is
    higher. Raw score = priority x (0.5 + 0.5 x strength).
    """

    source_type = SourceType.MEMORY

    def __init__(
        self,
        store: MemoryStore,
        embedding_service: Optional[EmbeddingService] = None,
        min_relevance: float = 0.25,
        cache: Optional[CacheService] = None,
        ttl_s: float = 60.0,
        negative_ttl_s: float = 300.0,
    ):
        super().__init__(cache=cache, ttl_s=ttl_s, negative_ttl_s=negative_ttl_s)
        self.store = store
        self.embedding = embedding_service
        self.min_relevance = min_relevance

    def cache_scope(
        self, query: Query, classification: QueryClassification, plan: RetrievalPlan
    ) -> Tuple[str, str]:
        return query.user_id, f"thread={query.thread_id}|recent={plan.memory_only_recent}"

    async def fetch(
        self,
        query: Query,
        classification: QueryClassification,
        plan: RetrievalPlan,
        limit: int,
    ) -> List[Candidate]:
        if plan.memory_only_recent:
            memories = await asyncio.to_thread(self.store.list_memories, query.user_id, limit)
            return [self._to_candidate(m, m.priority) for m in memories]

        query_vector = None
        if self.embedding is not None and self.embedding.is_available:
            try:
                query_vector = await asyncio.to_thread(
                    self.embedding.embed_single, classification.search_text
                )
            except Exception as e:
                logger.warning("Query embedding failed, keyword match only: %s", e)

        return await asyncio.to_thread(
            self._search, query.user_id, query.thread_id, classification, limit, query_vector
        )

    def _search(
        self,
        user_id: str,
        thread_id: str,
        classification: QueryClassification,
        limit: int,
        query_vector: Optional[List[float]],
    ) -> List[Candidate]:
        keywords = classification.keywords
        matches: Dict[str, Tuple[Memory, float, int]] = {}

        if keywords:
            for memory, matched in self.store.search_memories(
                user_id, keywords, limit=limit * 3, thread_id=thread_id
            ):
                fraction = matched / len(keywords)
                strength = min(1.0, fraction * term_frequency_score(memory.content, keywords))
                matches[memory.id] = (memory, strength, matched)

        if query_vector is not None:
            stored = self.store.memory_embeddings(user_id, thread_id=thread_id)
            if stored:
                similarities = self.embedding.batch_cosine_similarity(
                    query_vector, [vec for _, vec in stored]
                )
                for (memory, _), similarity in zip(stored, similarities):
                    _, strength, matched = matches.get(memory.id, (memory, 0.0, 0))
                    matches[memory.id] = (memory, max(strength, similarity), matched)

        candidates = []
        for memory, strength, matched in matches.values():
            # tier1 memories pass on any keyword hit
            if strength < self.min_relevance and not (memory.tier == Tier.TIER1 and matched):
                continue
            candidates.append(self._to_candidate(memory, memory.priority * (0.5 + 0.5 * strength)))

        candidates.sort(key=lambda c: c.raw_score, reverse=True)
        logger.debug("Memory matched %d of %d candidates", len(candidates[:limit]), len(matches))
        return candidates[:limit]

    @staticmethod
    def _to_candidate(memory: Memory, raw_score: float) -> Candidate:
        return Candidate(
            source_type=SourceType.MEMORY,
            text=memory.content,
            raw_score=raw_score,
            tier=memory.tier,
            priority=memory.priority,
            timestamp=memory.created_at,
            is_correction=memory.kind == "correction",
            metadata={"memory_id": memory.id, "kind": memory.kind, "thread_id": memory.thread_id},
        )
