"""
Vector Source

Embeds the query and runs a nearest-neighbour lookup against the
knowledge index.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from ...common.cache import CacheService
from ...common.embedding_service import EmbeddingService
from ...common.errors import SourceUpstreamFailure
from ...common.schemas import Candidate, Query, SourceType, Tier
from ...common.vector_index import VectorHit, VectorIndex
from ..query_analyzer import QueryClassification
from ..strategy_planner import RetrievalPlan
from .base import SourceExecutor

logger = logging.getLogger("hybrid.retriever.sources.vector")


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class VectorSource(SourceExecutor):
    """Vector executor: tier comes from the payload, tier3 otherwise"""

    source_type = SourceType.VECTOR

    def __init__(
        self,
        index: VectorIndex,
        embedding_service: EmbeddingService,
        topk: int = 10,
        min_similarity: float = 0.6,
        collection: str = "knowledge",
        cache: Optional[CacheService] = None,
        ttl_s: float = 3600.0,
        negative_ttl_s: float = 300.0,
    ):
        super().__init__(cache=cache, ttl_s=ttl_s, negative_ttl_s=negative_ttl_s)
        self.index = index
        self.embedding = embedding_service
        self.topk = topk
        self.min_similarity = min_similarity
        self.collection = collection

    def cache_scope(
        self, query: Query, classification: QueryClassification, plan: RetrievalPlan
    ) -> Tuple[str, str]:
        return self.collection, f"topk={self.topk}"

    async def fetch(
        self,
        query: Query,
        classification: QueryClassification,
        plan: RetrievalPlan,
        limit: int,
    ) -> List[Candidate]:
        if not self.embedding.is_available:
            raise SourceUpstreamFailure("vector", "embedding service unavailable")

        vector = await asyncio.to_thread(self.embedding.embed_single, classification.search_text)
        hits = await self.index.search(vector, min(self.topk, limit), self.min_similarity)
        return [self._to_candidate(hit) for hit in hits]

    @staticmethod
    def _to_candidate(hit: VectorHit) -> Candidate:
        payload = hit.payload
        return Candidate(
            source_type=SourceType.VECTOR,
            text=hit.text,
            raw_score=hit.score,
            tier=Tier.parse(payload.get("tier"), Tier.TIER3),
            timestamp=_parse_timestamp(payload.get("timestamp")),
            title=payload.get("title"),
            url=payload.get("url"),
            metadata={"vector_id": hit.id},
        )
