"""
Base Source Executor

Abstract base class for the memory, vector and web executors.
Provides the shared cache-then-upstream flow under a per-source deadline.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from ...common.cache import CacheService, make_cache_key
from ...common.errors import CacheUnavailable, SourceTimeout, SourceUpstreamFailure
from ...common.schemas import Candidate, Query, SourceType
from ..query_analyzer import QueryClassification
from ..strategy_planner import RetrievalPlan

logger = logging.getLogger("hybrid.retriever.sources")


class SourceExecutor(ABC):
    """
    Abstract base class for source executors.

    Each executor must implement:
    - fetch: Call the upstream service and build candidates
    - cache_scope: Scope and extra key material for the cache key

    retrieve() never raises: timeouts and upstream failures are logged
    and become an empty list.
    """

    source_type: SourceType

    def __init__(
        self,
        cache: Optional[CacheService] = None,
        ttl_s: float = 60.0,
        negative_ttl_s: float = 300.0,
    ):
        """
        Initialize executor.

        Args:
            cache: Optional read-through cache
            ttl_s: TTL for non-empty results
            negative_ttl_s: TTL for negative (empty) entries
        """
        self.cache = cache
        self.ttl_s = ttl_s
        self.negative_ttl_s = negative_ttl_s
        self.upstream_calls = 0

    @property
    def name(self) -> str:
        return self.source_type.value

    @abstractmethod
    async def fetch(
        self,
        query: Query,
        classification: QueryClassification,
        plan: RetrievalPlan,
        limit: int,
    ) -> List[Candidate]:
        """
        Call the upstream service.

        May raise SourceUpstreamFailure (or any exception); retrieve()
        converts failures into an empty result.
        """
        pass

    @abstractmethod
    def cache_scope(
        self, query: Query, classification: QueryClassification, plan: RetrievalPlan
    ) -> Tuple[str, str]:
        """Return (scope, extra) for the cache key"""
        pass

    def cache_key(self, query: Query, classification: QueryClassification, plan: RetrievalPlan, limit: int) -> str:
        scope, extra = self.cache_scope(query, classification, plan)
        return make_cache_key(self.name, classification.search_text, scope, f"{extra}|{limit}")

    async def retrieve(
        self,
        query: Query,
        classification: QueryClassification,
        plan: RetrievalPlan,
        limit: int = 10,
    ) -> List[Candidate]:
        """
        Cache lookup, then the upstream call under the per-source deadline.

        Args:
            query: Submitted query
            classification: Analyzer output
            plan: Retrieval plan (deadline, flags)
            limit: Maximum candidates this source may return

        Returns:
            Candidates, possibly empty
        """
        key = self.cache_key(query, classification, plan, limit)

        cached = await self._cache_get(key)
        if cached is not None:
            logger.debug("%s cache hit (%d candidates)", self.name, len(cached))
            return cached

        deadline_s = plan.per_source_deadline_ms / 1000.0
        try:
            self.upstream_calls += 1
            candidates = await asyncio.wait_for(
                self.fetch(query, classification, plan, limit),
                timeout=deadline_s,
            )
        except asyncio.TimeoutError:
            err = SourceTimeout(self.name, plan.per_source_deadline_ms)
            logger.warning("%s", err)
            return []
        except SourceUpstreamFailure as e:
            logger.error("%s", e)
            return []
        except Exception as e:
            logger.warning("%s source failed: %s", self.name, e)
            return []

        candidates = list(candidates)[:limit]
        await self._cache_set(key, candidates)
        return candidates

    async def _cache_get(self, key: str) -> Optional[List[Candidate]]:
        if self.cache is None:
            return None
        try:
            entry = await self.cache.get(key)
        except CacheUnavailable as e:
            logger.warning("Cache unavailable, bypassing: %s", e)
            return None
        except Exception as e:
            logger.error("Cache read failed, bypassing: %s", e)
            return None
        if entry is None:
            return None
        return list(entry.candidates)

    async def _cache_set(self, key: str, candidates: List[Candidate]) -> None:
        if self.cache is None:
            return
        try:
            if candidates:
                await self.cache.set(key, tuple(candidates), self.ttl_s)
            else:
                await self.cache.set_negative(key, self.negative_ttl_s)
        except CacheUnavailable as e:
            logger.warning("Cache unavailable, write skipped: %s", e)
        except Exception as e:
            logger.error("Cache write failed: %s", e)
