"""
Hybrid Context Service

Facade over the retrieval core: one call turns a user query into a
bounded, provenance-tagged context window. Also exposes the memory
operations (remember, forget, list) and turn recording.

Usage:
    service = HybridContextService.from_config(load_config())
    context = await service.retrieve_context("what's my favorite color", "t1", "u1")
    print(context.render())
"""

import asyncio
import logging
import re
from typing import Dict, List, Optional

from .common.cache import CacheService, InMemoryCache
from .common.config import HybridConfig
from .common.embedding_service import EmbeddingService
from .common.errors import CacheUnavailable
from .common.memory_store import MemoryStore
from .common.schemas import (
    ConversationSummary,
    Memory,
    Message,
    Query,
    Role,
    SourceType,
    ThreadDigest,
    Tier,
)
from .common.vector_index import HttpVectorIndex, InMemoryVectorIndex, VectorIndex
from .common.web_search import BraveSearchClient
from .retriever.assembler import AssembledContext, ContextAssembler
from .retriever.orchestrator import HybridOrchestrator
from .retriever.query_analyzer import QueryAnalyzer, QueryClassification, QueryIntent
from .retriever.scorer import RelevanceScorer
from .retriever.sources import MemorySource, SourceExecutor, VectorSource, WebSource
from .retriever.strategy_planner import StrategyPlanner

logger = logging.getLogger("hybrid.service")

SAVED_MEMORY_PRIORITY = 0.9
CORRECTION_PRIORITY = 0.95

_SAVE_PREFIX = re.compile(
    r"^\s*(hey,?\s+)?((can|could) you\s+|please\s+)*"
    r"(remember|save|store|memorize|note|keep in mind)\s*(this|that|it)?\s*[:,]?\s*(that\s+)?",
    re.IGNORECASE,
)


def extract_memory_content(text: str) -> str:
    """Strip the save request ("please remember that ...") from a memory"""
    content = _SAVE_PREFIX.sub("", text or "", count=1).strip()
    content = content.rstrip("?").strip()
    return content or (text or "").strip()


def _load_corpus(index: InMemoryVectorIndex, path: str) -> None:
    try:
        index.load_corpus(path)
    except (OSError, ValueError, RuntimeError) as e:
        logger.error("Knowledge corpus %s not loaded, vector source will be empty: %s", path, e)


class HybridContextService:
    """Query in, bounded context out. Never raises on the request path."""

    def __init__(
        self,
        config: HybridConfig,
        store: MemoryStore,
        sources: Dict[SourceType, SourceExecutor],
        cache: Optional[CacheService] = None,
        embedding_service: Optional[EmbeddingService] = None,
    ):
        self.config = config
        self.store = store
        self.cache = cache
        self.embedding = embedding_service
        self.analyzer = QueryAnalyzer()
        self.planner = StrategyPlanner(config.retrieval)
        self.scorer = RelevanceScorer(config.scoring)
        self.orchestrator = HybridOrchestrator(
            planner=self.planner,
            scorer=self.scorer,
            sources=sources,
            max_candidates=config.retrieval.max_candidates,
        )
        self.assembler = ContextAssembler(config.assembly)

    @classmethod
    def from_config(
        cls,
        config: HybridConfig,
        store: Optional[MemoryStore] = None,
        vector_index: Optional[VectorIndex] = None,
        web_client: Optional[BraveSearchClient] = None,
        embedding_service: Optional[EmbeddingService] = None,
        cache: Optional[CacheService] = None,
    ) -> "HybridContextService":
        """Wire every collaborator from configuration; any of them may be injected"""
        store = store or MemoryStore(config.storage.db_path)
        if cache is None and config.cache.enabled:
            cache = InMemoryCache()
        embedding = embedding_service or EmbeddingService(
            mode=config.embedding.mode,
            model=config.embedding.model,
            api_key=config.embedding.api_key,
            cache_size=config.embedding.cache_size,
            cache_ttl_s=config.embedding.cache_ttl_s,
        )
        if vector_index is None:
            if config.vector.mode == "qdrant":
                vector_index = HttpVectorIndex(
                    endpoint=config.vector.endpoint,
                    collection=config.vector.collection,
                    api_key=config.vector.api_key,
                )
            else:
                vector_index = InMemoryVectorIndex(embedding)
                if config.vector.corpus_path:
                    _load_corpus(vector_index, config.vector.corpus_path)
        web_client = web_client or BraveSearchClient(
            api_key=config.web.api_key,
            endpoint=config.web.endpoint,
            timeout=config.web.request_timeout_s,
        )

        ttl = config.cache
        sources: Dict[SourceType, SourceExecutor] = {
            SourceType.MEMORY: MemorySource(
                store,
                embedding_service=embedding,
                min_relevance=config.retrieval.memory_min_relevance,
                cache=cache,
                ttl_s=ttl.memory_ttl_s,
                negative_ttl_s=ttl.negative_ttl_s,
            ),
            SourceType.VECTOR: VectorSource(
                vector_index,
                embedding,
                topk=config.retrieval.vector_topk,
                min_similarity=config.retrieval.vector_min_similarity,
                collection=config.vector.collection,
                cache=cache,
                ttl_s=ttl.vector_ttl_s,
                negative_ttl_s=ttl.negative_ttl_s,
            ),
            SourceType.WEB: WebSource(
                web_client,
                result_count=config.web.result_count,
                default_freshness=config.web.default_freshness,
                min_results=config.web.min_results,
                cache=cache,
                ttl_s=ttl.web_ttl_s,
                negative_ttl_s=ttl.negative_ttl_s,
            ),
        }
        logger.info(
            "Hybrid context service ready (vector=%s, embedding=%s, web=%s, cache=%s)",
            config.vector.mode,
            "on" if embedding.is_available else "off",
            "on" if web_client.is_available else "off",
            "on" if cache is not None else "off",
        )
        return cls(config, store, sources, cache=cache, embedding_service=embedding)

    # ------------------------------------------------------------------ #
    # Retrieval
    # ------------------------------------------------------------------ #

    async def retrieve_context(
        self,
        query: str,
        thread_id: str,
        user_id: str,
        token_budget: Optional[int] = None,
    ) -> AssembledContext:
        """
        Assemble the context window for one query.

        Args:
            query: Raw user query
            thread_id: Current conversation thread
            user_id: Owner of the memories
            token_budget: Overrides the configured budget

        Returns:
            AssembledContext; empty (never an exception) when everything fails
        """
        budget = token_budget if token_budget is not None else self.config.assembly.token_budget
        try:
            return await self._retrieve_context(query, thread_id, user_id, budget)
        except Exception as e:
            logger.error("retrieve_context failed for thread %s: %s", thread_id, e, exc_info=True)
            return AssembledContext(blocks=[], total_tokens=0, token_budget=max(0, budget))

    async def _retrieve_context(self, text: str, thread_id: str, user_id: str, budget: int) -> AssembledContext:
        query = Query(text=text, thread_id=thread_id, user_id=user_id)
        recent = await asyncio.to_thread(
            self.store.list_messages, thread_id, self.config.assembly.max_recent_turns
        )
        classification = self.analyzer.analyze(text, recent)

        if classification.intent == QueryIntent.MEMORY_SAVE:
            await self._save_from_query(query)

        plan = self.planner.plan(classification)
        result = await self.orchestrator.retrieve(query, classification, plan)

        if classification.intent == QueryIntent.CORRECTION:
            await self._save_correction(query)

        digests = await asyncio.to_thread(self._recent_digests, user_id, thread_id)
        context = self.assembler.assemble(result, recent, digests, budget, now=query.timestamp)
        await self._persist_fallbacks(context.fallback_summaries)
        logger.info(
            "Context for %s: intent=%s strategy=%s candidates=%d tokens=%d/%d confidence=%.2f",
            thread_id, classification.intent.value, result.strategy, len(result.candidates),
            context.total_tokens, context.token_budget, result.confidence,
        )
        return context

    def classify(self, query: str, recent_turns: Optional[List[Message]] = None) -> QueryClassification:
        return self.analyzer.analyze(query, recent_turns)

    async def _persist_fallbacks(self, summaries: List[ConversationSummary]) -> None:
        for summary in summaries:
            try:
                await asyncio.to_thread(self.store.upsert_summary, summary)
            except Exception as e:
                logger.warning("Failed to persist fallback summary for %s: %s", summary.thread_id, e)

    def _recent_digests(self, user_id: str, thread_id: str) -> List[ThreadDigest]:
        digests = []
        for other_id, last_at in self.store.recent_threads(
            user_id, exclude_thread=thread_id, limit=self.config.assembly.max_summaries
        ):
            summary = self.store.get_summary(other_id)
            messages: List[Message] = []
            if summary is None or summary.is_stale():
                messages = self.store.list_messages(other_id, self.config.audit.summary_message_window)
            digests.append(ThreadDigest(
                thread_id=other_id, last_activity=last_at, summary=summary, messages=messages,
            ))
        return digests

    # ------------------------------------------------------------------ #
    # Memory operations
    # ------------------------------------------------------------------ #

    async def record_message(self, thread_id: str, user_id: str, role: str, content: str) -> Message:
        """Append a conversation turn"""
        return await asyncio.to_thread(self.store.add_message, thread_id, user_id, Role(role), content)

    async def remember(
        self,
        user_id: str,
        content: str,
        thread_id: Optional[str] = None,
        tier: str = "tier1",
        priority: float = SAVED_MEMORY_PRIORITY,
        kind: str = "fact",
    ) -> Memory:
        """Persist an explicit memory and invalidate the user's memory cache"""
        memory = Memory(
            user_id=user_id,
            thread_id=thread_id,
            content=content.strip(),
            tier=Tier.parse(tier, Tier.TIER1),
            priority=priority,
            kind=kind,
        )
        embedding = None
        if self.embedding is not None and self.embedding.is_available:
            try:
                embedding = await asyncio.to_thread(self.embedding.embed_single, memory.content)
            except Exception as e:
                logger.warning("Memory embedding failed, storing without vector: %s", e)

        await asyncio.to_thread(self.store.insert_memory, memory, embedding)
        await self._invalidate_memory_cache(user_id)
        logger.info("Saved memory %s for %s (%s, priority=%.2f)", memory.id, user_id, memory.tier.value, priority)
        return memory

    async def forget(self, user_id: str, memory_id: str) -> bool:
        """Soft-delete a memory owned by user_id"""
        memory = await asyncio.to_thread(self.store.get_memory, memory_id)
        if memory is None or memory.user_id != user_id:
            return False
        deleted = await asyncio.to_thread(self.store.soft_delete_memory, memory_id)
        if deleted:
            await self._invalidate_memory_cache(user_id)
            logger.info("Forgot memory %s for %s", memory_id, user_id)
        return deleted

    async def list_memories(self, user_id: str, limit: int = 20) -> List[Memory]:
        return await asyncio.to_thread(self.store.list_memories, user_id, limit)

    async def _save_from_query(self, query: Query) -> None:
        content = extract_memory_content(query.text)
        try:
            await self.remember(query.user_id, content, thread_id=query.thread_id)
        except Exception as e:
            logger.warning("Failed to save memory from query: %s", e)

    async def _save_correction(self, query: Query) -> None:
        try:
            await self.remember(
                query.user_id, query.text, thread_id=query.thread_id,
                priority=CORRECTION_PRIORITY, kind="correction",
            )
        except Exception as e:
            logger.warning("Failed to save correction: %s", e)

    async def _invalidate_memory_cache(self, user_id: str) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.delete_prefix(f"{SourceType.MEMORY.value}:{user_id}:")
        except CacheUnavailable as e:
            logger.warning("Memory cache unavailable, invalidation skipped: %s", e)
        except Exception as e:
            logger.warning("Memory cache invalidation failed: %s", e)

    async def close(self) -> None:
        for source in self.orchestrator.sources.values():
            closer = getattr(getattr(source, "index", None), "close", None) \
                or getattr(getattr(source, "client", None), "close", None)
            if closer is not None:
                try:
                    await closer()
                except Exception as e:
                    logger.debug("Close failed for %s: %s", source.name, e)
        if self.cache is not None:
            await self.cache.close()
        await asyncio.to_thread(self.store.close)
