"""
Embedding Service

Vectorizes queries (and saved memories) before a nearest-neighbour lookup.
Uses the OpenAI embeddings API by default; any adapter exposing
get_embedding(texts) can be injected instead.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

logger = logging.getLogger("hybrid.common.embedding_service")


class OpenAIEmbeddingAdapter:
    """Thin adapter over the OpenAI embeddings endpoint"""

    def __init__(self, api_key: str, model: str = "text-embedding-3-small", timeout: float = 10.0):
        from openai import OpenAI

        self._client = OpenAI(api_key=api_key, timeout=timeout)
        self._model = model

    def get_embedding(self, texts: List[str]) -> np.ndarray:
        response = self._client.embeddings.create(model=self._model, input=texts)
        vectors = np.array([item.embedding for item in response.data], dtype=np.float32)
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return vectors / norms


class EmbeddingService:
    """
    Embedding generation for the retrieval core.

    Vectors are L2 normalized, so a dot product equals cosine similarity.
    Single-text embeddings are kept in an LRU cache with a TTL; concurrent
    callers asking for the same uncached text share one upstream call.
    """

    def __init__(
        self,
        mode: str = "openai",
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        adapter=None,
        cache_size: int = 1000,
        cache_ttl_s: float = 604800,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._mode = mode
        self._model = model
        self._adapter = adapter
        self._cache_size = cache_size
        self._cache_ttl_s = cache_ttl_s
        self._clock = clock
        self._cache: "OrderedDict[str, Tuple[float, List[float]]]" = OrderedDict()
        self._cache_lock = threading.Lock()
        self._inflight: Dict[str, threading.Lock] = {}

        if self._adapter is None:
            self._init_adapter(mode, model, api_key)

    def _init_adapter(self, mode: str, model: str, api_key: Optional[str]) -> None:
        """Initialize the underlying embedding adapter"""
        if mode == "none":
            logger.info("Embedding disabled by configuration")
            return
        if mode != "openai":
            logger.warning("Unsupported embedding mode: %s", mode)
            return
        if not api_key:
            logger.info("OpenAI API key not provided, embedding service unavailable")
            return
        try:
            self._adapter = OpenAIEmbeddingAdapter(api_key=api_key, model=model)
            logger.info("Embedding service initialized with mode=%s, model=%s", mode, model)
        except ImportError:
            logger.warning("openai package not installed")
        except Exception as e:
            logger.warning("Failed to initialize embedding adapter: %s", e)

    @property
    def is_available(self) -> bool:
        """Check if embedding service is available"""
        return self._adapter is not None

    def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of strings to embed

        Returns:
            List of embedding vectors (L2 normalized)
        """
        if not self._adapter:
            raise RuntimeError("Embedding adapter not initialized")

        if not texts:
            return []

        embeddings = self._adapter.get_embedding(texts)

        if isinstance(embeddings, np.ndarray):
            return embeddings.tolist()
        return [list(e) for e in embeddings]

    def embed_single(self, text: str) -> List[float]:
        """
        Embed one text, served from the cache when possible.

        The cache key is the text with whitespace collapsed.
        """
        if not text:
            raise ValueError("Cannot embed empty text")
        if self._cache_size <= 0:
            return self.embed([text])[0]

        key = " ".join(text.split())
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        with self._cache_lock:
            key_lock = self._inflight.setdefault(key, threading.Lock())
        try:
            with key_lock:
                cached = self._cache_get(key)
                if cached is not None:
                    return cached
                vector = self.embed([text])[0]
                self._cache_put(key, vector)
                return list(vector)
        finally:
            with self._cache_lock:
                self._inflight.pop(key, None)

    def _cache_get(self, key: str) -> Optional[List[float]]:
        now = self._clock()
        with self._cache_lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            expires_at, vector = entry
            if now >= expires_at:
                del self._cache[key]
                return None
            self._cache.move_to_end(key)
            return list(vector)

    def _cache_put(self, key: str, vector: List[float]) -> None:
        with self._cache_lock:
            self._cache[key] = (self._clock() + self._cache_ttl_s, list(vector))
            self._cache.move_to_end(key)
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)

    @property
    def cached_count(self) -> int:
        return len(self._cache)

    def cosine_similarity(self, vec1: List[float], vec2: List[float]) -> float:
        """
        Cosine similarity between two vectors, clamped to [0, 1].
        """
        v1 = np.array(vec1, dtype=np.float32)
        v2 = np.array(vec2, dtype=np.float32)

        if v1.shape != v2.shape:
            raise ValueError(f"Vector dimension mismatch: {v1.shape} vs {v2.shape}")

        denom = float(np.linalg.norm(v1) * np.linalg.norm(v2))
        if denom == 0.0:
            return 0.0
        similarity = float(np.dot(v1, v2)) / denom

        # Clamp to valid range (numerical precision issues)
        return max(0.0, min(1.0, similarity))

    def batch_cosine_similarity(
        self,
        query_vec: List[float],
        vectors: List[List[float]]
    ) -> List[float]:
        """
        Cosine similarity between a query and multiple vectors.
        """
        if not vectors:
            return []

        query = np.array(query_vec, dtype=np.float32)
        matrix = np.array(vectors, dtype=np.float32)

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        norms[norms == 0] = 1.0
        similarities = np.dot(matrix, query) / norms

        return np.clip(similarities, 0.0, 1.0).tolist()
