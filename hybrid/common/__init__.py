"""
Hybrid Context Common Module

Shared infrastructure for the retriever and the audit job.
"""

from .cache import CacheService, InMemoryCache
from .config import HybridConfig, load_config
from .embedding_service import EmbeddingService
from .memory_store import MemoryStore
from .vector_index import HttpVectorIndex, InMemoryVectorIndex, VectorIndex
from .web_search import BraveSearchClient

__all__ = [
    "CacheService",
    "InMemoryCache",
    "HybridConfig",
    "load_config",
    "EmbeddingService",
    "MemoryStore",
    "VectorIndex",
    "InMemoryVectorIndex",
    "HttpVectorIndex",
    "BraveSearchClient",
]
