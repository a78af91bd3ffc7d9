"""
Source Executors

One executor per retrieval source, sharing the cache-then-upstream
contract of SourceExecutor.
"""

from .base import SourceExecutor
from .memory import MemorySource
from .vector import VectorSource
from .web import WebSource, classify_host

__all__ = [
    "SourceExecutor",
    "MemorySource",
    "VectorSource",
    "WebSource",
    "classify_host",
]
