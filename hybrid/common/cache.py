"""
Retrieval Cache

Keyed read-through cache fronting each source executor. Entries hold a
candidate tuple or an explicit negative marker and always carry a TTL.
Values are content-addressed by query, so concurrent writers of the same
key are harmless (last writer wins).
"""

import hashlib
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .errors import CacheUnavailable
from .schemas import Candidate


@dataclass(frozen=True)
class CacheEntry:
    """Immutable cache record; replaced, never mutated"""
    key: str
    candidates: Tuple[Candidate, ...]
    expires_at: float
    negative: bool = False

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def normalize_query(text: str) -> str:
    """Lowercase, trim and collapse whitespace"""
    return re.sub(r"\s+", " ", (text or "").strip().lower())


def make_cache_key(source: str, query_text: str, scope: str = "global", extra: str = "") -> str:
    """
    Build a cache key: {source}:{scope}:{sha256(normalized query + extra)[:32]}.

    The scope stays readable so a whole user's entries can be dropped
    with delete_prefix().
    """
    digest = hashlib.sha256(f"{normalize_query(query_text)}|{extra}".encode("utf-8")).hexdigest()
    return f"{source}:{scope}:{digest[:32]}"


class CacheService(ABC):
    """
    Key-value cache with TTL.

    Implementations raise CacheUnavailable when the backend cannot be
    reached; the source executors treat that as a miss and go upstream.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    async def set(self, key: str, candidates: Tuple[Candidate, ...], ttl_s: float) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        pass

    async def set_negative(self, key: str, ttl_s: float) -> None:
        """Record that a query is known to yield nothing"""
        await self.set(key, (), ttl_s)

    async def close(self) -> None:
        return None


class InMemoryCache(CacheService):
    """
    Process-local cache.

    Reads and writes are guarded by a lock so concurrent requests and the
    audit worker thread can share one instance. Once closed, every
    operation raises CacheUnavailable.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_entries: int = 10000):
        self._clock = clock
        self._max_entries = max_entries
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._closed = False
        self.hits = 0
        self.misses = 0

    def _check_open(self) -> None:
        if self._closed:
            raise CacheUnavailable("in-memory cache is closed")

    async def get(self, key: str) -> Optional[CacheEntry]:
        self._check_open()
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.is_expired(now):
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry

    async def set(self, key: str, candidates: Tuple[Candidate, ...], ttl_s: float) -> None:
        self._check_open()
        if ttl_s <= 0:
            return
        entry = CacheEntry(
            key=key,
            candidates=tuple(candidates),
            expires_at=self._clock() + ttl_s,
            negative=not candidates,
        )
        with self._lock:
            if len(self._entries) >= self._max_entries and key not in self._entries:
                self._evict_locked()
            self._entries[key] = entry

    async def delete(self, key: str) -> None:
        self._check_open()
        with self._lock:
            self._entries.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        self._check_open()
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
            self._closed = True

    def _evict_locked(self) -> None:
        """Drop expired entries, then the entry closest to expiry"""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for k in expired:
            del self._entries[k]
        if len(self._entries) >= self._max_entries:
            oldest = min(self._entries.values(), key=lambda e: e.expires_at)
            del self._entries[oldest.key]

    def __len__(self) -> int:
        return len(self._entries)
