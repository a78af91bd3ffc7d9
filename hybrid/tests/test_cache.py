"""Tests for the read-through retrieval cache."""

import pytest

from hybrid.common.cache import InMemoryCache, make_cache_key, normalize_query
from hybrid.common.errors import CacheUnavailable
from hybrid.common.schemas import Candidate, SourceType


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _candidate(text="blue"):
    return Candidate(source_type=SourceType.MEMORY, text=text, raw_score=0.8)


class TestCacheKey:
    def test_normalization_folds_case_and_whitespace(self):
        assert normalize_query("  What's   MY color ") == "what's my color"
        assert make_cache_key("web", "Rust  News") == make_cache_key("web", "rust news")

    def test_scope_and_extra_separate_keys(self):
        base = make_cache_key("memory", "color", "u1")
        assert base.startswith("memory:u1:")
        assert base != make_cache_key("memory", "color", "u2")
        assert base != make_cache_key("memory", "color", "u1", extra="recent=True")


class TestInMemoryCache:
    @pytest.mark.asyncio
    async def test_set_get_and_expiry(self):
        clock = FakeClock()
        cache = InMemoryCache(clock=clock)
        await cache.set("k", (_candidate(),), ttl_s=10)

        entry = await cache.get("k")
        assert entry is not None
        assert entry.candidates[0].text == "blue"
        assert not entry.negative

        clock.now += 10
        assert await cache.get("k") is None
        assert cache.hits == 1 and cache.misses == 1

    @pytest.mark.asyncio
    async def test_negative_entry(self):
        cache = InMemoryCache(clock=FakeClock())
        await cache.set_negative("k", ttl_s=300)
        entry = await cache.get("k")
        assert entry.negative
        assert entry.candidates == ()

    @pytest.mark.asyncio
    async def test_zero_ttl_not_stored(self):
        cache = InMemoryCache(clock=FakeClock())
        await cache.set("k", (_candidate(),), ttl_s=0)
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_delete_prefix_scopes_to_user(self):
        cache = InMemoryCache(clock=FakeClock())
        await cache.set("memory:u1:a", (_candidate(),), 60)
        await cache.set("memory:u1:b", (_candidate(),), 60)
        await cache.set("memory:u2:a", (_candidate(),), 60)

        assert await cache.delete_prefix("memory:u1:") == 2
        assert await cache.get("memory:u2:a") is not None

    @pytest.mark.asyncio
    async def test_closed_cache_raises_unavailable(self):
        cache = InMemoryCache(clock=FakeClock())
        await cache.set("k", (_candidate(),), 60)
        await cache.close()

        assert len(cache) == 0
        with pytest.raises(CacheUnavailable):
            await cache.get("k")
        with pytest.raises(CacheUnavailable):
            await cache.set("k", (_candidate(),), 60)
        with pytest.raises(CacheUnavailable):
            await cache.delete_prefix("k")

    @pytest.mark.asyncio
    async def test_eviction_respects_capacity(self):
        clock = FakeClock()
        cache = InMemoryCache(clock=clock, max_entries=2)
        await cache.set("a", (_candidate(),), 10)
        await cache.set("b", (_candidate(),), 20)
        await cache.set("c", (_candidate(),), 30)

        assert len(cache) == 2
        assert await cache.get("a") is None
        assert await cache.get("c") is not None
