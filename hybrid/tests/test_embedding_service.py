"""Tests for the embedding service and its query-vector cache."""

import asyncio

import pytest

from conftest import BagOfWordsAdapter
from hybrid.common.embedding_service import EmbeddingService


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestEmbedSingleCache:
    def test_repeat_text_hits_cache(self):
        adapter = BagOfWordsAdapter()
        service = EmbeddingService(adapter=adapter)

        first = service.embed_single("favorite color")
        second = service.embed_single("  favorite   color ")

        assert first == second
        assert adapter.calls == 1
        assert service.cached_count == 1

    def test_cached_vector_is_a_copy(self):
        service = EmbeddingService(adapter=BagOfWordsAdapter())
        service.embed_single("blue tea").append(99.0)
        assert len(service.embed_single("blue tea")) == 8

    def test_entries_expire_after_ttl(self):
        adapter = BagOfWordsAdapter()
        clock = FakeClock()
        service = EmbeddingService(adapter=adapter, cache_ttl_s=60, clock=clock)

        service.embed_single("rust async")
        clock.now += 59
        service.embed_single("rust async")
        assert adapter.calls == 1

        clock.now += 1
        service.embed_single("rust async")
        assert adapter.calls == 2

    def test_least_recently_used_is_evicted(self):
        adapter = BagOfWordsAdapter()
        service = EmbeddingService(adapter=adapter, cache_size=2)

        service.embed_single("blue")
        service.embed_single("tea")
        service.embed_single("blue")
        service.embed_single("coffee")
        assert service.cached_count == 2
        assert adapter.calls == 3

        service.embed_single("blue")
        assert adapter.calls == 3
        service.embed_single("tea")
        assert adapter.calls == 4

    def test_zero_size_disables_cache(self):
        adapter = BagOfWordsAdapter()
        service = EmbeddingService(adapter=adapter, cache_size=0)
        service.embed_single("python")
        service.embed_single("python")
        assert adapter.calls == 2
        assert service.cached_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self):
        adapter = BagOfWordsAdapter()
        service = EmbeddingService(adapter=adapter)

        vectors = await asyncio.gather(*[
            asyncio.to_thread(service.embed_single, "favorite color") for _ in range(4)
        ])

        assert adapter.calls == 1
        assert all(v == vectors[0] for v in vectors)

    def test_empty_text_rejected(self):
        service = EmbeddingService(adapter=BagOfWordsAdapter())
        with pytest.raises(ValueError):
            service.embed_single("")


class TestAvailability:
    def test_mode_none_is_unavailable(self):
        service = EmbeddingService(mode="none")
        assert not service.is_available
        with pytest.raises(RuntimeError):
            service.embed(["anything"])

    def test_openai_without_key_is_unavailable(self):
        assert not EmbeddingService(mode="openai", api_key=None).is_available


def test_cosine_similarity_clamps_and_checks_shape():
    service = EmbeddingService(mode="none")
    assert service.cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert service.cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == 0.0
    assert service.cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    with pytest.raises(ValueError):
        service.cosine_similarity([1.0], [1.0, 0.0])
