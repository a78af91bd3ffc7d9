"""Shared fakes for the retrieval tests."""

import re
from datetime import datetime, timezone

import numpy as np
import pytest

from hybrid.common.embedding_service import EmbeddingService
from hybrid.common.schemas import Query
from hybrid.common.web_search import WebResult

VOCABULARY = ["color", "blue", "favorite", "rust", "async", "python", "tea", "coffee"]

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class BagOfWordsAdapter:
    """Deterministic embedding adapter over a tiny vocabulary"""

    def __init__(self):
        self.calls = 0

    def get_embedding(self, texts):
        self.calls += 1
        rows = []
        for text in texts:
            words = re.findall(r"[a-z]+", text.lower())
            rows.append([float(sum(1 for w in words if w.startswith(v))) for v in VOCABULARY])
        return np.array(rows, dtype=np.float32)


class FakeWebClient:
    """Stands in for BraveSearchClient; records every freshness requested"""

    def __init__(self, results=None, by_freshness=None, error=None):
        self.results = results or []
        self.by_freshness = by_freshness or {}
        self.error = error
        self.requests = []

    @property
    def is_available(self):
        return True

    async def search(self, query, count=10, freshness=None):
        self.requests.append(freshness)
        if self.error is not None:
            raise self.error
        return list(self.by_freshness.get(freshness, self.results))

    async def close(self):
        pass


def web_result(host, title, description="", published=None, path="a"):
    return WebResult(
        title=title,
        url=f"https://{host}/{path}",
        description=description,
        age="",
        published=published,
    )


@pytest.fixture
def embedding():
    return EmbeddingService(adapter=BagOfWordsAdapter())


@pytest.fixture
def query():
    return Query(text="what's my favorite color", thread_id="t1", user_id="u1", timestamp=NOW)


@pytest.fixture
def web_client():
    return FakeWebClient(results=[
        web_result("example.com", "Canberra is the capital of Australia",
                   "Canberra became the capital in 1913 as a compromise between Sydney and Melbourne."),
    ])


@pytest.fixture
def service(web_client):
    from hybrid.common.config import EmbeddingConfig, HybridConfig
    from hybrid.common.memory_store import MemoryStore
    from hybrid.service import HybridContextService

    config = HybridConfig(embedding=EmbeddingConfig(mode="none"))
    svc = HybridContextService.from_config(
        config,
        store=MemoryStore(":memory:"),
        web_client=web_client,
        embedding_service=EmbeddingService(mode="none"),
    )
    yield svc
    svc.store.close()
