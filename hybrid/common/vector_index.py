"""
Vector Index

Nearest-neighbour lookup over an embedded knowledge corpus. Two backends:
an in-process numpy matrix (pre-embedded documents, batch dot product)
and a Qdrant-compatible HTTP index.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import numpy as np

from .embedding_service import EmbeddingService
from .errors import SourceUpstreamFailure

logger = logging.getLogger("hybrid.common.vector_index")


@dataclass
class VectorHit:
    """A single nearest-neighbour match"""
    id: str
    score: float
    text: str
    payload: Dict[str, Any] = field(default_factory=dict)


def read_corpus(path) -> List[Dict[str, Any]]:
    """
    Read knowledge documents from disk.

    Accepts a .jsonl file (one document per line), or a JSON file holding
    a list of documents or {"documents": [...]}. Each document needs a
    non-empty "text"; an optional "vector" carries a precomputed embedding.

    Raises:
        ValueError: Malformed file or a document without text
        OSError: File cannot be read
    """
    path = Path(path).expanduser()
    with open(path, encoding="utf-8") as f:
        if path.suffix == ".jsonl":
            documents = [json.loads(line) for line in f if line.strip()]
        else:
            data = json.load(f)
            documents = data.get("documents", []) if isinstance(data, dict) else data

    if not isinstance(documents, list):
        raise ValueError(f"{path}: expected a list of documents")
    for i, doc in enumerate(documents):
        if not isinstance(doc, dict) or not str(doc.get("text", "")).strip():
            raise ValueError(f"{path}: document {i} has no text")
    return documents


class VectorIndex(ABC):
    """Read side of the embedding / vector index service"""

    @abstractmethod
    async def search(self, vector: List[float], topk: int, min_score: float = 0.0) -> List[VectorHit]:
        pass

    async def close(self) -> None:
        return None


class InMemoryVectorIndex(VectorIndex):
    """
    Pre-embedded documents held as one normalized matrix.

    At load time every document is embedded once; a query is a single
    matrix-vector product.
    """

    def __init__(self, embedding_service: Optional[EmbeddingService] = None):
        self._embedding = embedding_service
        self._docs: List[Dict[str, Any]] = []
        self._matrix: Optional[np.ndarray] = None

    @property
    def is_loaded(self) -> bool:
        return self._matrix is not None

    @property
    def document_count(self) -> int:
        return len(self._docs)

    def load_documents(self, documents: List[Dict[str, Any]], vectors: Optional[List[List[float]]] = None) -> int:
        """
        Load and embed documents.

        Args:
            documents: Dicts with keys:
                - text: Document text (required)
                - id: Optional identifier
                - any other key is kept as payload (tier, timestamp, title, url)
            vectors: Precomputed vectors; embedded with the service otherwise

        Returns:
            Number of documents loaded
        """
        if not documents:
            logger.warning("No documents to load")
            return 0

        if vectors is None:
            if self._embedding is None:
                raise RuntimeError("No embedding service to embed documents")
            logger.info("Embedding %d documents...", len(documents))
            vectors = self._embedding.embed([d["text"] for d in documents])

        matrix = np.array(vectors, dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0

        self._docs = [dict(d, id=str(d.get("id", i))) for i, d in enumerate(documents)]
        self._matrix = matrix / norms
        logger.info("Loaded %d documents", len(self._docs))
        return len(self._docs)

    async def search(self, vector: List[float], topk: int, min_score: float = 0.0) -> List[VectorHit]:
        if self._matrix is None or not len(self._docs):
            return []

        query = np.array(vector, dtype=np.float32)
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        similarities = np.dot(self._matrix, query / norm)

        if len(similarities) <= topk:
            top_indices = np.argsort(similarities)[::-1]
        else:
            top_indices = np.argpartition(similarities, -topk)[-topk:]
            top_indices = top_indices[np.argsort(similarities[top_indices])[::-1]]

        hits = []
        for idx in top_indices:
            score = float(similarities[idx])
            if score >= min_score:
                doc = self._docs[idx]
                payload = {k: v for k, v in doc.items() if k not in ("id", "text")}
                hits.append(VectorHit(id=doc["id"], score=score, text=doc["text"], payload=payload))
        return hits

    def load_corpus(self, path) -> int:
        """
        Load documents from a corpus file (see read_corpus).

        Vectors stored with the documents are used as-is when every
        document has one; otherwise the whole corpus is embedded.
        """
        documents = read_corpus(path)
        vectors = [d.pop("vector", None) for d in documents]
        if not all(v is not None for v in vectors):
            vectors = None
        logger.info("Loading knowledge corpus from %s", path)
        return self.load_documents(documents, vectors)

    def clear(self) -> None:
        self._docs = []
        self._matrix = None


class HttpVectorIndex(VectorIndex):
    """Qdrant-compatible REST index: POST /collections/{name}/points/search"""

    def __init__(
        self,
        endpoint: str,
        collection: str,
        api_key: str = "",
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._endpoint = endpoint.rstrip("/")
        self._collection = collection
        headers = {"api-key": api_key} if api_key else {}
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout), headers=headers)

    async def search(self, vector: List[float], topk: int, min_score: float = 0.0) -> List[VectorHit]:
        url = f"{self._endpoint}/collections/{self._collection}/points/search"
        body = {
            "vector": list(vector),
            "limit": topk,
            "score_threshold": min_score,
            "with_payload": True,
        }
        try:
            response = await self._client.post(url, json=body)
        except httpx.HTTPError as e:
            raise SourceUpstreamFailure("vector", f"request failed: {e}") from e

        if response.status_code != 200:
            raise SourceUpstreamFailure("vector", response.text[:200], status_code=response.status_code)

        try:
            points = response.json()["result"]
        except (ValueError, KeyError, TypeError) as e:
            raise SourceUpstreamFailure("vector", f"malformed response: {e}") from e

        hits = []
        for point in points or []:
            payload = dict(point.get("payload") or {})
            text = payload.pop("text", "") or payload.pop("content", "")
            if not text:
                continue
            hits.append(VectorHit(
                id=str(point.get("id", "")),
                score=float(point.get("score", 0.0)),
                text=text,
                payload=payload,
            ))
        return hits

    async def close(self) -> None:
        await self._client.aclose()
