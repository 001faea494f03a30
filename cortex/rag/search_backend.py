"""Search backend interface and the in-memory fallback implementation."""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Sequence

import numpy as np

from cortex.models import Chunk, SearchResult
from cortex.rag.text_utils import tokenize


def prefix_cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity over the shared prefix of two vectors.

    Vectors produced by different embedding backends may differ in length;
    only the first ``min(len(a), len(b))`` components are compared.
    """
    n = min(len(a), len(b))
    if n == 0:
        return 0.0
    va = np.asarray(a[:n], dtype=np.float64)
    vb = np.asarray(b[:n], dtype=np.float64)
    denominator = float(np.linalg.norm(va) * np.linalg.norm(vb)) or 1.0
    return float(np.dot(va, vb) / denominator)


def cosine_scan(
    chunks: Iterable[Chunk], query_embedding: Sequence[float], limit: int
) -> List[SearchResult]:
    """Exhaustive similarity scan, best first."""
    hits = [
        SearchResult(chunk=chunk, score=prefix_cosine(query_embedding, chunk.embedding))
        for chunk in chunks
    ]
    hits.sort(key=lambda hit: hit.score, reverse=True)
    return hits[:limit]


def substring_match_score(text: str, tokens: Sequence[str]) -> int:
    """Number of query tokens that occur anywhere in ``text``."""
    haystack = text.lower()
    return sum(1 for token in tokens if token in haystack)


class SearchBackend(ABC):
    """Chunk store with keyword and vector search.

    Subclasses keep ``chunks`` as the source of truth and may maintain
    derived structures, refreshed through ``_changed``.
    """

    name = "base"

    def __init__(self) -> None:
        self.chunks: Dict[str, Chunk] = {}

    def insert(self, chunk: Chunk) -> None:
        self.chunks[chunk.id] = chunk
        self._changed()

    def remove(self, chunk_id: str) -> None:
        if self.chunks.pop(chunk_id, None) is not None:
            self._changed()

    def clear(self) -> None:
        self.chunks.clear()
        self._changed()

    def _changed(self) -> None:
        pass

    @abstractmethod
    def keyword_search(self, query: str, limit: int) -> List[SearchResult]:
        """Rank chunks by lexical relevance; zero-score chunks are omitted."""

    @abstractmethod
    def vector_search(
        self, query_embedding: Sequence[float], limit: int
    ) -> List[SearchResult]:
        """Rank chunks by cosine similarity to ``query_embedding``."""


class MemorySearchBackend(SearchBackend):
    """Degraded backend used when the structured engine cannot be loaded."""

    name = "memory"

    def keyword_search(self, query: str, limit: int) -> List[SearchResult]:
        tokens = tokenize(query)
        if not tokens:
            return []
        hits = []
        for chunk in self.chunks.values():
            score = substring_match_score(chunk.content, tokens)
            if score > 0:
                hits.append(SearchResult(chunk=chunk, score=float(score)))
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]

    def vector_search(
        self, query_embedding: Sequence[float], limit: int
    ) -> List[SearchResult]:
        return cosine_scan(self.chunks.values(), query_embedding, limit)
