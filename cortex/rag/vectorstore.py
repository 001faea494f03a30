"""Chunk index with keyword and vector search.

The structured engine (rank_bm25 + faiss) is preferred; when either
module fails to import, an in-memory fallback store is used instead.
The choice is made once per index and never retried.
"""

import logging
from typing import List, Optional, Sequence

from cortex.models import Chunk, SearchResult
from cortex.rag.embeddings import EmbeddingClient
from cortex.rag.search_backend import MemorySearchBackend, SearchBackend, cosine_scan

try:
    from cortex.rag.bm25_store import BM25Store
    from cortex.rag.faiss_store import FaissStore
except ImportError as e:
    BM25Store = FaissStore = None
    ENGINE_IMPORT_ERROR: Optional[ImportError] = e
else:
    ENGINE_IMPORT_ERROR = None

logger = logging.getLogger(__name__)


class EngineSearchBackend(SearchBackend):
    """BM25 keyword ranking plus an exact faiss inner-product index."""

    name = "engine"

    def __init__(self) -> None:
        super().__init__()
        self.bm25 = BM25Store(self.chunks)
        self.vs = FaissStore(self.chunks)

    def _changed(self) -> None:
        self.bm25.mark_dirty()
        self.vs.mark_dirty()

    def keyword_search(self, query: str, limit: int) -> List[SearchResult]:
        return self.bm25.search(query, top_k=limit)

    def vector_search(
        self, query_embedding: Sequence[float], limit: int
    ) -> List[SearchResult]:
        hits = self.vs.search(query_embedding, top_k=limit)
        if hits is None:
            # Mixed dimensionalities: compare over shared prefixes instead
            return cosine_scan(self.chunks.values(), query_embedding, limit)
        return hits


def create_search_backend() -> SearchBackend:
    """Pick the structured engine when it loaded, else the in-memory store."""
    if ENGINE_IMPORT_ERROR is None:
        try:
            return EngineSearchBackend()
        except Exception as e:
            logger.warning(f"Search engine failed to initialize; using fallback index: {e}")
            return MemorySearchBackend()
    logger.warning(f"Search engine unavailable; using fallback index: {ENGINE_IMPORT_ERROR}")
    return MemorySearchBackend()


class ChunkIndex:
    """Holds embedded chunks and answers keyword and vector queries."""

    def __init__(self, embedder: EmbeddingClient, backend: Optional[SearchBackend] = None):
        self.embedder = embedder
        self.backend = backend if backend is not None else create_search_backend()

    @property
    def backend_name(self) -> str:
        return self.backend.name

    def __len__(self) -> int:
        return len(self.backend.chunks)

    def __contains__(self, chunk_id: str) -> bool:
        return chunk_id in self.backend.chunks

    def get(self, chunk_id: str) -> Optional[Chunk]:
        return self.backend.chunks.get(chunk_id)

    def all_chunks(self) -> List[Chunk]:
        return list(self.backend.chunks.values())

    def insert(self, chunk: Chunk) -> None:
        """Add or overwrite a chunk by id."""
        self.backend.insert(chunk)

    def remove(self, chunk_id: str) -> None:
        """Delete a chunk by id; absent ids are ignored."""
        self.backend.remove(chunk_id)

    def clear(self) -> None:
        self.backend.clear()

    async def keyword_search(self, query: str, limit: int) -> List[SearchResult]:
        if limit <= 0 or not self.backend.chunks:
            return []
        return self.backend.keyword_search(query, limit)

    async def vector_search(self, query: str, limit: int) -> List[SearchResult]:
        if limit <= 0 or not self.backend.chunks:
            return []
        query_embedding = await self.embedder.embed(query)
        return self.backend.vector_search(query_embedding, limit)
