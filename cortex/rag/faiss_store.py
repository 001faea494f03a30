from typing import List, Mapping, Optional, Sequence

import faiss
import numpy as np

from cortex.models import Chunk, SearchResult


class FaissStore:
    def __init__(self, chunks: Mapping[str, Chunk]):
        self.chunks = chunks
        self.index = None
        self.dim: Optional[int] = None
        self.ids: List[str] = []
        self._dirty = True

    @staticmethod
    def _normalize(vecs: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(vecs, axis=1, keepdims=True) + 1e-12
        return vecs / norms

    def mark_dirty(self) -> None:
        self._dirty = True

    def _rebuild(self) -> None:
        self._dirty = False
        self.index = None
        self.dim = None
        self.ids = []
        dims = {len(c.embedding) for c in self.chunks.values()}
        # An exact flat index needs one dimensionality across the store
        if len(dims) != 1 or 0 in dims:
            return
        self.dim = dims.pop()
        self.ids = list(self.chunks.keys())
        embeddings = np.array(
            [self.chunks[i].embedding for i in self.ids], dtype=np.float32
        )
        # Inner product search on normalized vectors = cosine similarity
        self.index = faiss.IndexFlatIP(self.dim)
        self.index.add(self._normalize(embeddings))

    def search(
        self, query_embedding: Sequence[float], top_k: int = 6
    ) -> Optional[List[SearchResult]]:
        """Exact inner-product search.

        Returns None when the store or the query mixes dimensionalities, so
        the caller can fall back to a prefix scan.
        """
        if self._dirty:
            self._rebuild()
        if not self.chunks:
            return []
        if self.index is None or len(query_embedding) != self.dim:
            return None
        q = self._normalize(np.array([query_embedding], dtype=np.float32))
        k = min(top_k, self.index.ntotal)
        if k <= 0:
            return []
        scores, idxs = self.index.search(q, k)
        hits: List[SearchResult] = []
        for score, idx in zip(scores[0].tolist(), idxs[0].tolist()):
            if idx < 0 or idx >= len(self.ids):
                continue
            hits.append(SearchResult(chunk=self.chunks[self.ids[idx]], score=float(score)))
        return hits
