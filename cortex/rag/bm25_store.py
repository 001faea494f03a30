from typing import Dict, List, Mapping, Optional

from rank_bm25 import BM25Plus

from cortex.models import Chunk, SearchResult
from cortex.rag.text_utils import tokenize


class BM25Store:
    def __init__(self, chunks: Mapping[str, Chunk]):
        """BM25 keyword index over a chunk mapping owned by the caller.

        The index is rebuilt lazily on the first search after ``mark_dirty``.
        """
        self.chunks = chunks
        self.bm25: Optional[BM25Plus] = None
        self.chunk_map: Dict[int, Chunk] = {}  # Maps BM25 row to chunk
        self.token_sets: Dict[int, set] = {}
        self._dirty = True

    def _tokenize(self, chunk: Chunk) -> List[str]:
        """Content, keywords and file path all contribute terms."""
        return tokenize(chunk.content) + list(chunk.keywords) + tokenize(chunk.file_path)

    def mark_dirty(self) -> None:
        self._dirty = True

    def _rebuild(self) -> None:
        corpus = []
        valid_chunks = []
        for chunk in self.chunks.values():
            tokens = self._tokenize(chunk)
            # BM25 cannot score empty documents
            if tokens:
                corpus.append(tokens)
                valid_chunks.append(chunk)
        if corpus:
            self.bm25 = BM25Plus(corpus)
            self.chunk_map = {i: c for i, c in enumerate(valid_chunks)}
            self.token_sets = {i: set(tokens) for i, tokens in enumerate(corpus)}
        else:
            self.bm25 = None
            self.chunk_map = {}
            self.token_sets = {}
        self._dirty = False

    def search(self, query: str, top_k: int = 25) -> List[SearchResult]:
        """Search using BM25 keyword matching.

        Only chunks sharing at least one term with the query are ranked;
        BM25+ gives every other document a small positive floor.
        """
        if self._dirty:
            self._rebuild()
        if self.bm25 is None or not self.chunk_map:
            return []

        tokenized_query = tokenize(query)
        if not tokenized_query:
            return []
        query_terms = set(tokenized_query)
        scores = self.bm25.get_scores(tokenized_query)

        candidates = [
            i for i in range(len(scores))
            if scores[i] > 0 and self.token_sets[i] & query_terms
        ]
        candidates.sort(key=lambda i: scores[i], reverse=True)
        return [
            SearchResult(chunk=self.chunk_map[i], score=float(scores[i]))
            for i in candidates[:top_k]
        ]
