"""Hybrid retrieval: keyword and vector results fused into one ranking."""

import logging
from typing import Dict, List

from cortex.models import SearchResult
from cortex.rag.vectorstore import ChunkIndex

logger = logging.getLogger(__name__)


def max_normalize(hits: List[SearchResult]) -> Dict[str, float]:
    """Divide every score by the list's best score.

    The best score is taken as 1 for an empty list. Negative scores (possible
    with dense embeddings) are clamped to 0, so values lie in [0, 1].
    """
    max_score = max((hit.score for hit in hits), default=1.0)
    if max_score <= 0:
        return {hit.chunk.id: 0.0 for hit in hits}
    return {hit.chunk.id: max(hit.score, 0.0) / max_score for hit in hits}


class HybridRetriever:
    """Weighted sum of max-normalized keyword and vector scores.

    Attributes:
        index: Chunk index queried for both candidate lists.
        keyword_weight: Multiplier for normalized keyword scores.
        vector_weight: Multiplier for normalized vector scores.
    """

    def __init__(self, index: ChunkIndex, keyword_weight: float = 0.55, vector_weight: float = 0.45):
        self.index = index
        self.keyword_weight = keyword_weight
        self.vector_weight = vector_weight

    def fuse(
        self,
        keyword_hits: List[SearchResult],
        vector_hits: List[SearchResult],
        limit: int,
    ) -> List[SearchResult]:
        """Merge two candidate lists by chunk id.

        Args:
            keyword_hits: Results from keyword search.
            vector_hits: Results from vector search.
            limit: Number of fused results to keep.

        Returns:
            Fused results, best first.
        """
        chunks = {}
        fused: Dict[str, float] = {}

        for chunk_id, score in max_normalize(keyword_hits).items():
            fused[chunk_id] = fused.get(chunk_id, 0.0) + score * self.keyword_weight
        for chunk_id, score in max_normalize(vector_hits).items():
            fused[chunk_id] = fused.get(chunk_id, 0.0) + score * self.vector_weight
        for hit in [*keyword_hits, *vector_hits]:
            chunks.setdefault(hit.chunk.id, hit.chunk)

        ranked = sorted(fused.items(), key=lambda item: item[1], reverse=True)
        return [
            SearchResult(chunk=chunks[chunk_id], score=score)
            for chunk_id, score in ranked[:limit]
        ]

    async def search(self, query: str, limit: int = 6) -> List[SearchResult]:
        """Return the top ``limit`` chunks for ``query``.

        Each search backend is asked for ``2 * limit`` candidates.
        """
        if limit <= 0:
            return []
        keyword_hits = await self.index.keyword_search(query, limit * 2)
        vector_hits = await self.index.vector_search(query, limit * 2)
        results = self.fuse(keyword_hits, vector_hits, limit)
        logger.debug(
            f"Hybrid search '{query}': {len(keyword_hits)} keyword, "
            f"{len(vector_hits)} vector, {len(results)} fused"
        )
        return results
