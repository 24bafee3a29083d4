"""Nearest-neighbour search over a VectorStore.

Thresholds are cosine similarities in [0, 1] (distance = 1 - similarity).
top_k must be at least 1 and is capped at max_limit so a caller cannot turn a
search into a full-scope dump.
"""

from __future__ import annotations

import logging

from memoryengine.memory.types import SearchMatch
from memoryengine.pipeline.embedder import EmbeddingGenerator
from memoryengine.store.base import VectorStore, require_scope

logger = logging.getLogger(__name__)


class SimilaritySearch:
    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingGenerator,
        max_limit: int = 50,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.max_limit = max_limit

    def _validate(self, threshold: float, top_k: int) -> int:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {threshold}")
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")
        return min(top_k, self.max_limit)

    async def search(
        self,
        scope_id: str,
        vector: list[float],
        threshold: float,
        top_k: int,
    ) -> list[SearchMatch]:
        require_scope(scope_id)
        limit = self._validate(threshold, top_k)
        matches = await self.store.query(scope_id, vector, threshold, limit)
        logger.debug(
            "Similarity search: scope=%s threshold=%.2f top_k=%d -> %d matches",
            scope_id,
            threshold,
            limit,
            len(matches),
        )
        return matches

    async def search_text(
        self,
        scope_id: str,
        query_text: str,
        threshold: float,
        top_k: int,
    ) -> list[SearchMatch]:
        """Embed *query_text* and search with the resulting vector."""
        require_scope(scope_id)
        self._validate(threshold, top_k)
        vector = await self.embedder.embed_one(query_text)
        return await self.search(scope_id, vector, threshold, top_k)
