"""Hybrid keyword + semantic search."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from lifedigest.embedding.encoder import EmbeddingModel
from lifedigest.index.fusion import FusedResult, reciprocal_rank_fusion
from lifedigest.index.keyword import SQLiteKeywordStore
from lifedigest.index.vectors import SQLiteVectorStore

LOGGER = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
DEFAULT_SCORE_THRESHOLD = 0.7


@dataclass(slots=True)
class SearchResponse:
    results: List[FusedResult] = field(default_factory=list)
    keyword_count: int = 0
    semantic_count: int = 0
    limit: int = DEFAULT_LIMIT


def collapse_by_file(hits: List[dict]) -> List[dict]:
    """Keep the best-ranked chunk of each file, preserving order."""
    seen: set[str] = set()
    collapsed: List[dict] = []
    for hit in hits:
        if hit["file_path"] in seen:
            continue
        seen.add(hit["file_path"])
        collapsed.append(hit)
    return collapsed


class HybridSearcher:
    """Queries both indexes and merges them with Reciprocal Rank Fusion.

    Keyword documents are one per file while vector documents are one per
    chunk, so both lists are keyed by file path and semantic hits are collapsed
    to their best chunk before fusion.
    """

    def __init__(
        self,
        embedder: EmbeddingModel,
        vectors: SQLiteVectorStore,
        keywords: SQLiteKeywordStore,
    ) -> None:
        self.embedder = embedder
        self.vectors = vectors
        self.keywords = keywords

    def keyword_hits(self, query: str, limit: int) -> List[dict]:
        try:
            return self.keywords.search(query, limit=limit)
        except Exception as exc:
            LOGGER.warning("Keyword search failed: %s", exc)
            return []

    def semantic_hits(self, query: str, limit: int, score_threshold: float) -> List[dict]:
        try:
            embedding = self.embedder.embed_query(query)
            hits = self.vectors.search(embedding, top_k=limit)
        except Exception as exc:
            LOGGER.warning("Semantic search failed: %s", exc)
            return []
        return [hit for hit in hits if hit["score"] >= score_threshold]

    def search(
        self,
        query: str,
        *,
        limit: int = DEFAULT_LIMIT,
        keyword_weight: float = 0.5,
        semantic_weight: float = 0.5,
        score_threshold: float = DEFAULT_SCORE_THRESHOLD,
    ) -> SearchResponse:
        limit = min(max(limit, 1), MAX_LIMIT)
        fetch = limit * 2

        keyword = self.keyword_hits(query, fetch)
        semantic = collapse_by_file(self.semantic_hits(query, fetch, score_threshold))

        results = reciprocal_rank_fusion(
            keyword,
            semantic,
            keyword_weight=keyword_weight,
            semantic_weight=semantic_weight,
            limit=limit,
            key=lambda hit: str(hit["file_path"]),
        )
        return SearchResponse(
            results=results,
            keyword_count=len(keyword),
            semantic_count=len(semantic),
            limit=limit,
        )

    def close(self) -> None:
        self.vectors.close()
        self.keywords.close()
