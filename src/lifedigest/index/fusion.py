"""Reciprocal Rank Fusion of keyword and semantic result lists."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Sequence

RRF_K = 60

Hit = Mapping[str, Any]


@dataclass(slots=True)
class FusedResult:
    key: str
    file_path: str
    score: float
    text: str = ""
    keyword_score: float | None = None
    semantic_score: float | None = None
    from_keyword: bool = False
    from_semantic: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


def _default_key(hit: Hit) -> str:
    return str(hit["id"])


def reciprocal_rank_fusion(
    keyword_hits: Sequence[Hit],
    semantic_hits: Sequence[Hit],
    *,
    keyword_weight: float = 0.5,
    semantic_weight: float = 0.5,
    k: int = RRF_K,
    limit: int | None = None,
    key: Callable[[Hit], str] = _default_key,
) -> List[FusedResult]:
    """Merge two ranked lists by rank, not by raw score.

    A hit at 0-based rank ``r`` contributes ``weight / (k + r + 1)``. Hits that
    share a key across both lists have their contributions summed. Each result
    keeps the per-source score it received so callers can see why it ranked
    where it did.
    """
    merged: Dict[str, FusedResult] = {}

    for rank, hit in enumerate(keyword_hits):
        hit_key = key(hit)
        if hit_key in merged:
            continue
        score = keyword_weight / (k + rank + 1)
        merged[hit_key] = FusedResult(
            key=hit_key,
            file_path=str(hit.get("file_path", "")),
            score=score,
            text=str(hit.get("text") or hit.get("content") or ""),
            keyword_score=score,
            from_keyword=True,
            metadata=dict(hit.get("metadata") or {}),
        )

    for rank, hit in enumerate(semantic_hits):
        hit_key = key(hit)
        score = semantic_weight / (k + rank + 1)
        existing = merged.get(hit_key)
        if existing is not None:
            if existing.from_semantic:
                continue
            existing.score += score
            existing.semantic_score = score
            existing.from_semantic = True
            continue
        merged[hit_key] = FusedResult(
            key=hit_key,
            file_path=str(hit.get("file_path", "")),
            score=score,
            text=str(hit.get("text") or ""),
            semantic_score=score,
            from_semantic=True,
            metadata=dict(hit.get("metadata") or {}),
        )

    results = sorted(merged.values(), key=lambda result: result.score, reverse=True)
    if limit is not None:
        results = results[:limit]
    return results
