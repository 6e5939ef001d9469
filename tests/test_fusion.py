"""Tests for Reciprocal Rank Fusion."""

from __future__ import annotations

import pytest

from lifedigest.index.fusion import reciprocal_rank_fusion


def _hit(doc_id: str, **extra) -> dict:
    return {"id": doc_id, "file_path": f"{doc_id}.md", **extra}


class TestReciprocalRankFusion:
    """Rank-based merging of keyword and semantic hits."""

    def test_shared_document_ranks_first(self) -> None:
        keyword = [_hit("doc1"), _hit("doc2")]
        semantic = [_hit("doc2"), _hit("doc3")]

        results = reciprocal_rank_fusion(keyword, semantic)

        assert [r.key for r in results][0] == "doc2"
        doc2 = results[0]
        assert doc2.score == pytest.approx(0.5 / 62 + 0.5 / 61)
        assert doc2.from_keyword and doc2.from_semantic
        assert doc2.keyword_score == pytest.approx(0.5 / 62)
        assert doc2.semantic_score == pytest.approx(0.5 / 61)
        assert {r.key for r in results[1:]} == {"doc1", "doc3"}

    def test_single_source_flags(self) -> None:
        results = reciprocal_rank_fusion([_hit("a")], [_hit("b")])
        by_key = {r.key: r for r in results}
        assert by_key["a"].from_keyword and not by_key["a"].from_semantic
        assert by_key["a"].semantic_score is None
        assert by_key["b"].from_semantic and not by_key["b"].from_keyword

    def test_weights(self) -> None:
        results = reciprocal_rank_fusion(
            [_hit("a")], [_hit("b")], keyword_weight=0.2, semantic_weight=0.8
        )
        assert [r.key for r in results] == ["b", "a"]

    def test_limit(self) -> None:
        keyword = [_hit(f"k{i}") for i in range(10)]
        results = reciprocal_rank_fusion(keyword, [], limit=3)
        assert [r.key for r in results] == ["k0", "k1", "k2"]

    def test_duplicates_within_a_list_keep_first_rank(self) -> None:
        results = reciprocal_rank_fusion([_hit("a"), _hit("a")], [])
        assert len(results) == 1
        assert results[0].score == pytest.approx(0.5 / 61)

    def test_custom_key(self) -> None:
        keyword = [{"id": "notes/a.md", "file_path": "notes/a.md", "content": "kw"}]
        semantic = [{"id": "notes/a.md:file:0", "file_path": "notes/a.md", "text": "chunk"}]

        results = reciprocal_rank_fusion(keyword, semantic, key=lambda hit: hit["file_path"])

        assert len(results) == 1
        assert results[0].text == "kw"
        assert results[0].from_semantic

    def test_empty_inputs(self) -> None:
        assert reciprocal_rank_fusion([], []) == []
