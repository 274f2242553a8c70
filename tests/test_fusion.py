"""Tests for reciprocal rank fusion."""

from __future__ import annotations

import pytest

from notefinder.search.fusion import (
    FusionWeights,
    fuse_results,
    max_fusion_score,
    normalize_keyword_results,
    normalize_semantic_results,
    rrf_score,
)
from notefinder.search.types import KeywordHit, SemanticHit


def _kw(*ids: str) -> list[KeywordHit]:
    return [KeywordHit(doc_id=doc_id, score=10.0 - index) for index, doc_id in enumerate(ids)]


def _sem(*ids: str) -> list[SemanticHit]:
    return [SemanticHit(doc_id=doc_id, similarity=0.9 - 0.1 * index) for index, doc_id in enumerate(ids)]


class TestNormalization:
    """Test rank assignment and min-max normalisation."""

    def test_ranks_follow_provider_order(self) -> None:
        """Ranks are 1-based positions in the provider's list."""
        ranked = normalize_keyword_results(_kw("a", "b", "c"))
        assert [candidate.rank for candidate in ranked] == [1, 2, 3]
        assert ranked[0].normalized_score == pytest.approx(1.0)
        assert ranked[-1].normalized_score == pytest.approx(0.0)

    def test_unknown_documents_dropped_after_ranking(self) -> None:
        """A hit for a missing note is dropped without shifting later ranks."""
        ranked = normalize_keyword_results(_kw("ghost", "a"), known_ids={"a"})
        assert [(c.doc_id, c.rank) for c in ranked] == [("a", 2)]

    def test_equal_scores_normalise_to_zero(self) -> None:
        """A flat list has no spread."""
        hits = [SemanticHit("a", 0.5), SemanticHit("b", 0.5)]
        assert [c.normalized_score for c in normalize_semantic_results(hits)] == [0.0, 0.0]

    def test_empty(self) -> None:
        """Empty inputs stay empty."""
        assert normalize_keyword_results([]) == []
        assert fuse_results([], []) == []


class TestFuseResults:
    """Test fuse_results."""

    def test_document_in_both_lists_wins(self) -> None:
        """Appearing in both lists beats a single first place."""
        fused = fuse_results(
            normalize_keyword_results(_kw("a", "b")),
            normalize_semantic_results(_sem("b", "c")),
        )
        assert [result.doc_id for result in fused] == ["b", "a", "c"]
        assert fused[0].source == "both"
        assert fused[1].source == "keyword"
        assert fused[2].source == "semantic"
        assert fused[0].fusion_score == pytest.approx(0.5 / 62 + 0.5 / 61)

    def test_ties_broken_by_id(self) -> None:
        """Equal fusion scores order by document id."""
        fused = fuse_results(
            normalize_keyword_results(_kw("b.md")),
            normalize_semantic_results(_sem("a.md")),
        )
        assert [result.doc_id for result in fused] == ["a.md", "b.md"]
        assert fused[0].fusion_score == fused[1].fusion_score

    def test_weights_shift_ranking(self) -> None:
        """With zero semantic weight only keyword ranks count."""
        fused = fuse_results(
            normalize_keyword_results(_kw("a", "b")),
            normalize_semantic_results(_sem("b")),
            FusionWeights(keyword_weight=1.0, semantic_weight=0.0),
        )
        assert [result.doc_id for result in fused] == ["a", "b"]

    def test_keeps_first_duplicate(self) -> None:
        """A provider listing a document twice contributes its best rank."""
        fused = fuse_results(normalize_keyword_results(_kw("a", "a")), [])
        assert len(fused) == 1
        assert fused[0].keyword.rank == 1

    def test_fusion_score_bounds(self) -> None:
        """No fused score exceeds first place in both lists."""
        weights = FusionWeights()
        fused = fuse_results(
            normalize_keyword_results(_kw("a", "b", "c")),
            normalize_semantic_results(_sem("a", "c")),
            weights,
        )
        ceiling = max_fusion_score(weights)
        assert ceiling == pytest.approx(1 / 61)
        assert fused[0].fusion_score == pytest.approx(ceiling)
        assert all(0 < result.fusion_score <= ceiling for result in fused)
        assert all(0.0 <= result.blended_score <= 1.0 for result in fused)

    def test_rrf_score(self) -> None:
        """A single contribution is weight / (k + rank)."""
        assert rrf_score(1, 60, 0.5) == pytest.approx(0.5 / 61)
