"""Reciprocal Rank Fusion of keyword and semantic result lists."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Container, Dict, List, Sequence

from notefinder.search.types import FusedResult, KeywordHit, RankedCandidate, SemanticHit

LOGGER = logging.getLogger(__name__)

DEFAULT_RRF_K = 60


@dataclass(slots=True)
class FusionWeights:
    k: int = DEFAULT_RRF_K
    keyword_weight: float = 0.5
    semantic_weight: float = 0.5


def _min_max(scores: Sequence[float]) -> List[float]:
    """Min-max normalise; a list of equal scores normalises to zeros."""
    if not scores:
        return []
    low, high = min(scores), max(scores)
    spread = (high - low) or 1.0
    return [(score - low) / spread for score in scores]


def normalize_keyword_results(
    hits: Sequence[KeywordHit], known_ids: Container[str] | None = None
) -> List[RankedCandidate]:
    """Assign 1-based ranks in provider order, dropping hits for unknown documents.

    Ranks are assigned before unknown documents are dropped, so the rank
    always reflects the provider's own ordering.
    """
    normalised = _min_max([hit.score for hit in hits])
    candidates = [
        RankedCandidate(
            doc_id=hit.doc_id,
            score=hit.score,
            normalized_score=value,
            rank=rank,
            matches=dict(hit.matches),
            snippet=hit.snippet,
        )
        for rank, (hit, value) in enumerate(zip(hits, normalised), start=1)
    ]
    if known_ids is None:
        return candidates
    kept = [candidate for candidate in candidates if candidate.doc_id in known_ids]
    if len(kept) != len(candidates):
        LOGGER.debug("Dropped %d keyword hits for unknown documents", len(candidates) - len(kept))
    return kept


def normalize_semantic_results(hits: Sequence[SemanticHit]) -> List[RankedCandidate]:
    normalised = _min_max([hit.similarity for hit in hits])
    return [
        RankedCandidate(
            doc_id=hit.doc_id,
            score=hit.similarity,
            normalized_score=value,
            rank=rank,
            similarity=hit.similarity,
            excerpt=hit.excerpt,
        )
        for rank, (hit, value) in enumerate(zip(hits, normalised), start=1)
    ]


def rrf_score(rank: int, k: int, weight: float) -> float:
    return weight / (k + rank)


def max_fusion_score(weights: FusionWeights) -> float:
    """Score of a document ranked first in both lists."""
    return (weights.keyword_weight + weights.semantic_weight) / (weights.k + 1)


def blended_score(result: FusedResult, weights: FusionWeights) -> float:
    """Auxiliary score mixing rank fusion with the sources' own normalised scores.

    Never used as a sort key.
    """
    total_weight = 0.0
    mixed = 0.0
    if result.keyword is not None:
        mixed += weights.keyword_weight * result.keyword.normalized_score
        total_weight += weights.keyword_weight
    if result.semantic is not None:
        mixed += weights.semantic_weight * result.semantic.normalized_score
        total_weight += weights.semantic_weight
    if total_weight > 0:
        mixed /= total_weight

    ceiling = max_fusion_score(weights)
    fusion = result.fusion_score / ceiling if ceiling > 0 else 0.0
    return 0.7 * fusion + 0.3 * mixed


def fuse_results(
    keyword: Sequence[RankedCandidate],
    semantic: Sequence[RankedCandidate],
    weights: FusionWeights | None = None,
) -> List[FusedResult]:
    """Merge two ranked lists by weighted reciprocal rank.

    Sorted by fusion score descending; ties go to the smaller document id.
    """
    weights = weights or FusionWeights()
    by_keyword: Dict[str, RankedCandidate] = {}
    for candidate in keyword:
        by_keyword.setdefault(candidate.doc_id, candidate)
    by_semantic: Dict[str, RankedCandidate] = {}
    for candidate in semantic:
        by_semantic.setdefault(candidate.doc_id, candidate)

    fused: List[FusedResult] = []
    for doc_id in {**by_keyword, **by_semantic}:
        kw = by_keyword.get(doc_id)
        sem = by_semantic.get(doc_id)
        score = 0.0
        if kw is not None:
            score += rrf_score(kw.rank, weights.k, weights.keyword_weight)
        if sem is not None:
            score += rrf_score(sem.rank, weights.k, weights.semantic_weight)
        if kw is not None and sem is not None:
            source = "both"
        elif kw is not None:
            source = "keyword"
        else:
            source = "semantic"
        result = FusedResult(doc_id=doc_id, fusion_score=score, source=source, keyword=kw, semantic=sem)
        result.blended_score = blended_score(result, weights)
        fused.append(result)

    fused.sort(key=lambda result: (-result.fusion_score, result.doc_id))
    LOGGER.debug(
        "Fused %d keyword and %d semantic candidates into %d results",
        len(keyword),
        len(semantic),
        len(fused),
    )
    return fused
