"""Records exchanged between the retrieval, fusion and ranking stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal

from notefinder.utils.cancel import CancellationToken

ResultSource = Literal["keyword", "semantic", "both"]
StreamingPhase = Literal["keyword", "complete"]


@dataclass(slots=True)
class KeywordHit:
    """One hit from the keyword provider, in provider order.

    ``matches`` maps each matched query term to the fields it was found in.
    """

    doc_id: str
    score: float
    matches: Dict[str, List[str]] = field(default_factory=dict)
    snippet: str | None = None


@dataclass(slots=True)
class SemanticHit:
    doc_id: str
    similarity: float
    excerpt: str = ""


@dataclass(slots=True)
class RankedCandidate:
    """A hit from one source with its 1-based rank and min-max normalised score."""

    doc_id: str
    score: float
    normalized_score: float
    rank: int
    matches: Dict[str, List[str]] = field(default_factory=dict)
    snippet: str | None = None
    similarity: float | None = None
    excerpt: str | None = None


@dataclass(slots=True)
class FusedResult:
    doc_id: str
    fusion_score: float
    source: ResultSource
    keyword: RankedCandidate | None = None
    semantic: RankedCandidate | None = None
    blended_score: float = 0.0


@dataclass(slots=True)
class MatchDetails:
    title_match: bool = False
    tag_match: bool = False
    recently_modified: bool = False
    keyword_matches: List[str] = field(default_factory=list)
    semantic_similarity: float | None = None
    reason: str = ""


@dataclass(slots=True)
class SearchResult:
    """Final, ranked record handed to callers."""

    doc_id: str
    title: str
    excerpt: str
    final_score: float
    keyword_score: float
    semantic_score: float
    fusion_score: float
    rerank_boost: float
    source: ResultSource
    matches: MatchDetails
    mtime: float
    keyword_rank: int | None = None
    semantic_rank: int | None = None
    cluster_id: int | None = None
    cluster_size: int = 1
    related_ids: List[str] = field(default_factory=list)


@dataclass(slots=True)
class SearchOptions:
    """Per-request knobs; ``None`` falls back to the searcher's settings."""

    limit: int | None = None
    threshold: float | None = None
    use_keyword: bool = True
    use_semantic: bool = True
    use_cache: bool = True
    token: CancellationToken | None = None
