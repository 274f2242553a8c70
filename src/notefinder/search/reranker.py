"""Multi-signal re-ranking of the top fused candidates.

Every signal lies in ``[0, 1]``. Their weighted sum (the boost) is mixed
with the calibrated fusion score::

    final = max(0, 0.6 * min(1, fusion * FUSION_SCALE) + 0.4 * boost)

``FUSION_SCALE`` maps the RRF range of ``k = 60`` onto roughly ``[0, 1]``;
it has to move together with ``k``.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, fields
from typing import Callable, Dict, List, Sequence

from notefinder.corpus import Corpus
from notefinder.index.graph import DocumentGraph
from notefinder.index.terms import TermFrequencyIndex
from notefinder.search.segmenter import QuerySegment, SegmentedQuery
from notefinder.search.types import FusedResult, MatchDetails, SearchResult
from notefinder.usage import UsageProvider
from notefinder.utils.text import first_matching_sentence, query_words

LOGGER = logging.getLogger(__name__)

FUSION_SCALE = 30
RECENCY_FLOOR = 0.1
BOUNCE_PENALTY = 0.1
MAX_OCCURRENCES = 5
NEUTRAL_PROXIMITY = 0.5
PARTIAL_PROXIMITY = 0.3
RECENT_SECONDS = 7 * 24 * 60 * 60
HIGH_SIMILARITY = 0.7


@dataclass(slots=True)
class ReRankWeights:
    title: float = 0.25
    recency: float = 0.15
    usage: float = 0.15
    content: float = 0.25
    page_rank: float = 0.2
    proximity: float = 0.15

    def normalized(self) -> "ReRankWeights":
        """Scale the weights to sum to one; a non-positive sum becomes an equal split."""
        names = [f.name for f in fields(self)]
        total = sum(getattr(self, name) for name in names)
        if total <= 0:
            share = 1.0 / len(names)
            return ReRankWeights(**{name: share for name in names})
        return ReRankWeights(**{name: getattr(self, name) / total for name in names})


@dataclass(slots=True)
class SignalScores:
    title: float = 0.0
    recency: float = 0.0
    usage: float = 0.0
    content: float = 0.0
    page_rank: float = 0.0
    proximity: float = 0.0
    bounce: float = 0.0

    def boost(self, weights: ReRankWeights) -> float:
        return (
            weights.title * self.title
            + weights.recency * self.recency
            + weights.usage * self.usage
            + weights.content * self.content
            + weights.page_rank * self.page_rank
            + weights.proximity * self.proximity
            - BOUNCE_PENALTY * self.bounce
        )


def calibrated_fusion(fusion_score: float) -> float:
    return min(1.0, fusion_score * FUSION_SCALE)


def final_score(fusion_score: float, boost: float) -> float:
    return max(0.0, 0.6 * calibrated_fusion(fusion_score) + 0.4 * boost)


def find_positions(text: str, term: str) -> List[int]:
    """Every start offset of ``term`` in ``text``, overlapping matches included."""
    positions: List[int] = []
    index = text.find(term)
    while index != -1:
        positions.append(index)
        index = text.find(term, index + 1)
    return positions


def minimum_span(positions: Dict[str, List[int]], terms: Sequence[str]) -> float:
    """Length of the shortest window of text containing every term.

    Two pointers over all ``(position, term)`` pairs merged in position
    order; the span runs from the first term's start to the last term's end.
    Returns ``inf`` if some term never occurs.
    """
    required = list(dict.fromkeys(terms))
    if not required or any(not positions.get(term) for term in required):
        return math.inf

    occurrences = sorted(
        (position, term) for term in required for position in positions[term]
    )
    counts: Dict[str, int] = {}
    covered = 0
    best = math.inf
    left = 0
    for right, (_, right_term) in enumerate(occurrences):
        if counts.get(right_term, 0) == 0:
            covered += 1
        counts[right_term] = counts.get(right_term, 0) + 1

        while covered == len(required) and left <= right:
            end = occurrences[right][0] + len(right_term)
            best = min(best, end - occurrences[left][0])
            left_term = occurrences[left][1]
            counts[left_term] -= 1
            if counts[left_term] == 0:
                covered -= 1
            left += 1
    return best


def span_score(span: float, terms: Sequence[str]) -> float:
    """``1 / (1 + ln(span / ideal))``; the ideal span is the terms joined by spaces."""
    if math.isinf(span):
        return 0.0
    ideal = sum(len(term) for term in terms) + (len(terms) - 1)
    if ideal <= 0:
        return 0.0
    ratio = max(1.0, span / ideal)
    return min(1.0, max(0.0, 1.0 / (1.0 + math.log(ratio))))


def title_score(title: str, query_lower: str) -> float:
    title_lower = title.lower()
    if not query_lower:
        return 0.0
    if title_lower == query_lower:
        return 1.0
    if title_lower.startswith(query_lower):
        return 0.8
    if query_lower in title_lower:
        return 0.6
    words = query_words(query_lower)
    if not words:
        return 0.0
    matched = sum(1 for word in words if word in title_lower)
    return 0.4 * matched / len(words)


class ReRanker:
    """Re-scores the head of a fused list with title, recency, usage,
    content density, link importance and term proximity signals.
    """

    def __init__(
        self,
        corpus: Corpus,
        *,
        graph: DocumentGraph | None = None,
        usage: UsageProvider | None = None,
        term_index: TermFrequencyIndex | None = None,
        weights: ReRankWeights | None = None,
        pool_size: int = 20,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.corpus = corpus
        self.graph = graph
        self.usage = usage
        self.term_index = term_index
        self.weights = weights or ReRankWeights()
        self.pool_size = pool_size
        self.enabled = enabled
        self._clock = clock
        self._content_cache: Dict[str, str] = {}

    def rerank(
        self,
        fused: Sequence[FusedResult],
        query: str,
        segmented: SegmentedQuery | None = None,
    ) -> List[SearchResult]:
        started = time.perf_counter()
        self._content_cache = {}
        query_lower = query.lower().strip()

        if not self.enabled:
            return [self._to_result(result, query_lower, 0.0, None) for result in fused]

        weights = self.weights.normalized()
        pool = fused[: self.pool_size]
        remainder = fused[self.pool_size :]
        if self.term_index is not None:
            self.term_index.log_query_weights(query_words(query_lower))

        reranked: List[SearchResult] = []
        for result in pool:
            signals = self.compute_signals(result.doc_id, query_lower, segmented)
            boost = signals.boost(weights)
            score = final_score(result.fusion_score, boost)
            LOGGER.debug(
                "Re-rank %s: fusion %.4f, boost %.3f (title %.2f, content %.2f, "
                "rank %.2f, proximity %.2f, bounce %.2f), final %.3f",
                result.doc_id,
                result.fusion_score,
                boost,
                signals.title,
                signals.content,
                signals.page_rank,
                signals.proximity,
                signals.bounce,
                score,
            )
            reranked.append(self._to_result(result, query_lower, boost, score))

        # Stable: equal final scores keep their fusion order.
        reranked.sort(key=lambda item: -item.final_score)
        reranked.extend(self._to_result(result, query_lower, 0.0, None) for result in remainder)
        LOGGER.debug(
            "Re-ranked %d of %d results in %.1fms",
            len(pool),
            len(fused),
            (time.perf_counter() - started) * 1000,
        )
        return reranked

    # -- signals ---------------------------------------------------------

    def compute_signals(
        self, doc_id: str, query_lower: str, segmented: SegmentedQuery | None = None
    ) -> SignalScores:
        document = self.corpus.get(doc_id)
        title = document.title if document is not None else doc_id
        content_lower = self._content(doc_id).lower()
        return SignalScores(
            title=title_score(title, query_lower),
            recency=self.recency_score(doc_id),
            usage=self.usage_score(doc_id),
            content=self.content_score(content_lower, query_lower),
            page_rank=self.graph.get_score(doc_id) if self.graph is not None else 0.0,
            proximity=self.proximity_score(content_lower, query_lower, segmented),
            bounce=self.usage.bounce_score(doc_id) if self.usage is not None else 0.0,
        )

    def recency_score(self, doc_id: str) -> float:
        if self.usage is None:
            return 0.0
        score = self.usage.recency_score(doc_id)
        return score if score >= RECENCY_FLOOR else 0.0

    def usage_score(self, doc_id: str) -> float:
        if self.usage is None:
            return 0.0
        return min(1.0, max(0.0, self.usage.usage_score(doc_id)))

    def content_score(self, content_lower: str, query_lower: str) -> float:
        """IDF-weighted occurrence density of the query words, each capped at five hits."""
        words = query_words(query_lower)
        if not words or not content_lower:
            return 0.0
        if self.term_index is not None:
            weights = self.term_index.term_weights(words)
        else:
            weights = {word: 1.0 / len(words) for word in words}

        weighted = 0.0
        total = 0.0
        for word in words:
            weight = weights.get(word, 1.0 / len(words))
            total += weight
            occurrences = content_lower.count(word)
            if occurrences:
                weighted += weight * min(occurrences / MAX_OCCURRENCES, 1.0)
        return weighted / total if total > 0 else 0.0

    def proximity_score(
        self,
        content_lower: str,
        query_lower: str,
        segmented: SegmentedQuery | None = None,
    ) -> float:
        terms = query_words(query_lower)
        if len(terms) <= 1:
            return NEUTRAL_PROXIMITY

        positions: Dict[str, List[int]] = {}
        for term in terms:
            found = find_positions(content_lower, term)
            if found:
                positions[term] = found

        distinct = set(terms)
        if len(positions) < len(distinct):
            return PARTIAL_PROXIMITY * len(positions) / len(distinct)

        if segmented is not None and segmented.phrases:
            return self._segment_proximity(content_lower, segmented.segments, positions)

        return span_score(minimum_span(positions, terms), terms)

    @staticmethod
    def _segment_proximity(
        content_lower: str,
        segments: Sequence[QuerySegment],
        positions: Dict[str, List[int]],
    ) -> float:
        total = 0.0
        counted = 0
        for segment in segments:
            if not segment.is_phrase:
                if segment.text in positions:
                    total += 1.0
                    counted += 1
                continue

            counted += 1
            if segment.text in content_lower:
                total += 1.0
                continue
            words = query_words(segment.text)
            if len(words) <= 1:
                continue
            found = {word: positions[word] for word in words if word in positions}
            if len(found) == len(set(words)):
                total += span_score(minimum_span(found, words), words)
            else:
                total += PARTIAL_PROXIMITY * len(found) / len(set(words))

        if counted == 0:
            return NEUTRAL_PROXIMITY
        return min(1.0, max(0.0, total / counted))

    # -- result assembly -------------------------------------------------

    def _content(self, doc_id: str) -> str:
        cached = self._content_cache.get(doc_id)
        if cached is not None:
            return cached
        try:
            content = self.corpus.read_content(doc_id)
        except KeyError:
            content = ""
        self._content_cache[doc_id] = content
        return content

    def build_match_details(self, result: FusedResult, query_lower: str) -> MatchDetails:
        document = self.corpus.get(result.doc_id)
        title = document.title if document is not None else result.doc_id
        tags = document.metadata.tags if document is not None else set()
        mtime = document.mtime if document is not None else 0.0

        title_match = bool(query_lower) and query_lower in title.lower()
        tag_match = bool(query_lower) and any(query_lower in tag.lower() for tag in tags)
        keyword_matches = list(result.keyword.matches) if result.keyword is not None else []
        similarity = result.semantic.similarity if result.semantic is not None else None

        if result.source == "both":
            reasons = ["Matched by keywords and meaning"]
        elif result.source == "keyword":
            reasons = ["Matched by keywords"]
        else:
            reasons = ["Matched by meaning"]
        if title_match:
            reasons.append("title matches")
        if tag_match:
            reasons.append("tag matches")
        if similarity is not None and similarity > HIGH_SIMILARITY:
            reasons.append("highly relevant content")

        return MatchDetails(
            title_match=title_match,
            tag_match=tag_match,
            recently_modified=self._clock() - mtime < RECENT_SECONDS,
            keyword_matches=list(dict.fromkeys(keyword_matches))[:5],
            semantic_similarity=similarity,
            reason=" • ".join(reasons),
        )

    def _excerpt(self, result: FusedResult, query_lower: str) -> str:
        if result.semantic is not None and result.semantic.excerpt:
            return result.semantic.excerpt
        if result.keyword is not None and result.keyword.snippet:
            return result.keyword.snippet
        return first_matching_sentence(self._content(result.doc_id), query_words(query_lower))

    def _to_result(
        self,
        result: FusedResult,
        query_lower: str,
        boost: float,
        score: float | None,
    ) -> SearchResult:
        document = self.corpus.get(result.doc_id)
        return SearchResult(
            doc_id=result.doc_id,
            title=document.title if document is not None else result.doc_id,
            excerpt=self._excerpt(result, query_lower),
            final_score=score if score is not None else calibrated_fusion(result.fusion_score),
            keyword_score=result.keyword.normalized_score if result.keyword is not None else 0.0,
            semantic_score=result.semantic.normalized_score if result.semantic is not None else 0.0,
            fusion_score=result.fusion_score,
            rerank_boost=boost,
            source=result.source,
            matches=self.build_match_details(result, query_lower),
            mtime=document.mtime if document is not None else 0.0,
            keyword_rank=result.keyword.rank if result.keyword is not None else None,
            semantic_rank=result.semantic.rank if result.semantic is not None else None,
        )
