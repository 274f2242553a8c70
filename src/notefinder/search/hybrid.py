"""Hybrid search: keyword and semantic retrieval fused, re-ranked and clustered."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Sequence

from notefinder.config import HybridSettings
from notefinder.corpus import Corpus
from notefinder.errors import CancellationError
from notefinder.index.embeddings import EmbeddingIndex
from notefinder.index.graph import DocumentGraph
from notefinder.index.terms import TermFrequencyIndex
from notefinder.search.cache import SearchResultCache
from notefinder.search.clusterer import apply_clustering
from notefinder.search.filters import (
    QueryFilter,
    evaluate_all_filters,
    filterable_fields,
    parse_query_filters,
)
from notefinder.search.fusion import (
    FusionWeights,
    fuse_results,
    normalize_keyword_results,
    normalize_semantic_results,
)
from notefinder.search.keyword import KeywordProvider
from notefinder.search.reranker import ReRanker, ReRankWeights
from notefinder.search.segmenter import QuerySegmenter
from notefinder.search.types import (
    KeywordHit,
    MatchDetails,
    SearchOptions,
    SearchResult,
    SemanticHit,
    StreamingPhase,
)
from notefinder.usage import UsageProvider
from notefinder.utils.cancel import CancellationToken, check_cancelled
from notefinder.utils.text import first_matching_sentence

LOGGER = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2

StreamCallback = Callable[[List[SearchResult], StreamingPhase], None]


@dataclass(slots=True)
class SearcherStats:
    searches: int
    cache_hits: int
    cached_entries: int
    last_elapsed_ms: float


@dataclass(slots=True)
class _Request:
    text: str
    filters: List[QueryFilter]
    limit: int
    threshold: float
    options: SearchOptions

    @property
    def has_text(self) -> bool:
        return len(self.text) >= MIN_QUERY_LENGTH

    @property
    def cache_key(self) -> tuple:
        return (
            self.text,
            self.limit,
            self.threshold,
            self.options.use_keyword,
            self.options.use_semantic,
            tuple(self.filters),
        )


class _Progress:
    """Latest complete stage, returned when a search is cancelled midway."""

    __slots__ = ("results",)

    def __init__(self) -> None:
        self.results: List[SearchResult] = []


class HybridSearcher:
    """Coordinates retrieval, fusion, re-ranking, filtering and clustering.

    A failing source is logged and treated as empty, so results still
    appear with degraded ranking. A cancelled search returns whatever stage
    had completed and leaves the result cache untouched.
    """

    def __init__(
        self,
        corpus: Corpus,
        *,
        keyword: KeywordProvider | None = None,
        embeddings: EmbeddingIndex | None = None,
        graph: DocumentGraph | None = None,
        usage: UsageProvider | None = None,
        term_index: TermFrequencyIndex | None = None,
        segmenter: QuerySegmenter | None = None,
        settings: HybridSettings | None = None,
        semantic_threshold: float = 0.0,
        cache: SearchResultCache[List[SearchResult]] | None = None,
    ) -> None:
        self.corpus = corpus
        self.keyword = keyword
        self.embeddings = embeddings
        self.graph = graph
        self.usage = usage
        self.segmenter = segmenter or QuerySegmenter()
        self.settings = settings or HybridSettings()
        self.semantic_threshold = semantic_threshold
        self.cache: SearchResultCache[List[SearchResult]] = cache or SearchResultCache()
        self.reranker = ReRanker(
            corpus,
            graph=graph,
            usage=usage,
            term_index=term_index,
        )
        self._apply_settings()
        self._searches = 0
        self._cache_hits = 0
        self._last_elapsed_ms = 0.0

    # -- configuration ---------------------------------------------------

    def _apply_settings(self) -> None:
        settings = self.settings
        self.reranker.enabled = settings.enable_reranking
        self.reranker.pool_size = settings.rerank_pool_size
        self.reranker.weights = ReRankWeights(
            title=settings.title_weight,
            recency=settings.recency_weight,
            usage=settings.usage_weight,
            content=settings.content_weight,
            page_rank=settings.page_rank_weight,
            proximity=settings.proximity_weight,
        )

    def _fusion_weights(self) -> FusionWeights:
        return FusionWeights(
            k=self.settings.rrf_k,
            keyword_weight=self.settings.keyword_weight,
            semantic_weight=self.settings.semantic_weight,
        )

    def update_settings(self, **changes: object) -> None:
        self.settings = dataclasses.replace(self.settings, **changes)
        self._apply_settings()
        self.cache.clear()

    def set_embedding_index(self, embeddings: EmbeddingIndex | None) -> None:
        self.embeddings = embeddings
        self.cache.clear()

    def clear_cache(self) -> None:
        self.cache.clear()

    # -- public search API -----------------------------------------------

    def _prepare(self, query: str, options: SearchOptions | None) -> _Request | None:
        options = options or SearchOptions()
        parsed = parse_query_filters(query.strip())
        request = _Request(
            text=parsed.text,
            filters=parsed.filters,
            limit=options.limit or self.settings.max_results,
            threshold=options.threshold if options.threshold is not None else self.settings.min_score,
            options=options,
        )
        if not request.has_text and not request.filters:
            return None
        return request

    async def search(self, query: str, options: SearchOptions | None = None) -> List[SearchResult]:
        request = self._prepare(query, options)
        if request is None:
            return []

        started = time.perf_counter()
        self._searches += 1
        if request.options.use_cache:
            cached = self.cache.get(request.cache_key)
            if cached is not None:
                self._cache_hits += 1
                LOGGER.debug("Search cache hit for %r", request.text)
                return list(cached)

        progress = _Progress()
        token = request.options.token
        try:
            check_cancelled(token)
            if not request.has_text:
                results = self._filter_only(request)
            else:
                keyword_hits, semantic_hits = await asyncio.gather(
                    self._run_keyword(request, token),
                    self._run_semantic(request, token),
                )
                check_cancelled(token)
                results = self._rank(request, keyword_hits, semantic_hits, progress)
                check_cancelled(token)
                results = self._cluster(results)
            check_cancelled(token)
        except CancellationError:
            LOGGER.debug("Search for %r cancelled", request.text)
            return progress.results

        self._finish(request, results, started)
        return results

    async def search_stream(
        self,
        query: str,
        on_update: StreamCallback,
        options: SearchOptions | None = None,
    ) -> List[SearchResult]:
        """Emit keyword-only results early, then the complete list."""
        request = self._prepare(query, options)
        if request is None:
            on_update([], "complete")
            return []

        started = time.perf_counter()
        self._searches += 1
        if request.options.use_cache:
            cached = self.cache.get(request.cache_key)
            if cached is not None:
                self._cache_hits += 1
                on_update(list(cached), "complete")
                return list(cached)

        if not request.has_text:
            results = self._filter_only(request)
            self._finish(request, results, started)
            on_update(results, "complete")
            return results

        progress = _Progress()
        token = request.options.token
        keyword_task = asyncio.ensure_future(self._run_keyword(request, token))
        semantic_task = asyncio.ensure_future(self._run_semantic(request, token))
        try:
            keyword_hits = await keyword_task
            check_cancelled(token)
            if not semantic_task.done() and keyword_hits and request.options.use_keyword:
                quick = self._rank(request, keyword_hits, [], progress)
                if quick:
                    on_update(quick, "keyword")

            semantic_hits = await semantic_task
            check_cancelled(token)
            results = self._cluster(self._rank(request, keyword_hits, semantic_hits, progress))
            check_cancelled(token)
        except CancellationError:
            semantic_task.cancel()
            LOGGER.debug("Streaming search for %r cancelled", request.text)
            on_update(progress.results, "complete")
            return progress.results

        self._finish(request, results, started)
        on_update(results, "complete")
        return results

    def record_selection(self, query: str, doc_id: str) -> None:
        if self.usage is None:
            return
        self.usage.record_selection(query, doc_id)
        self.usage.record_result_open(doc_id, query)

    def stats(self) -> SearcherStats:
        return SearcherStats(
            searches=self._searches,
            cache_hits=self._cache_hits,
            cached_entries=len(self.cache),
            last_elapsed_ms=self._last_elapsed_ms,
        )

    # -- stages ----------------------------------------------------------

    async def _run_keyword(
        self, request: _Request, token: CancellationToken | None
    ) -> List[KeywordHit]:
        if self.keyword is None or not request.options.use_keyword:
            return []
        check_cancelled(token)
        try:
            hits = await self.keyword.search(request.text, request.limit * 2)
        except CancellationError:
            raise
        except Exception as exc:
            LOGGER.warning("Keyword search failed, continuing without it: %s", exc)
            return []
        check_cancelled(token)
        return hits

    async def _run_semantic(
        self, request: _Request, token: CancellationToken | None
    ) -> List[SemanticHit]:
        if self.embeddings is None or not request.options.use_semantic:
            return []
        check_cancelled(token)
        try:
            hits = await self.embeddings.search(
                request.text,
                limit=request.limit * 2,
                threshold=self.semantic_threshold,
                token=token,
            )
        except CancellationError:
            raise
        except Exception as exc:
            LOGGER.warning("Semantic search failed, continuing without it: %s", exc)
            return []
        check_cancelled(token)
        return hits

    def _known_ids(self) -> set[str]:
        return {document.id for document in self.corpus.list_documents()}

    def _rank(
        self,
        request: _Request,
        keyword_hits: Sequence[KeywordHit],
        semantic_hits: Sequence[SemanticHit],
        progress: _Progress,
    ) -> List[SearchResult]:
        known = self._known_ids()
        keyword = normalize_keyword_results(keyword_hits, known)
        semantic = normalize_semantic_results([hit for hit in semantic_hits if hit.doc_id in known])
        fused = fuse_results(keyword, semantic, self._fusion_weights())
        segmented = self.segmenter.segment_query(request.text)
        reranked = self.reranker.rerank(fused, request.text, segmented)
        progress.results = reranked[: request.limit]

        kept = [
            result
            for result in reranked
            if result.final_score >= request.threshold and self._passes_filters(result.doc_id, request.filters)
        ]
        results = kept[: request.limit]
        progress.results = results
        return results

    def _passes_filters(self, doc_id: str, filters: Sequence[QueryFilter]) -> bool:
        if not filters:
            return True
        document = self.corpus.get(doc_id)
        if document is None:
            return False
        return evaluate_all_filters(filters, filterable_fields(document))

    def _filter_only(self, request: _Request) -> List[SearchResult]:
        """Every document matching the filters, most linked-to first."""
        matching = [
            document
            for document in self.corpus.list_documents()
            if evaluate_all_filters(request.filters, filterable_fields(document))
        ]

        def importance(doc_id: str) -> float:
            return self.graph.get_score(doc_id) if self.graph is not None else 0.0

        matching.sort(key=lambda document: (-importance(document.id), document.id))
        return [
            SearchResult(
                doc_id=document.id,
                title=document.title,
                excerpt=first_matching_sentence(document.content, []),
                final_score=importance(document.id),
                keyword_score=0.0,
                semantic_score=0.0,
                fusion_score=0.0,
                rerank_boost=0.0,
                source="keyword",
                matches=MatchDetails(reason="Matched by filters"),
                mtime=document.mtime,
            )
            for document in matching[: request.limit]
        ]

    def _cluster(self, results: List[SearchResult]) -> List[SearchResult]:
        return apply_clustering(
            results,
            self.embeddings,
            enabled=self.settings.enable_clustering,
            threshold=self.settings.cluster_threshold,
        )

    def _finish(self, request: _Request, results: List[SearchResult], started: float) -> None:
        if request.options.use_cache:
            self.cache.put(request.cache_key, list(results))
        if self.usage is not None:
            self.usage.record_search(request.text or " ".join(f.raw for f in request.filters))
        self._last_elapsed_ms = (time.perf_counter() - started) * 1000
        LOGGER.debug(
            "Search %r returned %d results in %.1fms",
            request.text,
            len(results),
            self._last_elapsed_ms,
        )
