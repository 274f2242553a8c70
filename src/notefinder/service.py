"""Wires a notes directory to the indexes and the hybrid searcher."""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List

from notefinder.config import AppConfig
from notefinder.embedding.encoder import (
    EmbeddingConfig,
    EmbeddingModel,
    EmbeddingProvider,
    RetryingProvider,
)
from notefinder.embedding.queue import RequestQueue
from notefinder.index.embeddings import EmbeddingIndex, ProgressCallback
from notefinder.index.graph import DocumentGraph, RankedNode
from notefinder.index.indexer import Indexer
from notefinder.index.storage import EmbeddingStore, GraphScoreStore
from notefinder.index.terms import TermFrequencyIndex
from notefinder.ingestion.markdown_loader import MarkdownCorpus
from notefinder.models import ChangeEvent, IndexStats
from notefinder.search.hybrid import HybridSearcher, StreamCallback
from notefinder.search.keyword import BM25KeywordSearcher
from notefinder.search.segmenter import QuerySegmenter
from notefinder.search.types import SearchOptions, SearchResult
from notefinder.usage import UsageTracker
from notefinder.utils.scheduler import Clock

LOGGER = logging.getLogger(__name__)


class NoteFinder:
    """Search engine over one directory of markdown notes.

    Construct, ``await open()``, search, then ``close()``; or use it as an
    async context manager.
    """

    def __init__(
        self,
        root: Path,
        config: AppConfig | None = None,
        *,
        provider: EmbeddingProvider | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.config = config or AppConfig()
        self._provider = provider
        self._clock = clock
        self._opened = False

        graph_settings = self.config.link_graph
        graph_cache = self.config.graph_cache_path(self.root) if self.config.semantic.cache_enabled else None
        self.corpus = MarkdownCorpus(self.root, exclude_patterns=self.config.exclude_patterns)
        self.usage = UsageTracker()
        self.term_index = TermFrequencyIndex()
        self.segmenter = QuerySegmenter()
        self.keyword = BM25KeywordSearcher(self.corpus)
        self.graph = DocumentGraph(
            self.corpus,
            damping=graph_settings.damping,
            max_iterations=graph_settings.max_iterations,
            threshold=graph_settings.threshold,
            enabled=graph_settings.enabled,
            store=GraphScoreStore(graph_cache),
            throttle_ms=graph_settings.throttle_ms,
            debounce_ms=graph_settings.debounce_ms,
            clock=clock,
        )
        self.embeddings: EmbeddingIndex | None = None
        self.searcher = HybridSearcher(
            self.corpus,
            keyword=self.keyword,
            graph=self.graph,
            usage=self.usage,
            term_index=self.term_index,
            segmenter=self.segmenter,
            settings=self.config.hybrid,
            semantic_threshold=self.config.semantic.threshold,
        )
        self.indexer: Indexer | None = None

    @property
    def is_open(self) -> bool:
        return self._opened

    async def __aenter__(self) -> "NoteFinder":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def _build_embeddings(self) -> EmbeddingIndex | None:
        semantic = self.config.semantic
        if not semantic.enabled:
            return None
        provider = self._provider
        if provider is None:
            provider = EmbeddingModel(EmbeddingConfig(model_name=self.config.model_name))
        store_path = self.config.embedding_cache_path(self.root) if semantic.cache_enabled else None
        return EmbeddingIndex(
            RetryingProvider(provider, attempts=semantic.retries, base_delay=semantic.retry_base_delay),
            queue=RequestQueue(semantic.max_concurrent, adaptive=semantic.adaptive_throttling),
            store=EmbeddingStore(store_path, model=provider.model_id),
            chunk_size=self.config.chunk_chars,
            exclude_patterns=self.config.exclude_patterns,
        )

    async def open(self, on_progress: ProgressCallback | None = None) -> IndexStats:
        """Load notes and caches, build every index and start following changes."""
        self.corpus.load()
        documents = self.corpus.list_documents()
        self.graph.load()

        self.embeddings = self._build_embeddings()
        if self.embeddings is not None:
            cached = self.embeddings.load(documents)
            LOGGER.info("Reusing %d cached embedding entries", cached)
        self.searcher.set_embedding_index(self.embeddings)

        self.indexer = Indexer(
            self.corpus,
            graph=self.graph,
            term_index=self.term_index,
            segmenter=self.segmenter,
            embeddings=self.embeddings,
            keyword=self.keyword,
            usage=self.usage,
            embed_throttle_ms=self.config.semantic.throttle_ms,
            embed_debounce_ms=self.config.semantic.debounce_ms,
            lexicon_throttle_ms=self.config.lexicon_throttle_ms,
            lexicon_debounce_ms=self.config.lexicon_debounce_ms,
            clock=self._clock,
            on_change=self.searcher.clear_cache,
        )
        stats = await self.indexer.build(on_progress)
        self.indexer.start()
        self._opened = True
        return stats

    async def refresh(self, *, wait: bool = True) -> List[ChangeEvent]:
        """Pick up changes on disk; with ``wait`` the indexes are current on return."""
        events = self.corpus.refresh()
        if wait and self.indexer is not None:
            await self.indexer.flush()
        return events

    async def search(self, query: str, options: SearchOptions | None = None) -> List[SearchResult]:
        return await self.searcher.search(query, options)

    async def search_stream(
        self, query: str, on_update: StreamCallback, options: SearchOptions | None = None
    ) -> List[SearchResult]:
        return await self.searcher.search_stream(query, on_update, options)

    def record_open(self, doc_id: str, query: str | None = None) -> None:
        if query:
            self.searcher.record_selection(query, doc_id)
        else:
            self.usage.record_open(doc_id)

    def top_documents(self, limit: int = 10) -> List[RankedNode]:
        return self.graph.top(limit)

    def stats(self) -> Dict[str, Any]:
        return {
            "root": str(self.root),
            "documents": len(self.corpus),
            "graph": asdict(self.graph.stats()),
            "terms": asdict(self.term_index.stats()),
            "embeddings": asdict(self.embeddings.stats()) if self.embeddings is not None else None,
            "queue": asdict(self.embeddings.queue.stats()) if self.embeddings is not None else None,
            "lexicon_size": self.segmenter.lexicon_size,
            "search": asdict(self.searcher.stats()),
            "usage": asdict(self.usage.stats()),
        }

    def close(self) -> None:
        if self.indexer is not None:
            self.indexer.stop()
        self.graph.destroy()
        if self.embeddings is not None:
            self.embeddings.persist()
        self._opened = False
        LOGGER.debug("Closed note finder for %s", self.root)
