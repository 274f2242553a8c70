"""Index maintenance pipeline."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Coroutine, List, Set

from notefinder.corpus import Corpus
from notefinder.index.embeddings import EmbeddingIndex, ProgressCallback
from notefinder.index.graph import DocumentGraph
from notefinder.index.terms import TermFrequencyIndex
from notefinder.models import ChangeEvent, IndexStats
from notefinder.search.keyword import BM25KeywordSearcher
from notefinder.search.segmenter import QuerySegmenter
from notefinder.usage import UsageTracker
from notefinder.utils.scheduler import Clock, UpdateScheduler

LOGGER = logging.getLogger(__name__)


class Indexer:
    """Coordinates the derived indexes of a corpus.

    The link graph and the term index are updated as each change arrives.
    Embeddings and the phrase lexicon are slower to rebuild, so their work
    is coalesced through :class:`UpdateScheduler` instances.
    """

    def __init__(
        self,
        corpus: Corpus,
        *,
        graph: DocumentGraph,
        term_index: TermFrequencyIndex,
        segmenter: QuerySegmenter,
        embeddings: EmbeddingIndex | None = None,
        keyword: BM25KeywordSearcher | None = None,
        usage: UsageTracker | None = None,
        embed_throttle_ms: float = 5_000,
        embed_debounce_ms: float = 2_000,
        lexicon_throttle_ms: float = 30_000,
        lexicon_debounce_ms: float = 5_000,
        clock: Clock | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self.corpus = corpus
        self.graph = graph
        self.term_index = term_index
        self.segmenter = segmenter
        self.embeddings = embeddings
        self.keyword = keyword
        self.usage = usage
        self._on_change = on_change
        self._embed_scheduler = UpdateScheduler(
            self._on_embed_flush,
            throttle_ms=embed_throttle_ms,
            debounce_ms=embed_debounce_ms,
            name="Embeddings",
            clock=clock,
        )
        self._lexicon_scheduler = UpdateScheduler(
            self._on_lexicon_flush,
            throttle_ms=lexicon_throttle_ms,
            debounce_ms=lexicon_debounce_ms,
            name="Lexicon",
            clock=clock,
        )
        self._tasks: Set[asyncio.Task[None]] = set()
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def is_running(self) -> bool:
        return self._unsubscribe is not None

    async def build(self, on_progress: ProgressCallback | None = None) -> IndexStats:
        """Full pass over the corpus: graph, terms, lexicon and embeddings."""
        started = time.perf_counter()
        documents = self.corpus.list_documents()
        LOGGER.info("Indexing %d notes", len(documents))

        self.graph.recompute()
        self.term_index.clear()
        for document in documents:
            self.term_index.add(document)
        self.segmenter.build_lexicon(documents)
        if self.keyword is not None:
            self.keyword.invalidate()

        if self.embeddings is None:
            stats = IndexStats()
            for document in documents:
                stats.increment("unchanged", document.id)
        else:
            stats = await self.embeddings.index_all(documents, on_progress)

        LOGGER.info(
            "Index ready in %.2fs: %d embedded, %d unchanged, %d excluded, %d failed",
            time.perf_counter() - started,
            stats.indexed,
            stats.unchanged,
            stats.excluded,
            stats.failed,
        )
        return stats

    def start(self) -> None:
        """Follow corpus changes until :meth:`stop`."""
        if self._unsubscribe is None:
            self._unsubscribe = self.corpus.subscribe(self.handle_event)
            if self.keyword is not None:
                self.keyword.attach()

    def stop(self) -> None:
        """Unsubscribe and drop pending work; an indexer is not restarted after this."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.keyword is not None:
            self.keyword.detach()
        self._embed_scheduler.destroy()
        self._lexicon_scheduler.destroy()
        for task in list(self._tasks):
            task.cancel()

    def handle_event(self, event: ChangeEvent) -> None:
        LOGGER.debug("Corpus change: %s %s", event.kind, event.doc_id)
        if event.kind == "delete":
            self.graph.on_delete(event.doc_id)
            self.term_index.remove_document(event.doc_id)
            if self.embeddings is not None:
                self.embeddings.remove(event.doc_id)
            if self.usage is not None:
                self.usage.forget(event.doc_id)
        elif event.kind == "rename" and event.old_id is not None:
            self.graph.on_rename(event.old_id, event.doc_id)
            self.term_index.rename_document(event.old_id, event.doc_id)
            if self.embeddings is not None:
                self.embeddings.rename(event.old_id, event.doc_id)
            if self.usage is not None:
                self.usage.rename(event.old_id, event.doc_id)
        else:
            document = self.corpus.get(event.doc_id)
            if document is None:
                return
            if event.kind == "create":
                self.graph.on_create(document)
            else:
                self.graph.on_modify(document)
            self.term_index.add(document)
            if self.embeddings is not None:
                self._embed_scheduler.schedule(document.id)

        self._lexicon_scheduler.schedule(event.doc_id)
        if self._on_change is not None:
            self._on_change()

    @property
    def pending_embeddings(self) -> int:
        return self._embed_scheduler.pending_count

    @property
    def pending_lexicon(self) -> int:
        return self._lexicon_scheduler.pending_count

    async def flush(self) -> None:
        """Apply every pending update now and wait for in-flight work."""
        self.graph.flush_updates()
        self._lexicon_scheduler.flush()
        self._embed_scheduler.flush()
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- scheduled work --------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_embed_flush(self, doc_ids: List[str]) -> None:
        self._spawn(self._embed_batch(doc_ids))

    async def _embed_batch(self, doc_ids: List[str]) -> None:
        if self.embeddings is None:
            return
        documents = [doc for doc in map(self.corpus.get, doc_ids) if doc is not None]
        if not documents:
            return
        try:
            stats = await self.embeddings.index_all(documents)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Embedding update failed for %d note(s)", len(documents))
            return
        LOGGER.debug("Embedding update: %d indexed, %d failed", stats.indexed, stats.failed)
        if self._on_change is not None:
            self._on_change()

    def _on_lexicon_flush(self, doc_ids: List[str]) -> None:
        LOGGER.debug("Rebuilding phrase lexicon after %d change(s)", len(doc_ids))
        self.segmenter.build_lexicon(self.corpus.list_documents())
