"""Chunked embedding index with max-pooled similarity search."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Sequence

import numpy as np

from notefinder.embedding.encoder import EmbeddingProvider
from notefinder.embedding.queue import RequestQueue
from notefinder.errors import ValidationError
from notefinder.index.storage import EmbeddingStore
from notefinder.models import ChunkEmbedding, Document, EmbeddingFileEntry, IndexStats
from notefinder.search.types import SemanticHit
from notefinder.utils.cancel import CancellationToken, check_cancelled
from notefinder.utils.files import compile_exclusions, content_hash, is_excluded
from notefinder.utils.text import chunk_sentences

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

CANCEL_CHECK_INTERVAL = 50
PERSIST_INTERVAL = 10


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine of two vectors; 0 on length mismatch or a zero norm."""
    a = np.asarray(a, dtype="float32").reshape(-1)
    b = np.asarray(b, dtype="float32").reshape(-1)
    if a.shape != b.shape:
        return 0.0
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


@dataclass(slots=True)
class EmbeddingIndexStats:
    documents: int
    chunks: int
    dimension: int | None
    model: str


class EmbeddingIndex:
    """Per-document chunk vectors plus the machinery to keep them current.

    Every vector stored in a session has the same dimension, fixed by the
    first vector received. Entries are replaced whole, so a concurrent
    reader sees either the old or the new chunks of a document.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        queue: RequestQueue | None = None,
        store: EmbeddingStore | None = None,
        chunk_size: int = 400,
        exclude_patterns: Sequence[str] = (),
    ) -> None:
        self.provider = provider
        self.queue = queue or RequestQueue()
        self.store = store
        self.chunk_size = chunk_size
        self._exclusions: List[re.Pattern[str]] = compile_exclusions(exclude_patterns)
        self.expected_dimension: int | None = None
        self._entries: Dict[str, EmbeddingFileEntry] = {}
        self._matrices: Dict[str, np.ndarray] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._entries

    @property
    def model_id(self) -> str:
        return self.provider.model_id

    def is_excluded(self, doc_id: str) -> bool:
        return is_excluded(doc_id, self._exclusions)

    # -- chunking --------------------------------------------------------

    def chunk_document(self, document: Document) -> List[str]:
        tags = " ".join(sorted(tag.lstrip("#") for tag in document.metadata.tags))
        prefix = f"{document.title} {tags}" if tags else document.title
        return chunk_sentences(document.content, prefix=prefix, max_chars=self.chunk_size)

    # -- indexing --------------------------------------------------------

    def _validate_vector(self, vector: np.ndarray) -> np.ndarray:
        array = np.asarray(vector, dtype="float32").reshape(-1)
        if self.expected_dimension is None:
            self.expected_dimension = int(array.shape[0])
            LOGGER.debug("Embedding dimension fixed at %d", self.expected_dimension)
        if array.shape[0] != self.expected_dimension:
            raise ValidationError(
                f"dimension mismatch: got {array.shape[0]}, expected {self.expected_dimension}"
            )
        return array

    async def _embed_chunk(self, text: str) -> np.ndarray:
        return await self.queue.add(lambda: self.provider.embed(text))

    async def index_document(self, document: Document) -> str:
        """Bring one document's entry up to date.

        Returns ``indexed``, ``unchanged``, ``excluded``, ``empty`` or ``failed``.
        """
        if self.is_excluded(document.id):
            return "excluded"

        existing = self._entries.get(document.id)
        if existing is not None and existing.is_valid_for(document):
            return "unchanged"

        digest = content_hash(document.content)
        if existing is not None and existing.content_hash == digest:
            # Touched but not edited: only the validity marker moves.
            existing.mtime = document.mtime
            return "unchanged"

        if not document.content.strip():
            self.remove(document.id)
            return "empty"
        chunks = self.chunk_document(document)
        if not chunks:
            self.remove(document.id)
            return "empty"

        results = await asyncio.gather(
            *(self._embed_chunk(text) for text in chunks), return_exceptions=True
        )
        embedded: List[ChunkEmbedding] = []
        for position, (text, result) in enumerate(zip(chunks, results)):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                LOGGER.warning(
                    "Embedding chunk %d of %s failed: %s", position + 1, document.id, result
                )
                continue
            try:
                vector = self._validate_vector(result)
            except ValidationError as exc:
                LOGGER.warning("Dropping chunk %d of %s: %s", position + 1, document.id, exc)
                continue
            embedded.append(ChunkEmbedding(vector=vector, text=text, position=position))

        if not embedded:
            LOGGER.warning("No embeddings generated for %s", document.id)
            self.remove(document.id)
            return "failed"

        self._set_entry(
            document.id,
            EmbeddingFileEntry(content_hash=digest, mtime=document.mtime, chunks=embedded),
        )
        LOGGER.debug("Indexed %s with %d chunks", document.id, len(embedded))
        return "indexed"

    def _set_entry(self, doc_id: str, entry: EmbeddingFileEntry) -> None:
        self._entries[doc_id] = entry
        self._matrices[doc_id] = np.vstack([chunk.vector for chunk in entry.chunks])

    async def index_all(
        self,
        documents: Iterable[Document],
        on_progress: ProgressCallback | None = None,
    ) -> IndexStats:
        """Index every stale document, persisting every few documents and at the end."""
        started = time.perf_counter()
        stats = IndexStats()
        pending: List[Document] = []
        for document in documents:
            if self.is_excluded(document.id):
                stats.increment("excluded", document.id)
                continue
            entry = self._entries.get(document.id)
            if entry is not None and entry.is_valid_for(document):
                stats.increment("unchanged", document.id)
                continue
            pending.append(document)

        if not pending:
            LOGGER.debug("All documents already embedded or excluded")
            return stats

        LOGGER.info("Embedding %d document(s)", len(pending))
        total = len(pending)
        done = 0

        async def run(document: Document) -> None:
            nonlocal done
            try:
                status = await self.index_document(document)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Failed to index %s", document.id)
                status = "failed"
            stats.increment(status, document.id)
            done += 1
            if on_progress is not None:
                on_progress(done, total)
            if done % PERSIST_INTERVAL == 0:
                self.persist()

        await asyncio.gather(*(run(document) for document in pending))
        self.persist()

        queue_stats = self.queue.stats()
        LOGGER.info(
            "Embedding pass done in %.1fs: %d indexed, %d failed (concurrency %d/%d)",
            time.perf_counter() - started,
            stats.indexed,
            stats.failed,
            queue_stats.effective_concurrency,
            queue_stats.user_concurrency,
        )
        return stats

    # -- querying --------------------------------------------------------

    def query(
        self,
        query_vector: np.ndarray,
        *,
        limit: int = 20,
        threshold: float = 0.0,
        token: CancellationToken | None = None,
    ) -> List[SemanticHit]:
        """Documents ranked by their best-matching chunk."""
        vector = np.asarray(query_vector, dtype="float32").reshape(-1)
        query_norm = float(np.linalg.norm(vector))
        if query_norm == 0.0:
            return []
        if self.expected_dimension is not None and vector.shape[0] != self.expected_dimension:
            LOGGER.warning(
                "Query vector has dimension %d, index uses %d",
                vector.shape[0],
                self.expected_dimension,
            )
            return []

        hits: List[SemanticHit] = []
        for count, (doc_id, matrix) in enumerate(list(self._matrices.items())):
            if count % CANCEL_CHECK_INTERVAL == 0:
                check_cancelled(token)
            if matrix.shape[1] != vector.shape[0]:
                continue
            norms = np.linalg.norm(matrix, axis=1) * query_norm
            with np.errstate(divide="ignore", invalid="ignore"):
                similarities = np.where(norms > 0, (matrix @ vector) / norms, 0.0)
            best = int(np.argmax(similarities))
            similarity = float(similarities[best])
            if similarity >= threshold:
                entry = self._entries[doc_id]
                hits.append(SemanticHit(doc_id, similarity, entry.chunks[best].text))

        check_cancelled(token)
        hits.sort(key=lambda hit: (-hit.similarity, hit.doc_id))
        return hits[:limit]

    async def search(
        self,
        text: str,
        *,
        limit: int = 20,
        threshold: float = 0.0,
        token: CancellationToken | None = None,
    ) -> List[SemanticHit]:
        check_cancelled(token)
        vector = await self.provider.embed(text)
        check_cancelled(token)
        return self.query(vector, limit=limit, threshold=threshold, token=token)

    # -- maintenance -----------------------------------------------------

    def get_entry(self, doc_id: str) -> EmbeddingFileEntry | None:
        return self._entries.get(doc_id)

    def get_chunks(self, doc_id: str) -> List[ChunkEmbedding]:
        entry = self._entries.get(doc_id)
        return list(entry.chunks) if entry is not None else []

    def remove(self, doc_id: str) -> None:
        self._entries.pop(doc_id, None)
        self._matrices.pop(doc_id, None)

    def rename(self, old_id: str, new_id: str) -> None:
        entry = self._entries.pop(old_id, None)
        self._matrices.pop(old_id, None)
        if entry is not None:
            self._set_entry(new_id, entry)

    def clear(self) -> None:
        self._entries = {}
        self._matrices = {}
        self.expected_dimension = None
        if self.store is not None:
            self.store.clear()

    def stats(self) -> EmbeddingIndexStats:
        return EmbeddingIndexStats(
            documents=len(self._entries),
            chunks=sum(len(entry.chunks) for entry in self._entries.values()),
            dimension=self.expected_dimension,
            model=self.model_id,
        )

    def load(self, documents: Iterable[Document]) -> int:
        """Adopt cached entries that are still valid for the given documents."""
        if self.store is None:
            return 0
        cached = self.store.init()
        if not cached:
            return 0
        if self.expected_dimension is None:
            self.expected_dimension = self.store.dimension

        live = {document.id: document for document in documents}
        loaded = skipped = dropped_chunks = 0
        for doc_id, entry in cached.items():
            document = live.get(doc_id)
            if document is None or not entry.is_valid_for(document):
                skipped += 1
                continue
            chunks = []
            for chunk in entry.chunks:
                try:
                    chunk.vector = self._validate_vector(chunk.vector)
                except ValidationError:
                    dropped_chunks += 1
                    continue
                chunks.append(chunk)
            if not chunks:
                skipped += 1
                continue
            entry.chunks = chunks
            self._set_entry(doc_id, entry)
            loaded += 1

        if dropped_chunks:
            LOGGER.warning(
                "Skipped %d cached chunks with the wrong dimension; consider reindexing",
                dropped_chunks,
            )
        LOGGER.debug("Loaded %d cached embedding entries, skipped %d", loaded, skipped)
        return loaded

    def persist(self) -> None:
        if self.store is None:
            return
        try:
            self.store.persist(self._entries, self.expected_dimension)
        except OSError as exc:
            LOGGER.warning("Failed to persist embedding cache: %s", exc)
