"""JSON snapshot stores for embeddings and link-graph scores.

Both stores follow the same lifecycle: ``init()`` loads whatever snapshot is
on disk, ``persist()`` writes the current state atomically and ``clear()``
drops memory and disk state. A snapshot whose version (or, for embeddings,
model) does not match the running configuration is discarded as a whole;
there is no partial migration.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Dict, List

import numpy as np
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from notefinder.models import ChunkEmbedding, EmbeddingFileEntry

LOGGER = logging.getLogger(__name__)

EMBEDDING_CACHE_VERSION = "2.0.0"
GRAPH_CACHE_VERSION = "1.0.0"


class ChunkPayload(BaseModel):
    text: str
    embedding: List[float]
    position: int | None = None


class EmbeddingEntryPayload(BaseModel):
    content_hash: str
    mtime: float
    chunks: List[ChunkPayload] = Field(default_factory=list)


class EmbeddingSnapshot(BaseModel):
    version: str = EMBEDDING_CACHE_VERSION
    model: str
    dimension: int | None = None
    updated_at: float = 0.0
    entries: Dict[str, EmbeddingEntryPayload] = Field(default_factory=dict)


class GraphSnapshot(BaseModel):
    version: str = GRAPH_CACHE_VERSION
    computed_at: float = 0.0
    scores: Dict[str, float] = Field(default_factory=dict)


def _write_atomic(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    os.replace(tmp_path, path)


def _read_snapshot(path: Path | None) -> str | None:
    if path is None or not path.exists():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        LOGGER.warning("Unable to read cache %s: %s", path, exc)
        return None


def entry_to_payload(entry: EmbeddingFileEntry) -> EmbeddingEntryPayload:
    return EmbeddingEntryPayload(
        content_hash=entry.content_hash,
        mtime=entry.mtime,
        chunks=[
            ChunkPayload(
                text=chunk.text,
                embedding=np.asarray(chunk.vector, dtype="float32").tolist(),
                position=chunk.position,
            )
            for chunk in entry.chunks
        ],
    )


def payload_to_entry(payload: EmbeddingEntryPayload) -> EmbeddingFileEntry:
    return EmbeddingFileEntry(
        content_hash=payload.content_hash,
        mtime=payload.mtime,
        chunks=[
            ChunkEmbedding(
                vector=np.asarray(chunk.embedding, dtype="float32"),
                text=chunk.text,
                position=chunk.position,
            )
            for chunk in payload.chunks
        ],
    )


class EmbeddingStore:
    """Persistent cache of per-document chunk embeddings.

    With ``path=None`` the store only lives in memory, which is what tests
    and throwaway sessions use.
    """

    def __init__(self, path: Path | None, *, model: str) -> None:
        self.path = Path(path) if path is not None else None
        self.model = model
        self.dimension: int | None = None
        self.entries: Dict[str, EmbeddingFileEntry] = {}

    def init(self) -> Dict[str, EmbeddingFileEntry]:
        """Load the snapshot from disk, returning the loaded entries."""
        raw = _read_snapshot(self.path)
        if raw is None:
            return self.entries

        try:
            snapshot = EmbeddingSnapshot.model_validate_json(raw)
        except PydanticValidationError as exc:
            LOGGER.warning("Discarding unreadable embedding cache %s: %s", self.path, exc)
            return self.entries

        if snapshot.version != EMBEDDING_CACHE_VERSION:
            LOGGER.info(
                "Embedding cache version %s != %s, full reindex required",
                snapshot.version,
                EMBEDDING_CACHE_VERSION,
            )
            return self.entries
        if snapshot.model != self.model:
            LOGGER.info(
                "Embedding cache built with %s, current model is %s; full reindex required",
                snapshot.model,
                self.model,
            )
            return self.entries

        self.dimension = snapshot.dimension
        self.entries = {
            doc_id: payload_to_entry(payload) for doc_id, payload in snapshot.entries.items()
        }
        LOGGER.debug("Loaded %d cached embedding entries from %s", len(self.entries), self.path)
        return self.entries

    def persist(self, entries: Dict[str, EmbeddingFileEntry], dimension: int | None) -> None:
        self.entries = dict(entries)
        self.dimension = dimension
        if self.path is None:
            return
        snapshot = EmbeddingSnapshot(
            model=self.model,
            dimension=dimension,
            updated_at=time.time(),
            entries={doc_id: entry_to_payload(entry) for doc_id, entry in entries.items()},
        )
        _write_atomic(self.path, snapshot.model_dump_json())
        LOGGER.debug("Persisted %d embedding entries to %s", len(entries), self.path)

    def clear(self) -> None:
        self.entries = {}
        self.dimension = None
        if self.path is not None and self.path.exists():
            self.path.unlink()


class GraphScoreStore:
    """Persistent snapshot of normalised PageRank scores."""

    def __init__(self, path: Path | None) -> None:
        self.path = Path(path) if path is not None else None
        self.scores: Dict[str, float] = {}
        self.computed_at: float = 0.0

    def init(self) -> Dict[str, float]:
        raw = _read_snapshot(self.path)
        if raw is None:
            return self.scores

        try:
            snapshot = GraphSnapshot.model_validate_json(raw)
        except PydanticValidationError as exc:
            LOGGER.warning("Discarding unreadable graph cache %s: %s", self.path, exc)
            return self.scores

        if snapshot.version != GRAPH_CACHE_VERSION:
            LOGGER.info(
                "Graph cache version %s != %s, scores will be recomputed",
                snapshot.version,
                GRAPH_CACHE_VERSION,
            )
            return self.scores

        self.scores = dict(snapshot.scores)
        self.computed_at = snapshot.computed_at
        return self.scores

    def persist(self, scores: Dict[str, float]) -> None:
        self.scores = dict(scores)
        self.computed_at = time.time()
        if self.path is None:
            return
        snapshot = GraphSnapshot(computed_at=self.computed_at, scores=self.scores)
        _write_atomic(self.path, snapshot.model_dump_json())

    def clear(self) -> None:
        self.scores = {}
        self.computed_at = 0.0
        if self.path is not None and self.path.exists():
            self.path.unlink()
