"""Core NoteFinder data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Literal

import numpy as np

from notefinder.utils.files import content_hash

ChangeKind = Literal["create", "modify", "delete", "rename"]


@dataclass(slots=True)
class LinkRef:
    """A link declared inside a note, before resolution."""

    target: str
    display_text: str = ""


@dataclass(slots=True)
class DocumentMetadata:
    """Structured metadata of a note. Collections are always present, possibly empty."""

    tags: set[str] = field(default_factory=set)
    headings: List[str] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)
    fields: dict[str, Any] = field(default_factory=dict)
    links: List[LinkRef] = field(default_factory=list)


@dataclass(slots=True)
class Document:
    """Snapshot of a note as served by the corpus."""

    id: str
    title: str
    content: str
    mtime: float
    size: int
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)

    @property
    def outbound_links(self) -> List[str]:
        return [link.target for link in self.metadata.links]


@dataclass(slots=True)
class ChangeEvent:
    """Corpus change notification."""

    kind: ChangeKind
    doc_id: str
    old_id: str | None = None


@dataclass(slots=True)
class ChunkEmbedding:
    """Embedding of one chunk together with the text it was computed from."""

    vector: np.ndarray
    text: str
    position: int | None = None


@dataclass(slots=True)
class EmbeddingFileEntry:
    """All chunk embeddings of one document plus its validity markers."""

    content_hash: str
    mtime: float
    chunks: List[ChunkEmbedding] = field(default_factory=list)

    def is_valid_for(self, document: Document) -> bool:
        """Valid while the note is no newer than the entry and its text is unchanged."""
        return document.mtime <= self.mtime and self.content_hash == content_hash(document.content)


@dataclass(slots=True)
class IndexStats:
    indexed: int = 0
    unchanged: int = 0
    excluded: int = 0
    empty: int = 0
    failed: int = 0
    processed: List[str] = field(default_factory=list)

    def increment(self, status: str, doc_id: str) -> None:
        if status == "indexed":
            self.indexed += 1
        elif status == "unchanged":
            self.unchanged += 1
        elif status == "excluded":
            self.excluded += 1
        elif status == "empty":
            self.empty += 1
        else:
            self.failed += 1
        self.processed.append(doc_id)

    @property
    def total(self) -> int:
        return len(self.processed)
