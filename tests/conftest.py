"""Shared fixtures: a deterministic embedding provider and a note factory."""

from __future__ import annotations

import hashlib
from typing import Callable, Iterable, List

import numpy as np
import pytest

from notefinder.models import Document, DocumentMetadata, LinkRef
from notefinder.utils.text import tokenize

DIMENSION = 32


class FakeProvider:
    """Bag-of-words hashing embedder; texts sharing words get similar vectors."""

    def __init__(self, dimension: int = DIMENSION, model_id: str = "fake-model") -> None:
        self.dimension = dimension
        self._model_id = model_id
        self.calls: List[str] = []
        self.fail_on: set[str] = set()

    @property
    def model_id(self) -> str:
        return self._model_id

    def vector(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype="float32")
        for token in tokenize(text, min_length=3):
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        norm = float(np.linalg.norm(vector))
        if norm == 0:
            vector[0] = 1.0
            return vector
        return vector / norm

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise RuntimeError("provider unavailable")
        return self.vector(text)


DocFactory = Callable[..., Document]


def _make_doc(
    doc_id: str,
    content: str = "",
    *,
    title: str | None = None,
    mtime: float = 1_000.0,
    tags: Iterable[str] = (),
    links: Iterable[str] = (),
    aliases: Iterable[str] = (),
    headings: Iterable[str] = (),
    fields: dict | None = None,
) -> Document:
    return Document(
        id=doc_id,
        title=title if title is not None else doc_id.rsplit("/", 1)[-1].removesuffix(".md"),
        content=content,
        mtime=mtime,
        size=len(content),
        metadata=DocumentMetadata(
            tags=set(tags),
            headings=list(headings),
            aliases=list(aliases),
            fields=dict(fields or {}),
            links=[LinkRef(target=target) for target in links],
        ),
    )


@pytest.fixture
def make_doc() -> DocFactory:
    return _make_doc


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
