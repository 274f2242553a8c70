"""Tests for the embedding and graph cache snapshots."""

from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from notefinder.index.storage import (
    EMBEDDING_CACHE_VERSION,
    EmbeddingStore,
    GraphScoreStore,
    entry_to_payload,
    payload_to_entry,
)
from notefinder.models import ChunkEmbedding, EmbeddingFileEntry


def _entry(mtime: float = 10.0) -> EmbeddingFileEntry:
    return EmbeddingFileEntry(
        content_hash="abc",
        mtime=mtime,
        chunks=[
            ChunkEmbedding(vector=np.array([1.0, 0.0, 0.0], dtype="float32"), text="one", position=0),
            ChunkEmbedding(vector=np.array([0.0, 1.0, 0.0], dtype="float32"), text="two", position=1),
        ],
    )


class TestPayloadConversion:
    """Test conversion between entries and pydantic payloads."""

    def test_payload_keeps_vectors_and_text(self) -> None:
        """Vectors come back as float32 arrays with their chunk text."""
        restored = payload_to_entry(entry_to_payload(_entry()))
        assert restored.content_hash == "abc"
        assert [chunk.text for chunk in restored.chunks] == ["one", "two"]
        assert restored.chunks[1].vector.dtype == np.float32
        np.testing.assert_allclose(restored.chunks[1].vector, [0.0, 1.0, 0.0])


class TestEmbeddingStore:
    """Test EmbeddingStore persistence."""

    def test_persist_and_reload(self, tmp_path: Path) -> None:
        """Entries written by one store are read by the next."""
        path = tmp_path / "cache" / "embeddings.json"
        EmbeddingStore(path, model="m").persist({"a.md": _entry()}, 3)
        assert path.exists()

        store = EmbeddingStore(path, model="m")
        entries = store.init()
        assert list(entries) == ["a.md"]
        assert store.dimension == 3
        assert len(entries["a.md"].chunks) == 2

    def test_snapshot_format(self, tmp_path: Path) -> None:
        """The snapshot records version, model and dimension."""
        path = tmp_path / "embeddings.json"
        EmbeddingStore(path, model="m").persist({"a.md": _entry()}, 3)
        data = json.loads(path.read_text())
        assert data["version"] == EMBEDDING_CACHE_VERSION
        assert data["model"] == "m"
        assert data["dimension"] == 3
        assert data["entries"]["a.md"]["chunks"][0]["text"] == "one"

    def test_model_mismatch_discards(self, tmp_path: Path) -> None:
        """A cache built by another model is not reused."""
        path = tmp_path / "embeddings.json"
        EmbeddingStore(path, model="old").persist({"a.md": _entry()}, 3)
        assert EmbeddingStore(path, model="new").init() == {}

    def test_version_mismatch_discards(self, tmp_path: Path) -> None:
        """A cache with another format version is not reused."""
        path = tmp_path / "embeddings.json"
        EmbeddingStore(path, model="m").persist({"a.md": _entry()}, 3)
        data = json.loads(path.read_text())
        data["version"] = "1.0.0"
        path.write_text(json.dumps(data))
        assert EmbeddingStore(path, model="m").init() == {}

    def test_corrupt_file_discards(self, tmp_path: Path) -> None:
        """Unparseable JSON is treated as an empty cache."""
        path = tmp_path / "embeddings.json"
        path.write_text("{not json")
        assert EmbeddingStore(path, model="m").init() == {}

    def test_memory_only_store(self) -> None:
        """Without a path the store keeps entries in memory."""
        store = EmbeddingStore(None, model="m")
        store.persist({"a.md": _entry()}, 3)
        assert list(store.init()) == ["a.md"]

    def test_clear_removes_file(self, tmp_path: Path) -> None:
        """clear deletes the snapshot."""
        path = tmp_path / "embeddings.json"
        store = EmbeddingStore(path, model="m")
        store.persist({"a.md": _entry()}, 3)
        store.clear()
        assert not path.exists()
        assert store.entries == {}


class TestGraphScoreStore:
    """Test GraphScoreStore persistence."""

    def test_persist_and_reload(self, tmp_path: Path) -> None:
        """Scores survive a new store instance."""
        path = tmp_path / "link-graph.json"
        GraphScoreStore(path).persist({"a.md": 1.0, "b.md": 0.5})
        store = GraphScoreStore(path)
        assert store.init() == {"a.md": 1.0, "b.md": 0.5}
        assert store.computed_at > 0

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing snapshot yields no scores."""
        assert GraphScoreStore(tmp_path / "none.json").init() == {}

    @pytest.mark.parametrize("payload", ["[]", '{"version": "9.9.9", "scores": {"a": 1}}'])
    def test_invalid_snapshot_ignored(self, tmp_path: Path, payload: str) -> None:
        """Snapshots of the wrong shape or version are ignored."""
        path = tmp_path / "link-graph.json"
        path.write_text(payload)
        assert GraphScoreStore(path).init() == {}
