"""Tests for file utility functions."""

from __future__ import annotations

from pathlib import Path

import pytest

from notefinder.errors import ConfigurationError
from notefinder.utils.files import (
    compile_exclusion_pattern,
    compile_exclusions,
    content_hash,
    is_excluded,
    iter_note_paths,
)


class TestIterNotePaths:
    """Test iter_note_paths function."""

    def test_finds_markdown_recursively(self, tmp_path: Path) -> None:
        """Should find .md and .markdown files in nested directories."""
        (tmp_path / "a.md").write_text("a")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b.markdown").write_text("b")
        (tmp_path / "sub" / "c.txt").write_text("c")

        found = sorted(p.relative_to(tmp_path).as_posix() for p in iter_note_paths([tmp_path]))
        assert found == ["a.md", "sub/b.markdown"]

    def test_skips_hidden_directories(self, tmp_path: Path) -> None:
        """Hidden folders such as the cache directory are ignored."""
        hidden = tmp_path / ".notefinder"
        hidden.mkdir()
        (hidden / "x.md").write_text("x")
        (tmp_path / "visible.md").write_text("v")

        assert [p.name for p in iter_note_paths([tmp_path])] == ["visible.md"]

    def test_single_file_input(self, tmp_path: Path) -> None:
        """A note path given directly is yielded as is."""
        note = tmp_path / "note.MD"
        note.write_text("x")
        assert list(iter_note_paths([note])) == [note]

    def test_nonexistent_path(self, tmp_path: Path) -> None:
        """Missing paths yield nothing."""
        assert list(iter_note_paths([tmp_path / "missing"])) == []


class TestContentHash:
    """Test content_hash function."""

    def test_stable_and_distinct(self) -> None:
        """Same text hashes the same; different text differs."""
        assert content_hash("hello") == content_hash("hello")
        assert content_hash("hello") != content_hash("hello!")
        assert len(content_hash("")) == 64


class TestExclusionPatterns:
    """Test glob exclusion patterns."""

    @pytest.mark.parametrize(
        ("pattern", "doc_id", "expected"),
        [
            ("**/node_modules/**", "node_modules/pkg/readme.md", True),
            ("**/node_modules/**", "project/node_modules/x.md", True),
            ("**/*.excalidraw.md", "drawing.excalidraw.md", True),
            ("**/*.excalidraw.md", "deep/dir/drawing.excalidraw.md", True),
            ("*.draft.md", "notes/idea.draft.md", True),
            ("templates/**", "templates/daily.md", True),
            ("templates/**", "notes/templates.md", False),
            ("**/*.sfile.md", "notes/plain.md", False),
        ],
    )
    def test_pattern_matching(self, pattern: str, doc_id: str, expected: bool) -> None:
        """Globs match relative note ids."""
        assert is_excluded(doc_id, [compile_exclusion_pattern(pattern)]) is expected

    def test_empty_pattern_raises(self) -> None:
        """An empty pattern is a configuration error."""
        with pytest.raises(ConfigurationError):
            compile_exclusion_pattern("   ")

    def test_compile_exclusions_skips_invalid(self) -> None:
        """Invalid patterns are dropped, valid ones kept."""
        compiled = compile_exclusions(["", "*.tmp.md"])
        assert len(compiled) == 1
        assert is_excluded("a.tmp.md", compiled)
