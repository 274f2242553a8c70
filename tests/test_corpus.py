"""Tests for the in-memory corpus."""

from __future__ import annotations

from typing import List

import pytest

from notefinder.corpus import InMemoryCorpus
from notefinder.models import ChangeEvent


class TestInMemoryCorpus:
    """Test InMemoryCorpus reads, link resolution and events."""

    def test_reads(self, make_doc) -> None:
        """Documents are listed, fetched and read by id."""
        corpus = InMemoryCorpus([make_doc("a.md", "Alpha")])
        assert len(corpus) == 1
        assert corpus.get("a.md").content == "Alpha"
        assert corpus.get("missing.md") is None
        assert corpus.read_content("a.md") == "Alpha"

    def test_read_missing_raises(self) -> None:
        """Reading an unknown note is a KeyError."""
        with pytest.raises(KeyError):
            InMemoryCorpus().read_content("missing.md")

    def test_resolve_link(self, make_doc) -> None:
        """Links resolve by id, stem, title or alias, ignoring case and anchors."""
        corpus = InMemoryCorpus(
            [
                make_doc("notes/Project Plan.md"),
                make_doc("people/ada.md", title="Ada Lovelace", aliases=["Countess"]),
            ]
        )
        assert corpus.resolve_link("notes/Project Plan.md", "x.md") == "notes/Project Plan.md"
        assert corpus.resolve_link("project plan#Goals", "x.md") == "notes/Project Plan.md"
        assert corpus.resolve_link("Ada Lovelace", "x.md") == "people/ada.md"
        assert corpus.resolve_link("countess", "x.md") == "people/ada.md"
        assert corpus.resolve_link("nobody", "x.md") is None
        assert corpus.resolve_link("  ", "x.md") is None

    def test_resolve_prefers_sibling(self, make_doc) -> None:
        """Ambiguous names resolve to the linking note's folder first."""
        corpus = InMemoryCorpus([make_doc("a/index.md"), make_doc("b/index.md")])
        assert corpus.resolve_link("index", "b/other.md") == "b/index.md"
        assert corpus.resolve_link("index", "c/other.md") == "a/index.md"

    def test_events(self, make_doc) -> None:
        """Mutations emit create, modify, rename and delete events."""
        corpus = InMemoryCorpus()
        events: List[ChangeEvent] = []
        unsubscribe = corpus.subscribe(events.append)

        corpus.add(make_doc("a.md", "one"))
        corpus.update(make_doc("a.md", "two"))
        corpus.rename("a.md", "b.md")
        corpus.delete("b.md")
        corpus.delete("b.md")

        assert [(e.kind, e.doc_id, e.old_id) for e in events] == [
            ("create", "a.md", None),
            ("modify", "a.md", None),
            ("rename", "b.md", "a.md"),
            ("delete", "b.md", None),
        ]

        unsubscribe()
        corpus.add(make_doc("c.md"))
        assert len(events) == 4

    def test_failing_listener_does_not_block_others(self, make_doc) -> None:
        """A listener that raises is logged; later listeners still run."""
        corpus = InMemoryCorpus()
        seen: List[str] = []

        def broken(event: ChangeEvent) -> None:
            raise RuntimeError("boom")

        corpus.subscribe(broken)
        corpus.subscribe(lambda event: seen.append(event.doc_id))
        corpus.add(make_doc("a.md"))

        assert seen == ["a.md"]
