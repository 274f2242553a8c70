"""Tests for the term frequency index."""

from __future__ import annotations

import math

import pytest

from notefinder.index.terms import TermFrequencyIndex


@pytest.fixture
def index() -> TermFrequencyIndex:
    index = TermFrequencyIndex()
    index.add_document("a", ["python", "code", "python"])
    index.add_document("b", ["python", "garden"])
    index.add_document("c", ["garden", "x"])
    return index


class TestTermFrequencyIndex:
    """Test document frequencies and IDF weights."""

    def test_document_frequency_counts_unique_terms(self, index: TermFrequencyIndex) -> None:
        """A term counts once per document; very short terms are ignored."""
        assert index.document_frequency("python") == 2
        assert index.document_frequency("code") == 1
        assert index.document_frequency("x") == 0
        assert len(index) == 3

    def test_idf(self, index: TermFrequencyIndex) -> None:
        """IDF is smoothed and never negative."""
        assert index.idf("code") == pytest.approx(math.log(4 / 2))
        assert index.idf("unknown") == pytest.approx(math.log(4))
        index.add_document("d", ["python"])
        index.add_document("e", ["python"])
        assert index.idf("python") >= 0.0

    def test_term_weights(self, index: TermFrequencyIndex) -> None:
        """Weights favour rarer terms and sum to one."""
        weights = index.term_weights(["python", "code"])
        assert weights["code"] > weights["python"]
        assert sum(weights.values()) == pytest.approx(1.0)
        assert index.term_weights([]) == {}

    def test_uniform_when_no_information(self) -> None:
        """All-zero IDFs fall back to an even split."""
        index = TermFrequencyIndex()
        assert index.term_weights(["alpha", "beta"]) == {"alpha": 0.5, "beta": 0.5}
        index.add_document("a", ["alpha", "beta"])
        assert index.term_weights(["alpha", "beta"]) == {"alpha": 0.5, "beta": 0.5}

    def test_re_adding_replaces(self, index: TermFrequencyIndex) -> None:
        """Adding an existing document replaces its terms."""
        index.add_document("a", ["garden"])
        assert index.document_frequency("python") == 1
        assert index.document_frequency("garden") == 3

    def test_remove_and_rename(self, index: TermFrequencyIndex) -> None:
        """Removal decrements counts; rename keeps them."""
        index.rename_document("a", "z")
        assert index.document_frequency("code") == 1
        index.remove_document("z")
        assert index.document_frequency("code") == 0
        index.remove_document("missing")
        assert index.stats().total_documents == 2

    def test_add_document_model(self, make_doc) -> None:
        """Titles and content are tokenised together."""
        index = TermFrequencyIndex()
        index.add(make_doc("n.md", "Body words here", title="Title"))
        assert index.document_frequency("title") == 1
        assert index.document_frequency("body") == 1

    def test_clear(self, index: TermFrequencyIndex) -> None:
        """Clearing drops everything."""
        index.clear()
        assert index.stats().unique_terms == 0
        assert len(index) == 0
