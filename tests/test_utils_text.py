"""Tests for text utility functions."""

from __future__ import annotations

from notefinder.utils.text import (
    chunk_sentences,
    first_matching_sentence,
    query_words,
    split_sentences,
    strip_frontmatter,
    tokenize,
)


class TestStripFrontmatter:
    """Test strip_frontmatter function."""

    def test_removes_leading_block(self) -> None:
        """Should drop the YAML block and keep the body."""
        text = "---\ntags: [a]\n---\nBody text"
        assert strip_frontmatter(text) == "Body text"

    def test_leaves_plain_text(self) -> None:
        """Should not touch text without front matter."""
        assert strip_frontmatter("Just a note") == "Just a note"


class TestSplitSentences:
    """Test split_sentences function."""

    def test_splits_on_terminal_punctuation(self) -> None:
        """Should break after periods, question and exclamation marks."""
        text = "This is the first one. Is this the second one? Yes, the third one!"
        assert split_sentences(text) == [
            "This is the first one.",
            "Is this the second one?",
            "Yes, the third one!",
        ]

    def test_drops_short_fragments(self) -> None:
        """Fragments of ten characters or fewer are ignored."""
        assert split_sentences("Ok. This sentence is long enough.") == [
            "This sentence is long enough."
        ]


class TestChunkSentences:
    """Test chunk_sentences function."""

    def test_empty_text(self) -> None:
        """Should produce no chunks for blank input."""
        assert chunk_sentences("   ", prefix="Note") == []

    def test_prefix_on_every_chunk(self) -> None:
        """Every chunk starts with the title prefix."""
        text = " ".join(f"Sentence number {i} is right here." for i in range(10))
        chunks = chunk_sentences(text, prefix="Title tag", max_chars=120)
        assert len(chunks) > 1
        assert all(chunk.startswith("Title tag: ") for chunk in chunks)

    def test_groups_at_most_four_sentences(self) -> None:
        """A chunk never holds more than four sentences."""
        text = " ".join(f"Sentence number {i} here." for i in range(6))
        chunks = chunk_sentences(text, prefix="T", max_chars=2000)
        assert len(chunks) == 2
        assert chunks[0].count("Sentence number") == 4
        assert chunks[1].count("Sentence number") == 2

    def test_short_text_yields_one_chunk(self) -> None:
        """Text without a qualifying sentence is still embedded."""
        assert chunk_sentences("Hi.", prefix="Note") == ["Note: Hi."]

    def test_oversized_sentence_is_hard_split(self) -> None:
        """A sentence longer than the budget is cut into pieces."""
        chunks = chunk_sentences("a" * 1000, prefix="T", max_chars=100)
        assert len(chunks) > 1
        assert all(len(chunk) <= 100 for chunk in chunks)


class TestTokenize:
    """Test tokenize and query_words."""

    def test_tokenize_lowercases_and_filters(self) -> None:
        """Should lowercase and drop one-character tokens."""
        assert tokenize("Hello, World! a b2") == ["hello", "world", "b2"]

    def test_query_words_min_length(self) -> None:
        """Only words of three characters or more are kept."""
        assert query_words("an ox and a cat") == ["and", "cat"]


class TestFirstMatchingSentence:
    """Test first_matching_sentence function."""

    def test_returns_matching_sentence(self) -> None:
        """Should return the first sentence that mentions a query word."""
        content = "Alpha is here. Beta is there. Beta again."
        assert first_matching_sentence(content, ["beta"]) == "Beta is there"

    def test_truncates_long_sentence(self) -> None:
        """Long matches are cut and marked with an ellipsis."""
        content = "match " + "x" * 300
        excerpt = first_matching_sentence(content, ["match"], max_length=50)
        assert excerpt.endswith("...")
        assert len(excerpt) == 53

    def test_falls_back_to_opening(self) -> None:
        """Without a match the opening text is used."""
        assert first_matching_sentence("Nothing relevant", ["zzz"]) == "Nothing relevant..."

