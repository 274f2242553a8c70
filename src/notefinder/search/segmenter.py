"""Phrase segmentation of queries against a lexicon mined from the corpus."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

from notefinder.models import Document

LOGGER = logging.getLogger(__name__)

# Letters, digits, whitespace, apostrophes and hyphens survive; "_" is not a letter.
_PUNCTUATION_RE = re.compile(r"[^\w\s'-]|_")
_SPACE_RE = re.compile(r"\s+")


def normalize_phrase(text: str) -> str:
    lowered = _PUNCTUATION_RE.sub(" ", text.lower())
    return _SPACE_RE.sub(" ", lowered).strip()


@dataclass(slots=True)
class QuerySegment:
    text: str
    is_phrase: bool
    start: int
    end: int

    @property
    def words(self) -> List[str]:
        return self.text.split()


@dataclass(slots=True)
class SegmentedQuery:
    original: str
    segments: List[QuerySegment] = field(default_factory=list)
    terms: List[str] = field(default_factory=list)

    @property
    def phrases(self) -> List[QuerySegment]:
        return [segment for segment in self.segments if segment.is_phrase]


class QuerySegmenter:
    """Greedy longest-match segmentation over multi-word corpus phrases.

    Titles, aliases, link targets, link display texts and headings with at
    least two words form the lexicon. Until :meth:`build_lexicon` has run
    every query word is its own segment.
    """

    def __init__(self) -> None:
        self._lexicon: Set[str] = set()
        self._by_first_word: Dict[str, List[List[str]]] = {}
        self._built = False

    @property
    def is_ready(self) -> bool:
        return self._built

    @property
    def lexicon_size(self) -> int:
        return len(self._lexicon)

    def __contains__(self, phrase: object) -> bool:
        return isinstance(phrase, str) and normalize_phrase(phrase) in self._lexicon

    def build_lexicon(self, documents: Iterable[Document]) -> None:
        started = time.perf_counter()
        lexicon: Set[str] = set()
        count = 0
        for document in documents:
            count += 1
            stem = document.id.rsplit("/", 1)[-1].rsplit(".", 1)[0]
            sources = [stem, document.title, *document.metadata.aliases, *document.metadata.headings]
            for link in document.metadata.links:
                if link.display_text and link.display_text != link.target:
                    sources.append(link.display_text)
                sources.append(link.target)
            for source in sources:
                phrase = self._as_phrase(source)
                if phrase:
                    lexicon.add(phrase)
        self._install(lexicon)
        LOGGER.debug(
            "Built phrase lexicon with %d phrases from %d documents in %.1fms",
            len(lexicon),
            count,
            (time.perf_counter() - started) * 1000,
        )

    def add_phrases(self, phrases: Iterable[str]) -> None:
        lexicon = set(self._lexicon)
        for text in phrases:
            phrase = self._as_phrase(text)
            if phrase:
                lexicon.add(phrase)
        self._install(lexicon)

    @staticmethod
    def _as_phrase(text: str) -> str | None:
        if not text:
            return None
        normalized = normalize_phrase(text)
        return normalized if len(normalized.split()) >= 2 else None

    def _install(self, lexicon: Set[str]) -> None:
        by_first_word: Dict[str, List[List[str]]] = {}
        for phrase in lexicon:
            words = phrase.split()
            by_first_word.setdefault(words[0], []).append(words)
        for candidates in by_first_word.values():
            candidates.sort(key=lambda words: (-len(words), words))
        self._lexicon = lexicon
        self._by_first_word = by_first_word
        self._built = True

    def segment_query(self, query: str) -> SegmentedQuery:
        words = normalize_phrase(query).split()
        segments: List[QuerySegment] = []
        position = 0
        index = 0
        while index < len(words):
            length = 1
            is_phrase = False
            if self._built:
                for candidate in self._by_first_word.get(words[index], ()):
                    if words[index : index + len(candidate)] == candidate:
                        length = len(candidate)
                        is_phrase = True
                        break
            text = " ".join(words[index : index + length])
            segments.append(QuerySegment(text, is_phrase, position, position + len(text)))
            position += len(text) + 1
            index += length
        return SegmentedQuery(original=query, segments=segments, terms=words)

    def clear(self) -> None:
        self._lexicon = set()
        self._by_first_word = {}
        self._built = False
