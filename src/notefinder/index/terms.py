"""Document frequencies for IDF-weighted content scoring."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Set

from notefinder.models import Document
from notefinder.utils.text import tokenize

LOGGER = logging.getLogger(__name__)

MIN_TERM_LENGTH = 2


@dataclass(slots=True)
class TermIndexStats:
    total_documents: int
    unique_terms: int


class TermFrequencyIndex:
    """Unique term sets per document and the document frequency of every term."""

    def __init__(self) -> None:
        self._doc_terms: Dict[str, Set[str]] = {}
        self._doc_counts: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._doc_terms)

    def add_document(self, doc_id: str, terms: Iterable[str]) -> None:
        if doc_id in self._doc_terms:
            self.remove_document(doc_id)
        unique = {term for term in terms if term and len(term) >= MIN_TERM_LENGTH}
        self._doc_terms[doc_id] = unique
        for term in unique:
            self._doc_counts[term] = self._doc_counts.get(term, 0) + 1

    def add(self, document: Document) -> None:
        self.add_document(document.id, tokenize(f"{document.title} {document.content}"))

    def remove_document(self, doc_id: str) -> None:
        terms = self._doc_terms.pop(doc_id, None)
        if terms is None:
            return
        for term in terms:
            count = self._doc_counts.get(term, 0)
            if count <= 1:
                self._doc_counts.pop(term, None)
            else:
                self._doc_counts[term] = count - 1

    def rename_document(self, old_id: str, new_id: str) -> None:
        terms = self._doc_terms.pop(old_id, None)
        if terms is not None:
            self._doc_terms[new_id] = terms

    def document_frequency(self, term: str) -> int:
        return self._doc_counts.get(term, 0)

    def idf(self, term: str) -> float:
        """Smoothed inverse document frequency, never negative."""
        total = len(self._doc_terms)
        return max(0.0, math.log((total + 1) / (self.document_frequency(term) + 1)))

    def term_weights(self, terms: List[str]) -> Dict[str, float]:
        """IDF of each term normalised to sum to one; uniform if all IDFs are zero."""
        if not terms:
            return {}
        weights = {term: self.idf(term) for term in terms}
        total = sum(weights.values())
        if total > 0:
            return {term: value / total for term, value in weights.items()}
        uniform = 1.0 / len(weights)
        return {term: uniform for term in weights}

    def stats(self) -> TermIndexStats:
        return TermIndexStats(total_documents=len(self._doc_terms), unique_terms=len(self._doc_counts))

    def clear(self) -> None:
        self._doc_terms = {}
        self._doc_counts = {}

    def log_query_weights(self, terms: List[str]) -> None:
        if not LOGGER.isEnabledFor(logging.DEBUG):
            return
        weights = self.term_weights(terms)
        for term in terms:
            LOGGER.debug(
                "Term %r: df=%d idf=%.2f weight=%.1f%%",
                term,
                self.document_frequency(term),
                self.idf(term),
                weights.get(term, 0.0) * 100,
            )
