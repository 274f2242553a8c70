"""Keyword retrieval: the provider interface and a BM25 adapter."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Protocol

from rank_bm25 import BM25Okapi

from notefinder.corpus import Corpus
from notefinder.models import ChangeEvent
from notefinder.search.types import KeywordHit
from notefinder.utils.text import first_matching_sentence, tokenize

LOGGER = logging.getLogger(__name__)

TITLE_REPEAT = 2


class KeywordProvider(Protocol):
    async def search(self, query: str, limit: int) -> List[KeywordHit]: ...


class BM25KeywordSearcher:
    """Okapi BM25 over title, tags, headings and body of every note in a corpus.

    Title and tag tokens are repeated so a hit there outweighs a body hit;
    heading tokens are added once more on top of their body occurrence.
    The index is rebuilt lazily on the first search after a corpus change.
    """

    def __init__(self, corpus: Corpus) -> None:
        self.corpus = corpus
        self._bm25: BM25Okapi | None = None
        self._doc_ids: List[str] = []
        self._fields: List[Dict[str, set[str]]] = []
        self._dirty = True
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.corpus.subscribe(self._on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_change(self, event: ChangeEvent) -> None:
        self._dirty = True

    def invalidate(self) -> None:
        self._dirty = True

    def _ensure_index(self) -> None:
        if not self._dirty:
            return
        documents = sorted(self.corpus.list_documents(), key=lambda doc: doc.id)
        corpus_tokens: List[List[str]] = []
        self._doc_ids = []
        self._fields = []
        for document in documents:
            title = tokenize(document.title)
            tags = tokenize(" ".join(document.metadata.tags))
            headings = tokenize(" ".join(document.metadata.headings))
            body = tokenize(document.content)
            self._doc_ids.append(document.id)
            self._fields.append(
                {
                    "title": set(title),
                    "tags": set(tags),
                    "headings": set(headings),
                    "content": set(body),
                }
            )
            corpus_tokens.append(title * TITLE_REPEAT + tags * TITLE_REPEAT + headings + body)
        self._bm25 = BM25Okapi(corpus_tokens) if corpus_tokens else None
        self._dirty = False
        LOGGER.debug("Rebuilt BM25 index over %d documents", len(self._doc_ids))

    def search_sync(self, query: str, limit: int) -> List[KeywordHit]:
        self._ensure_index()
        terms = list(dict.fromkeys(tokenize(query)))
        if self._bm25 is None or not terms:
            return []

        scores = self._bm25.get_scores(terms)
        hits: List[KeywordHit] = []
        for index, doc_id in enumerate(self._doc_ids):
            fields = self._fields[index]
            matches = {
                term: [name for name, tokens in fields.items() if term in tokens]
                for term in terms
            }
            matches = {term: names for term, names in matches.items() if names}
            if not matches:
                continue
            hits.append(KeywordHit(doc_id=doc_id, score=float(scores[index]), matches=matches))

        hits.sort(key=lambda hit: (-hit.score, hit.doc_id))
        hits = hits[:limit]
        for hit in hits:
            try:
                content = self.corpus.read_content(hit.doc_id)
            except KeyError:
                continue
            hit.snippet = first_matching_sentence(content, terms) or None
        return hits

    async def search(self, query: str, limit: int) -> List[KeywordHit]:
        return await asyncio.to_thread(self.search_sync, query, limit)
