"""Usage signals: how recently and how often notes are opened, and bounces."""

from __future__ import annotations

import logging
import math
import time
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Protocol

LOGGER = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60
RECENCY_DECAY_DAYS = 7
BOUNCE_DECAY_DAYS = 14
BOUNCE_THRESHOLD_SECONDS = 5.0
MAX_SEARCH_HISTORY = 1000


class UsageProvider(Protocol):
    """Per-document signals in ``[0, 1]`` plus the hooks that feed them."""

    def recency_score(self, doc_id: str) -> float: ...

    def usage_score(self, doc_id: str) -> float: ...

    def bounce_score(self, doc_id: str) -> float: ...

    def record_search(self, query: str, selected_id: str | None = None) -> None: ...

    def record_selection(self, query: str, doc_id: str) -> None: ...

    def record_result_open(self, doc_id: str, query: str) -> None: ...


@dataclass(slots=True)
class AccessRecord:
    count: int
    last_opened: float
    first_opened: float


@dataclass(slots=True)
class BounceRecord:
    bounces: int = 0
    opens: int = 0
    last_bounce: float = 0.0


@dataclass(slots=True)
class SearchRecord:
    query: str
    timestamp: float
    selected_id: str | None = None


@dataclass(slots=True)
class UsageStats:
    total_opens: int
    total_searches: int
    unique_documents: int


class UsageTracker:
    """In-memory usage history.

    A bounce is a return to search within five seconds of opening a result;
    frequent bounces mark a document as a poor answer.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._access: Dict[str, AccessRecord] = {}
        self._bounces: Dict[str, BounceRecord] = {}
        self._history: List[SearchRecord] = []
        self._last_result: tuple[str, float] | None = None

    def record_open(self, doc_id: str) -> None:
        if not doc_id:
            return
        now = self._clock()
        record = self._access.get(doc_id)
        if record is None:
            self._access[doc_id] = AccessRecord(count=1, last_opened=now, first_opened=now)
        else:
            record.count += 1
            record.last_opened = now

    def record_result_open(self, doc_id: str, query: str) -> None:
        """A search result was opened; start watching for a bounce."""
        self.record_open(doc_id)
        self._last_result = (doc_id, self._clock())
        self._bounces.setdefault(doc_id, BounceRecord()).opens += 1

    def record_search_return(self) -> None:
        """The user came back to search; counts as a bounce if it was quick."""
        if self._last_result is None:
            return
        doc_id, opened_at = self._last_result
        self._last_result = None
        now = self._clock()
        elapsed = now - opened_at
        if elapsed < BOUNCE_THRESHOLD_SECONDS:
            record = self._bounces.setdefault(doc_id, BounceRecord(opens=1))
            record.bounces += 1
            record.last_bounce = now
            LOGGER.debug("Bounce detected for %s (returned after %.1fs)", doc_id, elapsed)

    def record_search(self, query: str, selected_id: str | None = None) -> None:
        if not query or not query.strip():
            return
        self._history.append(SearchRecord(query.strip(), self._clock(), selected_id))
        if len(self._history) > MAX_SEARCH_HISTORY:
            del self._history[: len(self._history) - MAX_SEARCH_HISTORY]

    def record_selection(self, query: str, doc_id: str) -> None:
        """Mark the latest search as having led to ``doc_id``.

        If the latest search was for another query, the selection is recorded
        as a search of its own.
        """
        text = query.strip()
        if not text:
            return
        if self._history and self._history[-1].query == text:
            self._history[-1].selected_id = doc_id
            return
        self.record_search(text, doc_id)

    def recency_score(self, doc_id: str) -> float:
        record = self._access.get(doc_id)
        if record is None:
            return 0.0
        elapsed = max(0.0, self._clock() - record.last_opened)
        return math.exp(-elapsed / (RECENCY_DECAY_DAYS * DAY_SECONDS))

    def usage_score(self, doc_id: str) -> float:
        record = self._access.get(doc_id)
        if record is None:
            return 0.0
        peak = max((r.count for r in self._access.values()), default=1) or 1
        ceiling = math.log(1 + peak)
        return math.log(1 + record.count) / ceiling if ceiling > 0 else 0.0

    def bounce_score(self, doc_id: str) -> float:
        record = self._bounces.get(doc_id)
        if record is None or record.opens == 0:
            return 0.0
        rate = min(record.bounces / record.opens, 1.0)
        days = max(0.0, self._clock() - record.last_bounce) / DAY_SECONDS
        return rate * math.exp(-days / BOUNCE_DECAY_DAYS)

    def search_history(self, limit: int | None = None) -> List[SearchRecord]:
        history = list(reversed(self._history))
        return history[:limit] if limit else history

    def frequent_queries(self, limit: int = 10) -> List[tuple[str, int]]:
        return Counter(record.query for record in self._history).most_common(limit)

    def recent_documents(self, limit: int = 10) -> List[str]:
        ranked = sorted(self._access.items(), key=lambda item: -item[1].last_opened)
        return [doc_id for doc_id, _ in ranked[:limit]]

    def rename(self, old_id: str, new_id: str) -> None:
        if old_id in self._access:
            self._access[new_id] = self._access.pop(old_id)
        if old_id in self._bounces:
            self._bounces[new_id] = self._bounces.pop(old_id)

    def forget(self, doc_id: str) -> None:
        self._access.pop(doc_id, None)
        self._bounces.pop(doc_id, None)

    def stats(self) -> UsageStats:
        return UsageStats(
            total_opens=sum(record.count for record in self._access.values()),
            total_searches=len(self._history),
            unique_documents=len(self._access),
        )

    def reset(self) -> None:
        self._access = {}
        self._bounces = {}
        self._history = []
        self._last_result = None
