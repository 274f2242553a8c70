"""Throttle + debounce coalescing for incremental index maintenance.

A burst of document edits should not trigger one recomputation per edit.
:class:`UpdateScheduler` collects keys and flushes them in batches:

- Throttle: while keys keep arriving, a flush happens at least every
  ``throttle_ms`` so derived indexes never starve during long bursts.
- Debounce: ``debounce_ms`` after the last ``schedule`` call a trailing
  flush picks up whatever arrived since the last throttle flush.

Timers come from an injectable :class:`Clock`. Production code uses the
running asyncio loop; tests drive a :class:`ManualClock` by hand.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from typing import Callable, Protocol

LOGGER = logging.getLogger(__name__)

FlushCallback = Callable[[list[str]], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    """Source of time and delayed callbacks."""

    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioClock:
    """Clock backed by the running event loop."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


class _ManualTimer:
    __slots__ = ("deadline", "callback", "cancelled")

    def __init__(self, deadline: float, callback: Callable[[], None]) -> None:
        self.deadline = deadline
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Deterministic clock for tests; time only moves through :meth:`advance`."""

    _EPSILON = 1e-9

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._timers: list[tuple[float, int, _ManualTimer]] = []
        self._sequence = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = _ManualTimer(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._timers, (timer.deadline, next(self._sequence), timer))
        return timer

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in deadline order."""
        target = self._now + seconds
        while self._timers and self._timers[0][0] <= target + self._EPSILON:
            deadline, _, timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self._now = max(self._now, deadline)
            timer.callback()
        self._now = target

    @property
    def pending_timers(self) -> int:
        return sum(1 for _, _, timer in self._timers if not timer.cancelled)


class UpdateScheduler:
    """Coalesces scheduled keys into throttled and debounced flushes."""

    def __init__(
        self,
        on_flush: FlushCallback,
        *,
        throttle_ms: float = 200,
        debounce_ms: float = 500,
        name: str = "UpdateScheduler",
        clock: Clock | None = None,
    ) -> None:
        self._on_flush = on_flush
        self.throttle_ms = throttle_ms
        self.debounce_ms = debounce_ms
        self.name = name
        self._clock = clock or AsyncioClock()
        self._pending: dict[str, None] = {}
        self._throttle_timer: TimerHandle | None = None
        self._debounce_timer: TimerHandle | None = None
        self._destroyed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def schedule(self, key: str) -> None:
        """Queue ``key`` for the next flush."""
        if self._destroyed:
            return

        self._pending[key] = None
        LOGGER.debug("[%s] Scheduled %s (%d pending)", self.name, key, len(self._pending))

        if self._throttle_timer is None:
            self._throttle_timer = self._clock.call_later(
                self.throttle_ms / 1000, self._on_throttle
            )

        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
        self._debounce_timer = self._clock.call_later(self.debounce_ms / 1000, self._on_debounce)

    def flush(self) -> None:
        """Flush pending keys immediately."""
        self._perform_flush("manual")

    def destroy(self) -> None:
        """Cancel both timers and drop pending keys."""
        self._destroyed = True
        if self._throttle_timer is not None:
            self._throttle_timer.cancel()
            self._throttle_timer = None
        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
            self._debounce_timer = None
        self._pending.clear()
        LOGGER.debug("[%s] Destroyed", self.name)

    def _on_throttle(self) -> None:
        self._throttle_timer = None
        self._perform_flush("throttle")

    def _on_debounce(self) -> None:
        self._debounce_timer = None
        self._perform_flush("debounce")

    def _perform_flush(self, trigger: str) -> None:
        if not self._pending:
            return

        # Snapshot first: keys taken here are never re-queued, even on failure.
        items = list(self._pending)
        self._pending.clear()
        LOGGER.debug("[%s] Flush (%s): %d items", self.name, trigger, len(items))

        try:
            self._on_flush(items)
        except Exception:
            LOGGER.exception("[%s] Flush failed", self.name)
