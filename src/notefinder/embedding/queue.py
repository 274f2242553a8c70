"""Bounded concurrency for embedding requests with optional adaptive throttling."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

RESPONSE_WINDOW = 10
SLOW_RESPONSE_SECONDS = 2.0
FAST_RESPONSE_SECONDS = 0.5


@dataclass(slots=True)
class QueueStats:
    queued: int
    active: int
    effective_concurrency: int
    user_concurrency: int
    average_response: float
    adaptive: bool


class RequestQueue:
    """Runs at most ``max_concurrent`` request factories at once.

    With ``adaptive`` enabled the effective limit follows the provider: when
    the average of the last responses is slower than two seconds one slot is
    given up, when it is faster than half a second a slot is restored, never
    going past the configured limit or below one.
    """

    def __init__(
        self,
        max_concurrent: int = 3,
        *,
        adaptive: bool = True,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._user_limit = max(1, max_concurrent)
        self._effective_limit = self._user_limit
        self._adaptive = adaptive
        self._timer = timer
        self._active = 0
        self._waiting = 0
        self._responses: deque[float] = deque(maxlen=RESPONSE_WINDOW)
        self._condition: asyncio.Condition | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeups: set[asyncio.Task[None]] = set()

    def _get_condition(self) -> asyncio.Condition:
        # One condition per event loop; the queue may outlive an asyncio.run().
        loop = asyncio.get_running_loop()
        if self._condition is None or self._loop is not loop:
            self._condition = asyncio.Condition()
            self._loop = loop
        return self._condition

    async def add(self, request: Callable[[], Awaitable[T]]) -> T:
        condition = self._get_condition()
        async with condition:
            self._waiting += 1
            try:
                await condition.wait_for(lambda: self._active < self._effective_limit)
            finally:
                self._waiting -= 1
            self._active += 1

        started = self._timer()
        try:
            return await request()
        finally:
            self._record_response(self._timer() - started)
            async with condition:
                self._active -= 1
                condition.notify_all()

    def _record_response(self, elapsed: float) -> None:
        self._responses.append(elapsed)
        if not self._adaptive or len(self._responses) < RESPONSE_WINDOW // 2:
            return

        average = self.average_response
        if average > SLOW_RESPONSE_SECONDS and self._effective_limit > 1:
            self._effective_limit -= 1
            LOGGER.info(
                "Slow embedding responses (%.2fs avg), concurrency lowered to %d",
                average,
                self._effective_limit,
            )
            self._responses.clear()
        elif average < FAST_RESPONSE_SECONDS and self._effective_limit < self._user_limit:
            self._effective_limit += 1
            LOGGER.debug("Embedding concurrency raised to %d", self._effective_limit)
            self._responses.clear()

    @property
    def average_response(self) -> float:
        if not self._responses:
            return 0.0
        return sum(self._responses) / len(self._responses)

    @property
    def effective_limit(self) -> int:
        return self._effective_limit

    def stats(self) -> QueueStats:
        return QueueStats(
            queued=self._waiting,
            active=self._active,
            effective_concurrency=self._effective_limit,
            user_concurrency=self._user_limit,
            average_response=self.average_response,
            adaptive=self._adaptive,
        )

    def update_limit(self, limit: int) -> None:
        self._user_limit = max(1, limit)
        self._effective_limit = self._user_limit
        self._responses.clear()
        self._wake()

    def set_adaptive(self, enabled: bool) -> None:
        self._adaptive = enabled
        if not enabled:
            self._effective_limit = self._user_limit
            self._wake()

    def _wake(self) -> None:
        condition = self._condition
        if condition is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if loop is not self._loop:
            return

        async def notify() -> None:
            async with condition:
                condition.notify_all()

        task = loop.create_task(notify())
        self._wakeups.add(task)
        task.add_done_callback(self._wakeups.discard)
