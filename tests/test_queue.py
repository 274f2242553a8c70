"""Tests for the adaptive embedding request queue."""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from notefinder.embedding.queue import RequestQueue


def _stepping_timer(step: float) -> Callable[[], float]:
    """Each call advances by ``step``, so a sequential request takes ``step`` seconds."""
    now = 0.0

    def timer() -> float:
        nonlocal now
        now += step
        return now

    return timer


async def _value(value: int) -> int:
    return value


class TestRequestQueue:
    """Test RequestQueue concurrency and adaptation."""

    def test_returns_results(self) -> None:
        """add resolves to the request's own result."""
        queue = RequestQueue(2)

        async def run() -> list[int]:
            return await asyncio.gather(*(queue.add(lambda i=i: _value(i)) for i in range(5)))

        assert asyncio.run(run()) == [0, 1, 2, 3, 4]

    def test_errors_propagate(self) -> None:
        """A failing request raises to its caller and frees its slot."""
        queue = RequestQueue(1)

        async def fail() -> int:
            raise RuntimeError("nope")

        async def run() -> int:
            with pytest.raises(RuntimeError):
                await queue.add(fail)
            return await queue.add(lambda: _value(7))

        assert asyncio.run(run()) == 7
        assert queue.stats().active == 0

    def test_limits_concurrency(self) -> None:
        """Never more than ``max_concurrent`` requests run at once."""
        queue = RequestQueue(2, adaptive=False)
        active = 0
        peak = 0

        async def work() -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        async def run() -> None:
            await asyncio.gather(*(queue.add(work) for _ in range(8)))

        asyncio.run(run())
        assert peak == 2

    def test_slow_responses_lower_limit(self) -> None:
        """Averages above two seconds give up one slot."""
        queue = RequestQueue(3, timer=_stepping_timer(3.0))

        async def run() -> None:
            for _ in range(5):
                await queue.add(lambda: _value(1))

        asyncio.run(run())
        assert queue.effective_limit == 2

    def test_fast_responses_restore_limit(self) -> None:
        """Fast responses climb back up to the configured limit, not past it."""
        queue = RequestQueue(3, timer=_stepping_timer(3.0))

        async def run(count: int) -> None:
            for _ in range(count):
                await queue.add(lambda: _value(1))

        asyncio.run(run(5))
        assert queue.effective_limit == 2

        queue._timer = _stepping_timer(0.1)
        asyncio.run(run(15))
        assert queue.effective_limit == 3

    def test_never_below_one(self) -> None:
        """The effective limit bottoms out at one."""
        queue = RequestQueue(2, timer=_stepping_timer(5.0))

        async def run() -> None:
            for _ in range(30):
                await queue.add(lambda: _value(1))

        asyncio.run(run())
        assert queue.effective_limit == 1

    def test_non_adaptive_keeps_limit(self) -> None:
        """With adaptation off the limit never moves."""
        queue = RequestQueue(3, adaptive=False, timer=_stepping_timer(5.0))

        async def run() -> None:
            for _ in range(10):
                await queue.add(lambda: _value(1))

        asyncio.run(run())
        assert queue.effective_limit == 3
        assert queue.average_response == pytest.approx(5.0)

    def test_disabling_adaptation_restores_limit(self) -> None:
        """Turning adaptation off returns to the configured limit."""
        queue = RequestQueue(3, timer=_stepping_timer(3.0))

        async def run() -> None:
            for _ in range(5):
                await queue.add(lambda: _value(1))

        asyncio.run(run())
        assert queue.effective_limit == 2

        queue.set_adaptive(False)
        assert queue.effective_limit == 3
        assert not queue.stats().adaptive

    def test_update_limit_and_stats(self) -> None:
        """update_limit resets both limits; stats reflect them."""
        queue = RequestQueue(3)
        queue.update_limit(5)
        stats = queue.stats()
        assert stats.user_concurrency == 5
        assert stats.effective_concurrency == 5
        assert stats.queued == 0
        assert stats.adaptive

        queue.update_limit(0)
        assert queue.effective_limit == 1

    def test_raising_limit_wakes_waiters(self) -> None:
        """A waiting request starts once the limit grows, without any release."""
        queue = RequestQueue(1, adaptive=False)

        async def run() -> list[str]:
            order: list[str] = []
            release = asyncio.Event()

            async def blocking() -> str:
                await release.wait()
                order.append("first")
                return "first"

            async def quick() -> str:
                order.append("second")
                return "second"

            first = asyncio.ensure_future(queue.add(blocking))
            await asyncio.sleep(0)
            second = asyncio.ensure_future(queue.add(quick))
            await asyncio.sleep(0)
            assert queue.stats().queued == 1

            queue.update_limit(2)
            assert len(queue._wakeups) == 1
            await asyncio.wait_for(second, timeout=1.0)
            release.set()
            await first
            assert not queue._wakeups
            return order

        assert asyncio.run(run()) == ["second", "first"]
