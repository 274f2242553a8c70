"""Cooperative cancellation for long-running searches."""

from __future__ import annotations

from notefinder.errors import CancellationError


class CancellationToken:
    """Flag checked at coarse-grained points of a search.

    Work that observes a cancelled token raises :class:`CancellationError`
    before touching any shared cache.
    """

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancellationError("search cancelled")


def check_cancelled(token: CancellationToken | None) -> None:
    """Raise if ``token`` exists and has been cancelled."""
    if token is not None:
        token.raise_if_cancelled()
