"""
Cooperative cancellation for asyncio operations.

A `CancellationToken` is handed to every long-running async call. Cancelling the token
interrupts whatever the holder is currently awaiting through `token.run(...)` and makes
all later `run` calls fail fast, so a superseded operation stops doing I/O.

Cancellation is not an error: callers catch `OperationCancelled` at their boundary and
turn it into a quiet outcome instead of surfacing it to the user.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, TypeVar

T = TypeVar("T")


class OperationCancelled(Exception):
    """Raised inside an operation whose token was cancelled."""


class CancellationToken:
    """Idempotent, single-use cancellation signal."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the token fires first.

        On cancellation the inner task is cancelled and `OperationCancelled` is raised.
        """
        if self._event.is_set():
            _discard(awaitable)
            raise OperationCancelled()

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work.done():
            return work.result()

        work.cancel()
        raise OperationCancelled()


def _discard(awaitable: Awaitable[Any]) -> None:
    # Close un-awaited coroutines so they do not trigger "never awaited" warnings.
    close = getattr(awaitable, "close", None)
    if asyncio.iscoroutine(awaitable) and close is not None:
        close()
    elif isinstance(awaitable, asyncio.Future):
        awaitable.cancel()
