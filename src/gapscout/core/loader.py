"""
One-time async initialization and readiness polling.

`AsyncSingleLoader` owns a single resource that is expensive to bring up (for example a
places provider session). Concurrent callers share one pending load; a failed load
resets the loader so the next caller retries.

`poll_until_ready` waits for an external dependency to report readiness, with a bounded
number of attempts instead of an open-ended loop.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReadinessTimeoutError(TimeoutError):
    """Raised when a dependency does not become ready within the attempt budget."""


class LoadState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


async def poll_until_ready(
    check: Callable[[], bool],
    *,
    interval_seconds: float = 0.1,
    max_attempts: int = 50,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    what: str = "dependency",
) -> int:
    """Poll `check()` until it returns True; return the number of polls it took.

    Raises:
        ReadinessTimeoutError: If `check()` is still False after `max_attempts` polls.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    for attempt in range(1, max_attempts + 1):
        if check():
            return attempt
        if attempt < max_attempts:
            await sleep(interval_seconds)
    raise ReadinessTimeoutError(
        f"{what} failed to initialize within {max_attempts} attempts"
    )


class AsyncSingleLoader(Generic[T]):
    """Lazy, single-flight loader with an explicit state machine."""

    def __init__(self, load: Callable[[], Awaitable[T]], *, name: str = "resource"):
        self._load = load
        self._name = name
        self._state = LoadState.UNLOADED
        self._pending: asyncio.Task[T] | None = None
        self._value: T | None = None

    @property
    def state(self) -> LoadState:
        return self._state

    async def get(self) -> T:
        if self._state is LoadState.LOADED:
            return self._value  # type: ignore[return-value]

        if self._state is LoadState.UNLOADED:
            logger.debug("Loading %s", self._name)
            self._state = LoadState.LOADING
            self._pending = asyncio.ensure_future(self._load())

        pending = self._pending
        assert pending is not None
        try:
            # Shield so one cancelled waiter does not abort the shared load.
            value = await asyncio.shield(pending)
        except Exception:
            if self._pending is pending:
                self._state = LoadState.UNLOADED
                self._pending = None
            raise

        if self._pending is pending:
            self._value = value
            self._state = LoadState.LOADED
            self._pending = None
        return value

    def reset(self) -> None:
        """Forget a loaded value so the next `get()` loads again."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self._value = None
        self._state = LoadState.UNLOADED
