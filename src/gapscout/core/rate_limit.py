"""
Simple in-process rate limiting utilities.

Interactive searches are spaced by a minimum interval to keep upstream API traffic
stable. A request that arrives early waits for the next eligible instant; it is never
dropped.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from gapscout.core.cancellation import CancellationToken


@dataclass
class MinIntervalLimiter:
    """Enforces `min_interval_seconds` between consecutive dispatches (best-effort).

    `clock` and `sleep` are injectable so tests can drive time deterministically.
    """

    min_interval_seconds: float
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    _last_dispatch: float | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if float(self.min_interval_seconds) < 0:
            raise ValueError("min_interval_seconds must be >= 0")

    @property
    def last_dispatch(self) -> float | None:
        return self._last_dispatch

    def remaining(self) -> float:
        """Seconds until the next dispatch is allowed (0 when allowed now)."""
        if self._last_dispatch is None:
            return 0.0
        elapsed = self.clock() - self._last_dispatch
        return max(0.0, float(self.min_interval_seconds) - elapsed)

    async def acquire(self, token: CancellationToken | None = None) -> float:
        """Wait until a dispatch is allowed, record it, and return the seconds waited.

        Raises:
            OperationCancelled: If `token` fires while waiting; no dispatch is recorded.
        """
        waited = 0.0
        while True:
            delay = self.remaining()
            if delay <= 0:
                break
            if token is not None:
                await token.run(self.sleep(delay))
            else:
                await self.sleep(delay)
            waited += delay

        if token is not None:
            token.raise_if_cancelled()
        self._last_dispatch = self.clock()
        return waited
