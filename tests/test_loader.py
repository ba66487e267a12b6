import asyncio

import pytest

from gapscout.core.cancellation import CancellationToken, OperationCancelled
from gapscout.core.loader import (
    AsyncSingleLoader,
    LoadState,
    ReadinessTimeoutError,
    poll_until_ready,
)
from gapscout.core.rate_limit import MinIntervalLimiter


class FakeClock:
    """Monotonic clock whose `sleep` advances time instantly."""

    def __init__(self, now: float = 0.0):
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def test_poll_until_ready_returns_attempt_count():
    clock = FakeClock()
    answers = iter([False, False, True])

    attempts = asyncio.run(
        poll_until_ready(lambda: next(answers), interval_seconds=0.1, max_attempts=50, sleep=clock.sleep)
    )

    assert attempts == 3
    assert clock.sleeps == [0.1, 0.1]


def test_poll_until_ready_gives_up_after_max_attempts():
    clock = FakeClock()

    with pytest.raises(ReadinessTimeoutError, match="places provider failed to initialize"):
        asyncio.run(
            poll_until_ready(
                lambda: False, interval_seconds=0.1, max_attempts=3, sleep=clock.sleep, what="places provider"
            )
        )

    assert clock.sleeps == [0.1, 0.1]


def test_single_loader_shares_one_pending_load():
    calls = []

    async def load():
        calls.append(1)
        await asyncio.sleep(0)
        return "session"

    async def run():
        loader = AsyncSingleLoader(load, name="session")
        assert loader.state is LoadState.UNLOADED
        values = await asyncio.gather(loader.get(), loader.get(), loader.get())
        again = await loader.get()
        return loader, values, again

    loader, values, again = asyncio.run(run())

    assert values == ["session", "session", "session"]
    assert again == "session"
    assert calls == [1]
    assert loader.state is LoadState.LOADED


def test_single_loader_resets_after_failure():
    attempts = []

    async def load():
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("first open fails")
        return "ok"

    async def run():
        loader = AsyncSingleLoader(load)
        with pytest.raises(RuntimeError):
            await loader.get()
        state_after_failure = loader.state
        value = await loader.get()
        return state_after_failure, value, loader.state

    state_after_failure, value, final_state = asyncio.run(run())

    assert state_after_failure is LoadState.UNLOADED
    assert value == "ok"
    assert final_state is LoadState.LOADED
    assert len(attempts) == 2


def test_token_run_returns_result_when_not_cancelled():
    async def run():
        token = CancellationToken()
        return await token.run(asyncio.sleep(0, result=42))

    assert asyncio.run(run()) == 42


def test_token_run_fails_fast_when_already_cancelled():
    async def run():
        token = CancellationToken()
        token.cancel()
        token.cancel()
        assert token.cancelled
        await token.run(asyncio.sleep(0))

    with pytest.raises(OperationCancelled):
        asyncio.run(run())


def test_token_cancel_interrupts_inner_work():
    inner_cancelled = []

    async def work():
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            inner_cancelled.append(True)
            raise

    async def run():
        token = CancellationToken()
        task = asyncio.ensure_future(token.run(work()))
        await asyncio.sleep(0)
        token.cancel()
        with pytest.raises(OperationCancelled):
            await task
        await asyncio.sleep(0)

    asyncio.run(run())
    assert inner_cancelled == [True]


def test_limiter_defers_early_requests_until_interval_elapses():
    clock = FakeClock()
    limiter = MinIntervalLimiter(2.0, clock=clock, sleep=clock.sleep)

    async def run():
        first = await limiter.acquire()
        first_at = limiter.last_dispatch
        clock.now += 0.5
        second = await limiter.acquire()
        return first, first_at, second, limiter.last_dispatch

    first, first_at, second, second_at = asyncio.run(run())

    assert first == 0
    assert second == pytest.approx(1.5)
    assert second_at - first_at >= 2.0


def test_limiter_does_not_record_dispatch_when_cancelled_while_waiting():
    clock = FakeClock()
    limiter = MinIntervalLimiter(2.0, clock=clock, sleep=clock.sleep)

    async def run():
        await limiter.acquire()
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            await limiter.acquire(token)

    asyncio.run(run())
    assert limiter.last_dispatch == 0.0


def test_limiter_rejects_negative_interval():
    with pytest.raises(ValueError):
        MinIntervalLimiter(-1)
