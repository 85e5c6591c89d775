"""Tests for the rolling-window rate limiter."""

import asyncio

import pytest

from governor.errors import RateLimitWaitTimeout
from governor.quota.limiter import RateLimiter, RateLimitStatus
from tests.conftest import FakeClock, settle


def make_task(clock: FakeClock, starts: list[float], value=None):
    async def task():
        starts.append(clock())
        return value

    return task


class TestRateLimitStatus:
    """Tests for RateLimitStatus dataclass."""

    def test_to_dict(self) -> None:
        status = RateLimitStatus(
            service="coingecko",
            requests=3,
            capacity=50,
            available=47,
            queue_length=0,
            next_slot_in_ms=0.0,
            window_ms=60000,
        )
        data = status.to_dict()

        assert data["service"] == "coingecko"
        assert data["available"] == 47
        assert data["window_ms"] == 60000


class TestRateLimiterConstruction:
    """Tests for limiter parameter validation."""

    def test_rejects_zero_capacity(self) -> None:
        with pytest.raises(ValueError):
            RateLimiter(capacity=0, window_ms=1000)

    def test_rejects_zero_window(self) -> None:
        with pytest.raises(ValueError):
            RateLimiter(capacity=1, window_ms=0)

    def test_properties(self) -> None:
        limiter = RateLimiter(capacity=5, window_ms=1000, service="basescan")

        assert limiter.service == "basescan"
        assert limiter.capacity == 5
        assert limiter.window_ms == 1000
        assert limiter.queue_length == 0
        assert not limiter.is_draining


class TestRateLimiter:
    """Tests for admission, ordering and waiting."""

    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock(start=0)

    @pytest.mark.asyncio
    async def test_third_call_waits_for_window(self, clock: FakeClock) -> None:
        """Capacity 2 per second: the third start lands one window later."""
        limiter = RateLimiter(capacity=2, window_ms=1000, clock=clock, sleep=clock.sleep)
        starts: list[float] = []

        await asyncio.gather(*(limiter.execute(make_task(clock, starts)) for _ in range(3)))

        assert starts[:2] == [0, 0]
        assert starts[2] >= 1000

    @pytest.mark.asyncio
    async def test_never_exceeds_capacity_in_any_window(self, clock: FakeClock) -> None:
        limiter = RateLimiter(capacity=3, window_ms=1000, clock=clock, sleep=clock.sleep)
        starts: list[float] = []

        await asyncio.gather(*(limiter.execute(make_task(clock, starts)) for _ in range(10)))

        assert len(starts) == 10
        for i in range(len(starts) - 3):
            assert starts[i + 3] - starts[i] >= 1000

    @pytest.mark.asyncio
    async def test_fifo_order(self, clock: FakeClock) -> None:
        limiter = RateLimiter(capacity=1, window_ms=100, clock=clock, sleep=clock.sleep)
        order: list[int] = []

        def task_for(n: int):
            async def task():
                order.append(n)
                return n

            return task

        results = await asyncio.gather(*(limiter.execute(task_for(n)) for n in range(5)))

        assert order == [0, 1, 2, 3, 4]
        assert results == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_returns_task_result(self, clock: FakeClock) -> None:
        limiter = RateLimiter(capacity=1, window_ms=1000, clock=clock, sleep=clock.sleep)

        async def task():
            return {"bitcoin": {"usd": 42000}}

        assert await limiter.execute(task) == {"bitcoin": {"usd": 42000}}

    @pytest.mark.asyncio
    async def test_failure_only_affects_its_caller(self, clock: FakeClock) -> None:
        limiter = RateLimiter(capacity=5, window_ms=1000, clock=clock, sleep=clock.sleep)

        async def failing():
            raise ValueError("boom")

        async def ok():
            return "ok"

        results = await asyncio.gather(
            limiter.execute(failing),
            limiter.execute(ok),
            return_exceptions=True,
        )

        assert isinstance(results[0], ValueError)
        assert results[1] == "ok"

    @pytest.mark.asyncio
    async def test_self_cancelled_task_does_not_stall_queue(self, clock: FakeClock) -> None:
        limiter = RateLimiter(capacity=5, window_ms=1000, clock=clock, sleep=clock.sleep)
        starts: list[float] = []

        async def cancelled():
            raise asyncio.CancelledError()

        first = asyncio.create_task(limiter.execute(cancelled))
        second = asyncio.create_task(limiter.execute(make_task(clock, starts, "b")))

        assert await asyncio.wait_for(second, timeout=1.0) == "b"
        with pytest.raises(asyncio.CancelledError):
            await first
        await settle()
        assert not limiter.is_draining

    @pytest.mark.asyncio
    async def test_failed_task_still_consumes_slot(self, clock: FakeClock) -> None:
        limiter = RateLimiter(capacity=1, window_ms=1000, clock=clock, sleep=clock.sleep)

        async def failing():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await limiter.execute(failing)

        assert not limiter.can_admit()

    @pytest.mark.asyncio
    async def test_worker_stops_when_queue_empties(self, clock: FakeClock) -> None:
        limiter = RateLimiter(capacity=2, window_ms=1000, clock=clock, sleep=clock.sleep)
        starts: list[float] = []

        await limiter.execute(make_task(clock, starts))
        await settle()

        assert not limiter.is_draining
        assert limiter.queue_length == 0

    @pytest.mark.asyncio
    async def test_max_wait_rejects_long_waits(self, clock: FakeClock) -> None:
        limiter = RateLimiter(
            capacity=1,
            window_ms=1000,
            service="dexcheck",
            max_wait_ms=500,
            clock=clock,
            sleep=clock.sleep,
        )
        starts: list[float] = []

        results = await asyncio.gather(
            limiter.execute(make_task(clock, starts, "first")),
            limiter.execute(make_task(clock, starts, "second")),
            return_exceptions=True,
        )

        assert results[0] == "first"
        assert isinstance(results[1], RateLimitWaitTimeout)
        assert results[1].service == "dexcheck"
        assert len(starts) == 1


class TestRateLimiterStatus:
    """Tests for window inspection."""

    @pytest.mark.asyncio
    async def test_status_after_requests(self) -> None:
        clock = FakeClock(start=0)
        limiter = RateLimiter(
            capacity=5, window_ms=1000, service="geckoterminal", clock=clock, sleep=clock.sleep
        )
        starts: list[float] = []

        await limiter.execute(make_task(clock, starts))
        await limiter.execute(make_task(clock, starts))
        status = limiter.get_status()

        assert status.service == "geckoterminal"
        assert status.requests == 2
        assert status.available == 3
        assert status.queue_length == 0
        assert status.next_slot_in_ms == 0

    @pytest.mark.asyncio
    async def test_next_slot_when_full(self) -> None:
        clock = FakeClock(start=0)
        limiter = RateLimiter(capacity=1, window_ms=1000, clock=clock, sleep=clock.sleep)
        starts: list[float] = []

        await limiter.execute(make_task(clock, starts))
        clock.advance(400)

        assert limiter.time_until_next_slot() == 600
        assert limiter.get_status().available == 0

    @pytest.mark.asyncio
    async def test_window_slides(self) -> None:
        clock = FakeClock(start=0)
        limiter = RateLimiter(capacity=1, window_ms=1000, clock=clock, sleep=clock.sleep)
        starts: list[float] = []

        await limiter.execute(make_task(clock, starts))
        assert not limiter.can_admit()

        clock.advance(1000)
        assert limiter.can_admit()


class TestRateLimiterReset:
    """Tests for reset while work is queued."""

    @pytest.mark.asyncio
    async def test_reset_cancels_queued_tasks(self) -> None:
        clock = FakeClock(start=0)
        release = asyncio.Event()

        async def blocked_sleep(seconds: float) -> None:
            await release.wait()

        limiter = RateLimiter(capacity=1, window_ms=1000, clock=clock, sleep=blocked_sleep)
        starts: list[float] = []

        first = asyncio.create_task(limiter.execute(make_task(clock, starts, "a")))
        second = asyncio.create_task(limiter.execute(make_task(clock, starts, "b")))
        await settle()

        assert first.done()
        assert limiter.queue_length == 1

        limiter.reset()
        release.set()
        await settle()

        assert await first == "a"
        with pytest.raises(asyncio.CancelledError):
            await second
        assert starts == [0]
        assert limiter.queue_length == 0
        assert not limiter.is_draining

    @pytest.mark.asyncio
    async def test_reset_clears_window(self) -> None:
        clock = FakeClock(start=0)
        limiter = RateLimiter(capacity=1, window_ms=1000, clock=clock, sleep=clock.sleep)
        starts: list[float] = []

        await limiter.execute(make_task(clock, starts))
        assert not limiter.can_admit()

        limiter.reset()

        assert limiter.can_admit()
        await limiter.execute(make_task(clock, starts))
        assert starts == [0, 0]
