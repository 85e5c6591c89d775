"""
Rolling-window rate limiter with a FIFO request queue.

Each external service gets one limiter. Work submitted through
`RateLimiter.execute` is queued and admitted in submission order so
that no more than `capacity` tasks start within any trailing
`window_ms` interval. Excess work is delayed, never rejected.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from governor.clock import Clock, now_ms
from governor.errors import RateLimitWaitTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class RateLimitStatus:
    """Snapshot of a limiter's window and queue."""

    service: str
    """Service the limiter guards."""

    requests: int
    """Requests admitted within the current window."""

    capacity: int
    """Maximum requests per window."""

    available: int
    """Slots left in the current window."""

    queue_length: int
    """Tasks waiting for a slot."""

    next_slot_in_ms: float
    """Milliseconds until the next slot frees up (0 if one is free)."""

    window_ms: int = 0
    """Window length in milliseconds."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "requests": self.requests,
            "capacity": self.capacity,
            "available": self.available,
            "queue_length": self.queue_length,
            "next_slot_in_ms": self.next_slot_in_ms,
            "window_ms": self.window_ms,
        }


@dataclass
class _PendingTask:
    task: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    enqueued_at: float


class RateLimiter:
    """
    Rolling-window limiter for one service.

    Admission timestamps are kept in a deque and pruned once they fall
    out of the window. A single drain worker pops the queue head, waits
    for a free slot, records the admission and then runs the task. The
    timestamp is recorded before the task is awaited so a slow task
    cannot let a burst slip past the capacity check.

    Tasks run one after another in enqueue order. A failing task only
    fails its own caller; the worker moves on to the next item.
    """

    def __init__(
        self,
        capacity: int,
        window_ms: float,
        service: str = "default",
        max_wait_ms: float | None = None,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        """
        Initialize the limiter.

        Args:
            capacity: Maximum admissions per window
            window_ms: Window length in milliseconds
            service: Service name used in logs and errors
            max_wait_ms: Reject tasks that would wait longer than this
                (None = wait indefinitely)
            clock: Time source in epoch milliseconds
            sleep: Coroutine function used to wait, in seconds
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if window_ms <= 0:
            raise ValueError(f"window_ms must be positive, got {window_ms}")

        self._capacity = capacity
        self._window_ms = window_ms
        self._service = service
        self._max_wait_ms = max_wait_ms
        self._clock = clock or now_ms
        self._sleep = sleep or asyncio.sleep

        self._timestamps: deque[float] = deque()
        self._pending: deque[_PendingTask] = deque()
        self._is_draining = False
        self._generation = 0
        self._drain_task: asyncio.Task | None = None

    @property
    def service(self) -> str:
        return self._service

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def window_ms(self) -> float:
        return self._window_ms

    @property
    def is_draining(self) -> bool:
        return self._is_draining

    @property
    def queue_length(self) -> int:
        return len(self._pending)

    def _prune(self, now: float) -> None:
        """Drop admissions that fell out of the window."""
        while self._timestamps and now - self._timestamps[0] >= self._window_ms:
            self._timestamps.popleft()

    def can_admit(self) -> bool:
        """Check whether a request could start right now."""
        self._prune(self._clock())
        return len(self._timestamps) < self._capacity

    def time_until_next_slot(self) -> float:
        """
        Get milliseconds until a slot frees up.

        Returns:
            0 if a request can start now, otherwise the time until the
            oldest admission leaves the window
        """
        now = self._clock()
        self._prune(now)
        if len(self._timestamps) < self._capacity:
            return 0.0

        oldest = self._timestamps[0]
        return max(0.0, self._window_ms - (now - oldest))

    async def execute(self, task: Callable[[], Awaitable[T]]) -> T:
        """
        Run a task once the window has room for it.

        Args:
            task: Zero-argument coroutine function performing the request

        Returns:
            Whatever the task returns

        Raises:
            Exception: Whatever the task raises, unchanged
            RateLimitWaitTimeout: If max_wait_ms is set and would be exceeded
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._pending.append(_PendingTask(task=task, future=future, enqueued_at=self._clock()))
        self._ensure_draining()
        return await future

    def _ensure_draining(self) -> None:
        """Start the drain worker unless one is already running."""
        if self._is_draining:
            return
        self._is_draining = True
        self._drain_task = asyncio.create_task(self._drain(self._generation))

    async def _drain(self, generation: int) -> None:
        """Admit queued tasks one at a time until the queue is empty."""
        try:
            while self._pending and generation == self._generation:
                wait_ms = self.time_until_next_slot()
                head = self._pending[0]

                if self._max_wait_ms is not None:
                    waited = self._clock() - head.enqueued_at
                    if waited + wait_ms > self._max_wait_ms:
                        self._pending.popleft()
                        if not head.future.done():
                            head.future.set_exception(
                                RateLimitWaitTimeout(self._service, waited + wait_ms)
                            )
                        continue

                if wait_ms > 0:
                    logger.debug(
                        f"{self._service}: window full, waiting {wait_ms:.0f}ms "
                        f"({len(self._pending)} queued)"
                    )
                    await self._sleep(wait_ms / 1000)
                    # Another admission may have landed while we slept
                    continue

                item = self._pending.popleft()
                if item.future.done():
                    # Caller gave up before the task was admitted
                    continue

                self._timestamps.append(self._clock())
                await self._run(item)
        finally:
            if generation == self._generation:
                self._is_draining = False
                self._drain_task = None

    async def _run(self, item: _PendingTask) -> None:
        """Invoke a task and settle its future."""
        try:
            result = await item.task()
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # The task cancelled itself; the worker keeps draining
            logger.debug(f"{self._service}: queued task was cancelled")
        except Exception as e:
            if not item.future.done():
                item.future.set_exception(e)
        else:
            if not item.future.done():
                item.future.set_result(result)

    def get_status(self) -> RateLimitStatus:
        """Get current window occupancy and queue depth."""
        next_slot = self.time_until_next_slot()
        requests = len(self._timestamps)
        return RateLimitStatus(
            service=self._service,
            requests=requests,
            capacity=self._capacity,
            available=max(0, self._capacity - requests),
            queue_length=len(self._pending),
            next_slot_in_ms=next_slot,
            window_ms=int(self._window_ms),
        )

    def reset(self) -> None:
        """
        Clear the window and the queue.

        Queued tasks that have not started are cancelled. A task that is
        already running finishes and settles its own caller.
        """
        self._generation += 1
        self._timestamps.clear()
        while self._pending:
            item = self._pending.popleft()
            if not item.future.done():
                item.future.cancel()
        self._is_draining = False
        self._drain_task = None
        logger.debug(f"Reset rate limiter for {self._service}")
