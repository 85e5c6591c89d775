"""Registry of per-service rate limiters."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from governor.clock import Clock
from governor.quota.limiter import RateLimiter, RateLimitStatus, Sleep
from governor.services import RateCard, ServiceId

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchOutcome:
    """Result of one task in a settled batch."""

    index: int
    result: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LimiterRegistry:
    """
    Owns one RateLimiter per service.

    Build one registry at startup and hand it to every consumer. Limiters
    are created on first use from the service's rate card row and live as
    long as the registry.
    """

    def __init__(
        self,
        rate_card: RateCard,
        max_wait_ms: float | None = None,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        """
        Initialize the registry.

        Args:
            rate_card: Service limits table
            max_wait_ms: Queue wait bound applied to every limiter
            clock: Time source passed to created limiters
            sleep: Sleep coroutine passed to created limiters
        """
        self._rate_card = rate_card
        self._max_wait_ms = max_wait_ms
        self._clock = clock
        self._sleep = sleep
        self._limiters: dict[ServiceId, RateLimiter] = {}

    @property
    def rate_card(self) -> RateCard:
        return self._rate_card

    def get(self, service: str | ServiceId) -> RateLimiter:
        """
        Get or create the limiter for a service.

        Raises:
            UnknownServiceError: If the service is not in the rate card
        """
        service_id = ServiceId.parse(service)
        limiter = self._limiters.get(service_id)
        if limiter is None:
            limits = self._rate_card[service_id]
            limiter = RateLimiter(
                capacity=limits.capacity,
                window_ms=limits.window_ms,
                service=service_id.value,
                max_wait_ms=self._max_wait_ms,
                clock=self._clock,
                sleep=self._sleep,
            )
            self._limiters[service_id] = limiter
            logger.debug(
                f"Created rate limiter for {service_id.value}: "
                f"{limits.capacity} requests / {limits.window_ms}ms"
            )
        return limiter

    async def execute(
        self,
        service: str | ServiceId,
        task: Callable[[], Awaitable[T]],
    ) -> T:
        """Run a task under the service's rate limit."""
        return await self.get(service).execute(task)

    def can_admit(self, service: str | ServiceId) -> bool:
        return self.get(service).can_admit()

    def status(self, service: str | ServiceId) -> RateLimitStatus:
        return self.get(service).get_status()

    def status_all(self) -> dict[str, RateLimitStatus]:
        """Get status for every limiter created so far."""
        return {
            service.value: limiter.get_status()
            for service, limiter in self._limiters.items()
        }

    def reset(self, service: str | ServiceId) -> None:
        self.get(service).reset()

    def reset_all(self) -> None:
        for limiter in self._limiters.values():
            limiter.reset()

    async def execute_batch(
        self,
        service: str | ServiceId,
        tasks: Sequence[Callable[[], Awaitable[Any]]],
    ) -> list[Any]:
        """
        Run several tasks under one service's limit.

        Returns:
            Results in the same order as tasks

        Raises:
            Exception: The first task error, after every task has settled
        """
        limiter = self.get(service)
        outcomes = await asyncio.gather(
            *(limiter.execute(task) for task in tasks),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return list(outcomes)

    async def execute_batch_settled(
        self,
        service: str | ServiceId,
        tasks: Sequence[Callable[[], Awaitable[Any]]],
    ) -> list[BatchOutcome]:
        """
        Run several tasks and report each outcome without raising.

        Returns:
            One BatchOutcome per task, in task order
        """
        limiter = self.get(service)
        outcomes = await asyncio.gather(
            *(limiter.execute(task) for task in tasks),
            return_exceptions=True,
        )
        return [
            BatchOutcome(index=i, error=outcome)
            if isinstance(outcome, BaseException)
            else BatchOutcome(index=i, result=outcome)
            for i, outcome in enumerate(outcomes)
        ]
