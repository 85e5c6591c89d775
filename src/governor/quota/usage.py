"""
Monthly usage tracking.

Counts completed requests per service per calendar month in the durable
store and enforces each service's monthly budget as a hard stop. This is
separate from the rolling-window limiter, which governs burst rate.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypeVar

from governor.cache.base import USAGE_KEY_PREFIX, KeyValueStore
from governor.clock import Clock, now_ms, to_datetime
from governor.errors import QuotaExceededError
from governor.quota.registry import LimiterRegistry
from governor.services import RateCard, ServiceId

logger = logging.getLogger(__name__)

T = TypeVar("T")


def month_key(now: datetime) -> str:
    """Get the "YYYY-MM" bucket for a moment in time."""
    return f"{now.year}-{now.month:02d}"


def next_month_start(now: datetime) -> datetime:
    """Get the first instant of the month after `now` (UTC)."""
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


@dataclass
class UsageSnapshot:
    """Monthly usage of one service."""

    service: str
    used: int
    limit: int | None
    """Monthly budget (None = unbounded)."""

    percentage: float
    """used / limit * 100, or 0 when unbounded."""

    month: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "used": self.used,
            "limit": self.limit,
            "percentage": round(self.percentage, 1),
            "month": self.month,
        }


class UsageTracker:
    """
    Tracks and enforces monthly call budgets.

    Counters live in the durable store under
    "api_usage_{service}_{YYYY-MM}" as integer strings, so a new month
    starts from zero without any rollover job.
    """

    def __init__(
        self,
        store: KeyValueStore,
        rate_card: RateCard,
        limiters: LimiterRegistry,
        warning_threshold: float = 0.8,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize the tracker.

        Args:
            store: Durable store holding the counters
            rate_card: Service limits table
            limiters: Rate limiters used by guarded_request
            warning_threshold: Fraction of the budget that counts as "near"
            clock: Time source in epoch milliseconds
        """
        self._store = store
        self._rate_card = rate_card
        self._limiters = limiters
        self._warning_threshold = warning_threshold
        self._clock = clock or now_ms
        self._lock = asyncio.Lock()

    def _now(self) -> datetime:
        return to_datetime(self._clock())

    def usage_key(self, service: str | ServiceId, now: datetime | None = None) -> str:
        """Get the store key of a service's counter for the month of `now`."""
        service_id = ServiceId.parse(service)
        return f"{USAGE_KEY_PREFIX}{service_id.value}_{month_key(now or self._now())}"

    async def _read_count(self, key: str) -> int:
        raw = await self._store.get(key)
        if raw is None:
            return 0
        try:
            return max(0, int(raw))
        except (TypeError, ValueError):
            logger.warning(f"Corrupt usage counter {key}={raw!r}, treating as 0")
            return 0

    async def get_count(self, service: str | ServiceId) -> int:
        """Get calls recorded for a service this month."""
        return await self._read_count(self.usage_key(service))

    async def increment(self, service: str | ServiceId) -> int:
        """
        Record one completed request.

        Returns:
            The new count for this month
        """
        key = self.usage_key(service)
        async with self._lock:
            count = await self._read_count(key) + 1
            if not await self._store.set(key, str(count)):
                logger.warning(f"Failed to persist usage counter {key}")
        return count

    async def usage(self, service: str | ServiceId) -> UsageSnapshot:
        """Get used/limit/percentage for a service this month."""
        service_id = ServiceId.parse(service)
        limit = self._rate_card[service_id].monthly_limit
        now = self._now()
        used = await self._read_count(self.usage_key(service_id, now))

        if limit is None:
            percentage = 0.0
        elif limit == 0:
            percentage = 100.0
        else:
            percentage = used / limit * 100

        return UsageSnapshot(
            service=service_id.value,
            used=used,
            limit=limit,
            percentage=percentage,
            month=month_key(now),
        )

    async def all_usage(self) -> dict[str, UsageSnapshot]:
        """Get usage for every service in the rate card."""
        return {service.value: await self.usage(service) for service in self._rate_card}

    async def is_near_limit(self, service: str | ServiceId) -> bool:
        """Check if usage is above the warning threshold (never for unbounded)."""
        snapshot = await self.usage(service)
        if snapshot.limit is None:
            return False
        return snapshot.percentage > self._warning_threshold * 100

    async def has_exceeded_limit(self, service: str | ServiceId) -> bool:
        """Check if the monthly budget is used up (never for unbounded)."""
        snapshot = await self.usage(service)
        if snapshot.limit is None:
            return False
        return snapshot.used >= snapshot.limit

    async def guarded_request(
        self,
        service: str | ServiceId,
        fetch_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run a request under the monthly budget and the rate limit.

        Fails fast without calling fetch_fn when the budget is used up,
        warns when it is nearly used up, and records usage after the call
        succeeds. Services with count_failed_requests also record failed
        attempts.

        The budget is checked again when the limiter admits the request.
        Admitted requests for a service run one at a time, so callers
        queued together cannot push the count past the monthly limit.

        Raises:
            QuotaExceededError: If the monthly budget is exhausted
            Exception: Whatever fetch_fn raises, unchanged
        """
        service_id = ServiceId.parse(service)
        limits = self._rate_card[service_id]
        snapshot = await self._check_budget(service_id, limits.monthly_limit)

        if (
            limits.monthly_limit is not None
            and snapshot.percentage > self._warning_threshold * 100
        ):
            logger.warning(
                f"{service_id.value} API usage is at {snapshot.percentage:.0f}% "
                f"of monthly limit ({snapshot.used}/{limits.monthly_limit})"
            )

        async def admitted() -> T:
            await self._check_budget(service_id, limits.monthly_limit)
            try:
                result = await fetch_fn()
            except Exception:
                if limits.count_failed_requests:
                    await self.increment(service_id)
                raise
            await self.increment(service_id)
            return result

        # A request rejected by the queue timeout never reaches fetch_fn
        return await self._limiters.execute(service_id, admitted)

    async def _check_budget(self, service_id: ServiceId, limit: int | None) -> UsageSnapshot:
        """Raise QuotaExceededError if the month's budget is used up."""
        snapshot = await self.usage(service_id)
        if limit is not None and snapshot.used >= limit:
            raise QuotaExceededError(
                service=service_id.value,
                used=snapshot.used,
                limit=limit,
                resets_at=next_month_start(self._now()),
            )
        return snapshot

    async def reset_usage(self, service: str | ServiceId | None = None) -> int:
        """
        Delete usage counters for every month.

        Args:
            service: Service to reset, or None for all services

        Returns:
            Number of counters deleted
        """
        if service is None:
            prefix = USAGE_KEY_PREFIX
            scope = "all services"
        else:
            scope = ServiceId.parse(service).value
            prefix = f"{USAGE_KEY_PREFIX}{scope}_"

        count = await self._store.clear(prefix)
        logger.info(f"Reset {count} usage counters ({scope})")
        return count
