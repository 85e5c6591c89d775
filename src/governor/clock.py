"""Time helpers shared by the limiter, cache and usage tracker."""

import time
from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], float]
"""Callable returning the current time in epoch milliseconds."""


def now_ms() -> float:
    """Get the current wall-clock time in epoch milliseconds."""
    return time.time() * 1000


def to_datetime(ms: float) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
