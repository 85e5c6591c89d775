"""
Quota management module for rate limiting and monthly budgets.

Provides a rolling-window rate limiter per service, a registry owning
those limiters, and monthly usage tracking with hard-stop enforcement.
"""

from governor.quota.limiter import RateLimiter, RateLimitStatus
from governor.quota.registry import BatchOutcome, LimiterRegistry
from governor.quota.usage import UsageSnapshot, UsageTracker, month_key

__all__ = [
    "BatchOutcome",
    "LimiterRegistry",
    "RateLimitStatus",
    "RateLimiter",
    "UsageSnapshot",
    "UsageTracker",
    "month_key",
]
