"""
API request governance for the crypto dashboard.

Rate limits, caches and budgets calls to third-party market-data
providers (CoinGecko, DeFiLlama, Basescan, DexScreener, GeckoTerminal).
"""

from governor.cache import CachedResult, CacheStrategy, ResponseCache, derive_key
from governor.errors import (
    FetchError,
    GovernorError,
    QuotaExceededError,
    RateLimitWaitTimeout,
    UnknownServiceError,
)
from governor.gateway import Gateway
from governor.quota import LimiterRegistry, RateLimiter, UsageTracker
from governor.services import RateCard, ServiceId, ServiceLimits

__version__ = "0.1.0"

__all__ = [
    "CacheStrategy",
    "CachedResult",
    "FetchError",
    "Gateway",
    "GovernorError",
    "LimiterRegistry",
    "QuotaExceededError",
    "RateCard",
    "RateLimitWaitTimeout",
    "RateLimiter",
    "ResponseCache",
    "ServiceId",
    "ServiceLimits",
    "UnknownServiceError",
    "UsageTracker",
    "derive_key",
]
