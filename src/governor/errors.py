"""Exception types raised by the governance layer."""

from datetime import datetime


class GovernorError(Exception):
    """Base class for all governor errors."""


class ConfigError(GovernorError):
    """Raised when the service rate card is invalid."""


class UnknownServiceError(GovernorError, KeyError):
    """Raised when a service id is not present in the rate card."""

    def __init__(self, service: str) -> None:
        self.service = service
        super().__init__(f"Unknown API service: {service}")

    def __str__(self) -> str:
        return self.args[0]


class QuotaExceededError(GovernorError):
    """Raised when a service's monthly call budget is exhausted."""

    def __init__(self, service: str, used: int, limit: int, resets_at: datetime) -> None:
        self.service = service
        self.used = used
        self.limit = limit
        self.resets_at = resets_at
        super().__init__(
            f"API limit exceeded for {service} ({used}/{limit} calls this month). "
            f"Usage resets on {resets_at.date().isoformat()}."
        )


class RateLimitWaitTimeout(GovernorError):
    """Raised when a queued task waited longer than the limiter allows."""

    def __init__(self, service: str, waited_ms: float) -> None:
        self.service = service
        self.waited_ms = waited_ms
        super().__init__(
            f"Rate limit queue wait for {service} exceeded: waited {waited_ms:.0f}ms"
        )


class FetchError(GovernorError):
    """Raised when a provider request fails."""

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service} request failed: {message}")


class CacheCorruptionError(GovernorError):
    """A durable cache entry could not be decoded. Never surfaced to callers."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        super().__init__(f"Corrupt cache entry {key}: {reason}")
