"""Provider HTTP transport: one attempt per call, failures mapped to FetchError."""

import logging
from typing import Any

import httpx

from governor.config import Settings
from governor.errors import FetchError

logger = logging.getLogger(__name__)


class HttpClient:
    """
    Async HTTP client used by provider fetch functions.

    Wraps a lazily created httpx.AsyncClient. There are no retries here:
    pacing belongs to the rate limiter and recovery to the response cache,
    so a failed call surfaces immediately as a FetchError naming the
    service it was for.
    """

    def __init__(
        self,
        connect_timeout: float = 10.0,
        read_timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            connect_timeout: Seconds allowed to establish a connection
            read_timeout: Seconds allowed between received bytes
            headers: Headers sent with every request
            transport: Custom transport (e.g. httpx.MockTransport in tests)
        """
        self._timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self._headers = headers or {}
        self._transport = transport
        self._session: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpClient":
        return cls(
            connect_timeout=settings.http_timeout_connect,
            read_timeout=settings.http_timeout_read,
        )

    def _ensure_session(self) -> httpx.AsyncClient:
        if self._session is None or self._session.is_closed:
            self._session = httpx.AsyncClient(
                timeout=self._timeout,
                headers=self._headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._session

    async def send(self, service: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send one request for a service.

        Args:
            service: Service id, used in errors and logs
            method: HTTP method
            url: Absolute request URL
            **kwargs: Passed through to httpx (params, headers, json, ...)

        Returns:
            The response, guaranteed to have a 2xx/3xx status

        Raises:
            FetchError: On timeouts, transport failures and 4xx/5xx statuses
        """
        try:
            response = await self._ensure_session().request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"{service}: {method} {url} timed out")
            raise FetchError(service, f"timeout ({type(e).__name__})") from e
        except httpx.HTTPError as e:
            logger.error(f"{service}: {method} {url} failed: {e}")
            raise FetchError(service, str(e) or type(e).__name__) from e

        if response.is_error:
            logger.error(f"{service}: {method} {url} returned {response.status_code}")
            raise FetchError(
                service,
                f"{response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        logger.debug(f"{service}: {method} {url} -> {response.status_code}")
        return response

    async def get_json(
        self,
        service: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """GET a URL and decode the JSON body."""
        response = await self.send(service, "GET", url, params=params, headers=headers)
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(service, f"invalid JSON response ({e})") from e

    async def close(self) -> None:
        if self._session is not None and not self._session.is_closed:
            await self._session.aclose()
        self._session = None

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
