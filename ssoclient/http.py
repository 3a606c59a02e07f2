"""HTTP transport shared by discovery, token and userinfo calls.

Wraps a single ``httpx.AsyncClient`` with request/connect timeouts, a TLS
verification toggle and a bounded retry policy with a fixed delay between
attempts. Only transient failures (transport errors, 429 and 5xx) are
retried; all attempts are exhausted before a failure is reported.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from typing import TYPE_CHECKING, Any

import httpx


if TYPE_CHECKING:
    from .config import HttpSettings


logger = logging.getLogger("ssoclient.http")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class HttpTransport:
    """Async HTTP transport with bounded fixed-delay retries.

    Parameters
    ----------
    timeout : float
        Overall request timeout in seconds.
    connect_timeout : float
        Connection timeout in seconds.
    verify : bool
        Whether to verify TLS certificates.
    retry_attempts : int
        Total number of attempts per request (1 disables retries).
    retry_delay : float
        Seconds to wait between attempts.
    transport : httpx.AsyncBaseTransport, optional
        Custom transport (e.g. ``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        verify: bool = True,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the HTTP transport."""
        self.timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self.verify = verify
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(
        cls,
        settings: HttpSettings,
        verify: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> HttpTransport:
        """Create a transport from the ``[http]`` configuration section."""
        return cls(
            timeout=settings.timeout,
            connect_timeout=settings.connect_timeout,
            verify=verify,
            retry_attempts=settings.retry_attempts,
            retry_delay=settings.retry_delay / 1000.0,
            transport=transport,
        )

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                verify=self.verify,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close the shared HTTP client. Call from app shutdown lifecycle."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying transient failures.

        Returns the last response once attempts are exhausted, even if it
        carries a retryable status, so callers can report upstream errors.

        Raises
        ------
        httpx.HTTPError
            If every attempt failed at the transport level.
        """
        client = self._get_client()
        last_exc: httpx.HTTPError | None = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                last_exc = exc
                logger.warning(
                    "%s %s failed (attempt %d/%d): %s",
                    method,
                    url,
                    attempt,
                    self.retry_attempts,
                    exc.__class__.__name__,
                )
            else:
                if (
                    response.status_code not in RETRYABLE_STATUS_CODES
                    or attempt == self.retry_attempts
                ):
                    return response
                logger.warning(
                    "%s %s returned HTTP %d (attempt %d/%d)",
                    method,
                    url,
                    response.status_code,
                    attempt,
                    self.retry_attempts,
                )

            if attempt < self.retry_attempts and self.retry_delay > 0:
                await asyncio.sleep(self.retry_delay)

        assert last_exc is not None
        raise last_exc

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """Send a GET request."""
        return await self.request("GET", url, **kwargs)

    async def post_form(self, url: str, data: dict[str, str], **kwargs: Any) -> httpx.Response:
        """Send a form-encoded POST request."""
        return await self.request("POST", url, data=data, **kwargs)


def parse_json(response: httpx.Response) -> Any:
    """Decode a JSON body, returning None when the body is not JSON."""
    try:
        return response.json()
    except ValueError:
        return None


def upstream_error(response: httpx.Response) -> tuple[str | None, str | None]:
    """Extract the OAuth ``error`` and ``error_description`` from a response."""
    body = parse_json(response)
    if not isinstance(body, dict):
        return None, None
    error = body.get("error")
    description = body.get("error_description")
    return (
        str(error) if error is not None else None,
        str(description) if description is not None else None,
    )
