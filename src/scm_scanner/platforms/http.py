"""Thin httpx wrapper shared by the GitLab, Bitbucket and Azure DevOps services.

Maps HTTP failures onto the PlatformApiError hierarchy so the paging
logic can treat every platform the same way.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import httpx

from scm_scanner.exceptions import (
    PlatformApiError,
    PlatformAuthenticationError,
    PlatformNotFoundError,
    PlatformRateLimitError,
)
from scm_scanner.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class PlatformHttpClient:
    """Async JSON client for one platform.

    Usage:
        async with PlatformHttpClient("GitLab") as http:
            data, headers = await http.get_json(url, headers=auth, params={"page": 1})

    An injected httpx.AsyncClient is shared and never closed here.
    """

    def __init__(
        self,
        platform: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._platform = platform
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the underlying httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        """Close the underlying client if this wrapper created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> PlatformHttpClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()

    async def get_json(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> tuple[Any, httpx.Headers]:
        """GET a URL and decode the JSON body.

        Args:
            url: Absolute URL
            headers: Request headers (authentication)
            params: Query parameters (None values are dropped)

        Returns:
            Tuple of (decoded body, response headers)

        Raises:
            PlatformApiError: On transport errors and non-2xx responses
        """
        query = {key: value for key, value in (params or {}).items() if value is not None}
        # Merge so query strings already on the URL (next links, cursors) survive
        target = httpx.URL(url).copy_merge_params(query) if query else httpx.URL(url)
        try:
            response = await self.client.get(target, headers=headers)
        except httpx.HTTPError as e:
            raise PlatformApiError(self._platform, f"Request to {url} failed: {e}") from e

        if response.is_error:
            raise self._handle_error(response)

        try:
            return response.json(), response.headers
        except ValueError as e:
            raise PlatformApiError(
                self._platform, f"Invalid JSON from {url}", response.status_code
            ) from e

    def _handle_error(self, response: httpx.Response) -> PlatformApiError:
        """Convert an error response to a platform exception."""
        status = response.status_code
        detail = response.text[:200] if response.text else response.reason_phrase

        if status == 401:
            return PlatformAuthenticationError(self._platform, "Invalid credentials", status)
        if status == 403:
            if response.headers.get("ratelimit-remaining") == "0":
                return PlatformRateLimitError(
                    self._platform, "Rate limit exceeded", status, _reset_at(response.headers)
                )
            return PlatformAuthenticationError(self._platform, f"Access forbidden: {detail}", status)
        if status == 404:
            return PlatformNotFoundError(self._platform, f"Not found: {response.url}", status)
        if status == 429:
            return PlatformRateLimitError(
                self._platform, "Too many requests", status, _reset_at(response.headers)
            )
        return PlatformApiError(self._platform, f"HTTP {status}: {detail}", status)


def _reset_at(headers: httpx.Headers) -> datetime | None:
    value = headers.get("ratelimit-reset") or headers.get("x-ratelimit-reset")
    if value and value.isdigit():
        return datetime.fromtimestamp(int(value), tz=UTC)
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings or epoch millis into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable timestamp: {value}", value=value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def isoformat_z(value: datetime | None) -> str | None:
    """Format a datetime as an ISO-8601 UTC string for query parameters."""
    if value is None:
        return None
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
