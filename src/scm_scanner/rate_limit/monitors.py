"""Per-platform rate limit monitors.

GitHub and GitLab report real quota data. Bitbucket and Azure DevOps do
not expose a usable rate limit API, so their monitors return conservative
estimates rather than failing; a missing signal must never block a scan.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx
from githubkit.exception import RequestFailed

from scm_scanner.config import PlatformConfig, get_settings
from scm_scanner.exceptions import PlatformApiError, PlatformAuthenticationError
from scm_scanner.logging import get_logger
from scm_scanner.platforms.credentials import (
    GitHubFactory,
    basic_or_bearer_headers,
    default_github_factory,
)
from scm_scanner.schemas import ToolType
from scm_scanner.url_parser import extract_azure_organization

from .schemas import RateLimitStatus, now_millis

logger = get_logger(__name__)

DEFAULT_THRESHOLD = 0.8
HTTP_TIMEOUT_SECONDS = 30.0


class RateLimitMonitor(ABC):
    """Reads or estimates the current quota of one platform."""

    platform: ToolType

    def __init__(self, config: PlatformConfig | None = None) -> None:
        """Initialize the monitor.

        Args:
            config: Platform configuration (uses settings if not provided)
        """
        self._config = config or self._default_config()

    @abstractmethod
    def _default_config(self) -> PlatformConfig:
        """Platform configuration from the application settings."""

    @property
    def platform_name(self) -> str:
        """Display name reported in RateLimitStatus.platform."""
        return self.platform.platform_name

    @property
    def default_threshold(self) -> float:
        """Threshold used when no global threshold is configured."""
        threshold = self._config.rate_limit_threshold
        if 0 < threshold <= 1.0:
            return threshold
        return DEFAULT_THRESHOLD

    def supports(self, platform: str | ToolType) -> bool:
        """Check whether this monitor handles the given platform."""
        return ToolType.parse(platform) == self.platform

    @abstractmethod
    async def get_rate_limit_status(
        self,
        token: str,
        base_url: str | None = None,
    ) -> RateLimitStatus:
        """Fetch the current quota for the token.

        Args:
            token: Credentials as passed to the platform services
            base_url: API base URL for self-hosted instances

        Returns:
            Fresh RateLimitStatus

        Raises:
            PlatformAuthenticationError: If the platform rejects the token
        """


class _HttpMonitor(RateLimitMonitor):
    """Shared HTTP plumbing for monitors that call the platform over httpx."""

    def __init__(
        self,
        config: PlatformConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config)
        self._http_client = http_client

    async def _get(self, url: str, headers: dict[str, str]) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.get(url, headers=headers)
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
            return await client.get(url, headers=headers)


# -----------------------------------------------------------------------------
# GitHub
# -----------------------------------------------------------------------------
class GitHubRateLimitMonitor(RateLimitMonitor):
    """Reads the core pool from the GitHub /rate_limit endpoint.

    The /rate_limit endpoint does not count against the quota.
    """

    platform = ToolType.GITHUB

    def __init__(
        self,
        config: PlatformConfig | None = None,
        github_factory: GitHubFactory | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            config: Platform configuration (uses settings if not provided)
            github_factory: Builds a githubkit client for (token, base_url)
        """
        super().__init__(config)
        self._github_factory = github_factory or default_github_factory

    def _default_config(self) -> PlatformConfig:
        return get_settings().platforms.github

    async def get_rate_limit_status(
        self,
        token: str,
        base_url: str | None = None,
    ) -> RateLimitStatus:
        github = self._github_factory(token, base_url)
        try:
            resp = await github.rest.rate_limit.async_get()
        except RequestFailed as e:
            status_code = e.response.status_code
            if status_code == 401:
                raise PlatformAuthenticationError(
                    self.platform_name, "Invalid token", status_code
                ) from e
            raise PlatformApiError(self.platform_name, str(e), status_code) from e

        core = resp.parsed_data.model_dump()["resources"]["core"]
        limit = int(core["limit"])
        remaining = int(core["remaining"])
        status = RateLimitStatus(
            platform=self.platform_name,
            used=max(0, limit - remaining),
            remaining=remaining,
            limit=limit,
            reset_time=int(core["reset"]) * 1000,
        )
        logger.debug(
            "GitHub rate limit: {used}/{limit} used ({pct:.1%})",
            used=status.used,
            limit=status.limit,
            pct=status.usage_percentage,
        )
        return status


# -----------------------------------------------------------------------------
# GitLab
# -----------------------------------------------------------------------------
class GitLabRateLimitMonitor(_HttpMonitor):
    """Reads GitLab RateLimit-* headers from a cheap authenticated call.

    GitLab has no quota endpoint; instances that do not send the headers
    get an estimate based on the gitlab.com authenticated API limit.
    """

    platform = ToolType.GITLAB

    ESTIMATED_LIMIT = 2000
    ESTIMATED_REMAINING = 1900
    WINDOW_SECONDS = 60

    def _default_config(self) -> PlatformConfig:
        return get_settings().platforms.gitlab

    async def get_rate_limit_status(
        self,
        token: str,
        base_url: str | None = None,
    ) -> RateLimitStatus:
        if not token:
            return RateLimitStatus.estimated(
                self.platform_name, remaining=250, limit=300, reset_in_seconds=self.WINDOW_SECONDS
            )

        api_base = (base_url or self._config.api_url).rstrip("/")
        try:
            response = await self._get(f"{api_base}/api/v4/user", {"PRIVATE-TOKEN": token})
        except httpx.HTTPError as e:
            logger.warning("GitLab rate limit request failed: {error}", error=str(e))
            return self._estimate(remaining=500)

        if response.status_code == 401:
            raise PlatformAuthenticationError(self.platform_name, "Invalid token", 401)
        if response.status_code == 403:
            # Forbidden here usually means the instance is throttling us
            return RateLimitStatus.estimated(
                self.platform_name,
                remaining=10,
                limit=self.ESTIMATED_LIMIT,
                reset_in_seconds=300,
            )
        if response.status_code == 404:
            return self._estimate(remaining=1000)
        if response.is_error:
            return self._estimate(remaining=500)

        return self._from_headers(response.headers)

    def _estimate(self, remaining: int) -> RateLimitStatus:
        return RateLimitStatus.estimated(
            self.platform_name,
            remaining=remaining,
            limit=self.ESTIMATED_LIMIT,
            reset_in_seconds=self.WINDOW_SECONDS,
        )

    def _from_headers(self, headers: httpx.Headers) -> RateLimitStatus:
        try:
            limit = int(headers["ratelimit-limit"])
            remaining = int(headers["ratelimit-remaining"])
            reset_seconds = int(headers.get("ratelimit-reset", "0"))
        except (KeyError, ValueError):
            return self._estimate(remaining=self.ESTIMATED_REMAINING)

        reset_time = reset_seconds * 1000 if reset_seconds else now_millis() + self.WINDOW_SECONDS * 1000
        return RateLimitStatus(
            platform=self.platform_name,
            used=max(0, limit - remaining),
            remaining=remaining,
            limit=limit,
            reset_time=reset_time,
        )


# -----------------------------------------------------------------------------
# Bitbucket
# -----------------------------------------------------------------------------
class BitbucketRateLimitMonitor(_HttpMonitor):
    """Estimates Bitbucket quota after verifying the credentials.

    The token is expected as "username:app_password". Bitbucket Cloud
    allows roughly 1000 requests/hour per resource; the estimate stays
    well clear of that.
    """

    platform = ToolType.BITBUCKET

    RESET_SECONDS = 3600

    def _default_config(self) -> PlatformConfig:
        return get_settings().platforms.bitbucket

    @staticmethod
    def _is_cloud(api_base: str) -> bool:
        return "bitbucket.org" in api_base

    async def get_rate_limit_status(
        self,
        token: str,
        base_url: str | None = None,
    ) -> RateLimitStatus:
        api_base = (base_url or self._config.api_url).rstrip("/")
        cloud = self._is_cloud(api_base)
        status_url = f"{api_base}/user" if cloud else f"{api_base}/rest/api/1.0/application-properties"

        try:
            response = await self._get(status_url, basic_or_bearer_headers(token))
        except httpx.HTTPError as e:
            logger.warning("Bitbucket rate limit request failed: {error}", error=str(e))
            return self._conservative()

        if response.status_code in (401, 403):
            raise PlatformAuthenticationError(
                self.platform_name, "Invalid username or app password", response.status_code
            )
        if response.status_code == 429:
            limit = 5000 if cloud else 1000
            return RateLimitStatus.estimated(
                self.platform_name, remaining=0, limit=limit, reset_in_seconds=self.RESET_SECONDS
            )
        if response.is_error:
            return self._conservative()

        if cloud:
            return RateLimitStatus.estimated(
                self.platform_name, remaining=4000, limit=5000, reset_in_seconds=self.RESET_SECONDS
            )
        return RateLimitStatus.estimated(
            self.platform_name, remaining=800, limit=1000, reset_in_seconds=self.RESET_SECONDS
        )

    def _conservative(self) -> RateLimitStatus:
        return RateLimitStatus.estimated(
            self.platform_name, remaining=500, limit=1000, reset_in_seconds=self.RESET_SECONDS
        )


# -----------------------------------------------------------------------------
# Azure DevOps
# -----------------------------------------------------------------------------
class AzureDevOpsRateLimitMonitor(RateLimitMonitor):
    """Estimates Azure DevOps quota without a network call.

    Azure DevOps throttles by resource consumption (TSTUs), not request
    counts, so only a conservative per-minute estimate is possible.
    """

    platform = ToolType.AZURE_REPOSITORY

    ESTIMATED_LIMIT = 300
    ESTIMATED_REMAINING = 250

    def _default_config(self) -> PlatformConfig:
        return get_settings().platforms.azure_devops

    async def get_rate_limit_status(
        self,
        token: str,
        base_url: str | None = None,
    ) -> RateLimitStatus:
        organization = extract_azure_organization(base_url)
        logger.debug(
            "Estimating Azure DevOps rate limit (organization={org})",
            org=organization or "unknown",
        )
        return RateLimitStatus.estimated(
            self.platform_name,
            remaining=self.ESTIMATED_REMAINING,
            limit=self.ESTIMATED_LIMIT,
            reset_in_seconds=60,
        )


def default_monitors(
    http_client: httpx.AsyncClient | None = None,
) -> list[RateLimitMonitor]:
    """Build one monitor per supported platform from the settings."""
    return [
        GitHubRateLimitMonitor(),
        GitLabRateLimitMonitor(http_client=http_client),
        BitbucketRateLimitMonitor(http_client=http_client),
        AzureDevOpsRateLimitMonitor(),
    ]
