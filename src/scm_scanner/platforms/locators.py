"""Tool type to platform service registries.

Each locator is built once from an explicit {ToolType: service} mapping.
Unknown or unregistered tool types resolve to None so callers can fail
the scan with a clear error instead of crashing.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Generic, TypeVar
from urllib.parse import urlsplit

from scm_scanner.logging import get_logger
from scm_scanner.schemas import ToolType
from scm_scanner.url_parser import parse_git_url

from .base import (
    GitPlatformCommitsService,
    GitPlatformMergeRequestService,
    GitPlatformRepositoryService,
    GitPlatformService,
    PlatformCallContext,
)

logger = get_logger(__name__)

ServiceT = TypeVar("ServiceT")
ResultT = TypeVar("ResultT")


class ServiceLocator(Generic[ServiceT]):
    """Explicit registry mapping a tool type to one service implementation."""

    kind = "platform"

    def __init__(self, services: Mapping[ToolType | str, ServiceT]) -> None:
        """Initialize the registry.

        Args:
            services: Implementation per tool type

        Raises:
            ValueError: If a key is not a known tool type
        """
        self._services: dict[ToolType, ServiceT] = {}
        for key, service in services.items():
            tool_type = ToolType.parse(key)
            if tool_type is None:
                raise ValueError(f"Unknown tool type: {key!r}")
            self._services[tool_type] = service

    @property
    def tool_types(self) -> list[ToolType]:
        """Registered tool types."""
        return list(self._services)

    def get_service(self, tool_type: ToolType | str | None) -> ServiceT | None:
        """Look up the implementation for a tool type (case-insensitive).

        Returns:
            The registered service, or None for unknown or unregistered types
        """
        resolved = ToolType.parse(tool_type)
        service = self._services.get(resolved) if resolved is not None else None
        if service is None:
            logger.warning("No {kind} service found for tool type: {tool_type}", kind=self.kind, tool_type=tool_type)
        return service


class CommitsServiceLocator(ServiceLocator[GitPlatformCommitsService]):
    """Locates the commits service of a platform."""

    kind = "commits"

    def get_commits_service(self, tool_type: ToolType | str | None) -> GitPlatformCommitsService | None:
        return self.get_service(tool_type)


class MergeRequestServiceLocator(ServiceLocator[GitPlatformMergeRequestService]):
    """Locates the merge request service of a platform."""

    kind = "merge request"

    def get_merge_request_service(
        self, tool_type: ToolType | str | None
    ) -> GitPlatformMergeRequestService | None:
        return self.get_service(tool_type)


class RepositoryServiceLocator(ServiceLocator[GitPlatformRepositoryService]):
    """Locates the repository listing service of a platform."""

    kind = "repository"

    def get_repository_service(
        self, tool_type: ToolType | str | None
    ) -> GitPlatformRepositoryService | None:
        return self.get_service(tool_type)


class PlatformServiceLocator(ServiceLocator[GitPlatformService]):
    """Locates full platform services, by tool type or by repository URL."""

    kind = "platform"

    def get_platform_service(self, tool_type: ToolType | str | None) -> GitPlatformService | None:
        return self.get_service(tool_type)

    @staticmethod
    def detect_platform(url: str | None) -> ToolType | None:
        """Guess the platform from well-known hostnames.

        Self-hosted GitLab and Bitbucket are recognised by a "gitlab" or
        "bitbucket" substring in the hostname.
        """
        if not url:
            return None
        target = url if "://" in url else f"https://{url.split('@')[-1].replace(':', '/', 1)}"
        host = (urlsplit(target).hostname or "").lower()
        if host == "github.com" or host.endswith(".github.com"):
            return ToolType.GITHUB
        if host == "gitlab.com" or "gitlab" in host:
            return ToolType.GITLAB
        if host == "dev.azure.com" or host.endswith("visualstudio.com"):
            return ToolType.AZURE_REPOSITORY
        if host == "bitbucket.org" or "bitbucket" in host:
            return ToolType.BITBUCKET
        return None

    def get_platform_service_by_url(self, url: str | None) -> GitPlatformService | None:
        """Locate the platform service for a repository URL."""
        tool_type = self.detect_platform(url)
        if tool_type is None:
            logger.warning("Could not detect platform from URL: {url}", url=url)
            return None
        return self.get_service(tool_type)

    async def call_with_context(
        self,
        repository_url: str,
        call: Callable[[GitPlatformService, PlatformCallContext], Awaitable[ResultT]],
        tool_type: ToolType | str | None = None,
    ) -> ResultT:
        """Run a platform call with an explicit per-call context.

        Args:
            repository_url: Repository the call is about
            call: Receives the service and its PlatformCallContext
            tool_type: Platform (detected from the URL when omitted)

        Raises:
            LookupError: If no service is registered for the platform
        """
        resolved = ToolType.parse(tool_type) if tool_type else self.detect_platform(repository_url)
        service = self.get_service(resolved)
        if resolved is None or service is None:
            raise LookupError(f"No platform service for repository URL: {repository_url}")

        context = PlatformCallContext(
            repository_url=repository_url,
            tool_type=resolved,
            url_info=parse_git_url(repository_url, resolved),
        )
        return await call(service, context)
