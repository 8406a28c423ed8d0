"""Platform service contracts and shared paging.

Every platform implements the three fetch contracts below. Per-call
context (repository URL, API base of a self-hosted instance) travels in
the GitUrlInfo argument; services keep no per-call state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

from scm_scanner.config import PlatformConfig, get_settings
from scm_scanner.exceptions import PlatformApiError
from scm_scanner.logging import bind_platform
from scm_scanner.schemas import (
    GitUrlInfo,
    ScanRequest,
    ScmCommit,
    ScmMergeRequest,
    ScmRepository,
    ToolType,
)

if TYPE_CHECKING:
    from scm_scanner.rate_limit import RateLimitService


ItemT = TypeVar("ItemT")
CursorT = TypeVar("CursorT")

PageFetcher = Callable[[CursorT], Awaitable[tuple[list[ItemT], CursorT | None]]]


@runtime_checkable
class GitPlatformCommitsService(Protocol):
    """Fetches commits of one repository."""

    async def fetch_commits(
        self,
        tool_config_id: str,
        url_info: GitUrlInfo,
        branch_name: str | None,
        token: str | None,
        since: datetime | None,
        until: datetime | None,
    ) -> list[ScmCommit]:
        """Fetch commits committed in [since, until)."""
        ...


@runtime_checkable
class GitPlatformMergeRequestService(Protocol):
    """Fetches merge requests of one repository."""

    async def fetch_merge_requests(
        self,
        tool_config_id: str,
        url_info: GitUrlInfo,
        branch_name: str | None,
        token: str | None,
        since: datetime | None,
        until: datetime | None,
    ) -> list[ScmMergeRequest]:
        """Fetch merge requests updated in [since, until)."""
        ...


@runtime_checkable
class GitPlatformRepositoryService(Protocol):
    """Lists repositories visible to a connection."""

    async def fetch_repositories(self, request: ScanRequest) -> list[ScmRepository]:
        """Fetch repositories updated since request.since."""
        ...


class GitPlatformService(
    GitPlatformCommitsService,
    GitPlatformMergeRequestService,
    GitPlatformRepositoryService,
    Protocol,
):
    """A platform implementation providing every fetch contract."""

    tool_type: ToolType

    async def aclose(self) -> None:
        """Release HTTP resources."""
        ...


@dataclass(frozen=True)
class PlatformCallContext:
    """Explicit per-call context handed to platform calls by URL."""

    repository_url: str
    tool_type: ToolType
    url_info: GitUrlInfo | None = None

    @property
    def api_base_url(self) -> str | None:
        """API base of a self-hosted instance, if any."""
        return self.url_info.base_url if self.url_info else None


def in_window(value: datetime | None, since: datetime | None, until: datetime | None) -> bool:
    """Check value against the inclusive since / exclusive until bounds."""
    if value is None:
        return True
    if since is not None and value < since:
        return False
    return not (until is not None and value >= until)


def matches_branch(merge_request: ScmMergeRequest, branch_name: str | None) -> bool:
    """Keep merge requests whose source or target is the scanned branch."""
    if not branch_name:
        return True
    return branch_name in (merge_request.from_branch, merge_request.to_branch)


async def paginate(
    platform: str,
    fetch_page: PageFetcher[CursorT, ItemT],
    first_cursor: CursorT,
    *,
    repository: str,
    before_page: Callable[[], Awaitable[object]] | None = None,
    limit: int | None = None,
) -> list[ItemT]:
    """Collect items across pages.

    A failure on the first page raises. A failure on a later page stops
    paging and returns what was collected so far.

    Args:
        platform: Platform display name (for logs and errors)
        fetch_page: Returns (items, next_cursor) for a cursor; None ends paging
        first_cursor: Cursor of the first page
        repository: Repository name (for logs)
        before_page: Awaited before each page (rate limit check)
        limit: Optional cap on collected items

    Returns:
        All collected items

    Raises:
        PlatformApiError: If the first page fails
    """
    log = bind_platform(platform, repository)
    items: list[ItemT] = []
    cursor: CursorT | None = first_cursor
    seen: set[CursorT] = {first_cursor}
    pages = 0

    while cursor is not None:
        if before_page is not None:
            await before_page()
        try:
            batch, cursor = await fetch_page(cursor)
        except PlatformApiError as e:
            if pages == 0:
                raise
            log.warning(
                "{platform} page {page} failed for {repo}, keeping {count} items: {error}",
                platform=platform,
                page=pages + 1,
                repo=repository,
                count=len(items),
                error=str(e),
            )
            break

        pages += 1
        items.extend(batch)
        if limit is not None and len(items) >= limit:
            items = items[:limit]
            break
        if cursor is not None:
            if cursor in seen:
                log.warning(
                    "{platform} returned an already fetched page cursor for {repo}, stopping: {cursor}",
                    platform=platform,
                    repo=repository,
                    cursor=cursor,
                )
                break
            seen.add(cursor)

    log.debug(
        "Fetched {count} items from {platform} for {repo} in {pages} pages",
        count=len(items),
        platform=platform,
        repo=repository,
        pages=pages,
    )
    return items


class BasePlatformService(ABC):
    """Shared wiring for platform implementations.

    Subclasses set tool_type and implement the three fetch contracts.
    """

    tool_type: ToolType

    def __init__(
        self,
        rate_limit_service: RateLimitService | None = None,
        config: PlatformConfig | None = None,
        page_size: int | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            rate_limit_service: Consulted before every page (None disables checks)
            config: Platform configuration (uses settings if not provided)
            page_size: Items per API page (uses settings if not provided)
        """
        settings = get_settings()
        self._rate_limit = rate_limit_service
        self._config = config or self._default_config()
        self._page_size = page_size or settings.scanner.page_size

    @abstractmethod
    def _default_config(self) -> PlatformConfig:
        """Platform configuration used when none is injected."""

    @property
    def platform_name(self) -> str:
        """Platform display name."""
        return self.tool_type.platform_name

    def _api_base(self, url_info: GitUrlInfo | None = None) -> str:
        """API base URL, preferring the self-hosted instance of the repository."""
        if url_info is not None and url_info.base_url:
            return url_info.base_url.rstrip("/")
        return self._config.api_url.rstrip("/")

    def _rate_limit_guard(
        self,
        token: str | None,
        repository: str,
        base_url: str | None,
    ) -> Callable[[], Awaitable[object]] | None:
        """Build the before-page hook that consults the rate limit service."""
        if self._rate_limit is None:
            return None
        rate_limit = self._rate_limit

        async def _check() -> object:
            return await rate_limit.check_rate_limit(self.tool_type, token, repository, base_url)

        return _check

    async def aclose(self) -> None:
        """Release HTTP resources (no-op unless overridden)."""
        return None
