"""GitHub platform service using githubkit.

Commits come from the repository commits endpoint (server-side since/until
filtering). Pull requests are listed by most recent update and paging stops
once a page reaches items older than the window start.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from githubkit.exception import RequestFailed

from scm_scanner.config import PlatformConfig, get_settings
from scm_scanner.exceptions import (
    PlatformApiError,
    PlatformAuthenticationError,
    PlatformNotFoundError,
    PlatformRateLimitError,
)
from scm_scanner.logging import get_logger
from scm_scanner.schemas import (
    GitUrlInfo,
    MergeRequestState,
    ScanRequest,
    ScmCommit,
    ScmMergeRequest,
    ScmRepository,
    ToolType,
)

from .base import BasePlatformService, in_window, matches_branch, paginate
from .credentials import GitHubFactory, default_github_factory
from .http import parse_timestamp

if TYPE_CHECKING:
    from scm_scanner.rate_limit import RateLimitService

logger = get_logger(__name__)


def _dump(item: Any) -> dict[str, Any]:
    """Convert a githubkit model to a plain dict, skipping unset fields."""
    if isinstance(item, dict):
        return item
    return item.model_dump(exclude_unset=True)


def _present(**params: Any) -> dict[str, Any]:
    """Keep only the optional query parameters that carry a value."""
    return {key: value for key, value in params.items() if value}


def _login(user: dict[str, Any] | None) -> str | None:
    return user.get("login") if user else None


class GitHubService(BasePlatformService):
    """Fetches commits, pull requests and repositories from GitHub.

    Usage:
        service = GitHubService(rate_limit_service)
        commits = await service.fetch_commits(
            "cfg-1", url_info, "main", token, since, until
        )
    """

    tool_type = ToolType.GITHUB

    def __init__(
        self,
        rate_limit_service: RateLimitService | None = None,
        config: PlatformConfig | None = None,
        page_size: int | None = None,
        github_factory: GitHubFactory | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            rate_limit_service: Consulted before every page (None disables checks)
            config: Platform configuration (uses settings if not provided)
            page_size: Items per API page, at most 100
            github_factory: Builds a githubkit client for (token, base_url)
        """
        super().__init__(rate_limit_service, config, page_size)
        self._page_size = min(self._page_size, 100)
        self._github_factory = github_factory or default_github_factory

    def _default_config(self) -> PlatformConfig:
        return get_settings().platforms.github

    def _client(self, token: str | None, url_info: GitUrlInfo | None) -> Any:
        base_url = url_info.base_url if url_info is not None and url_info.base_url else None
        return self._github_factory(token, base_url)

    # -------------------------------------------------------------------------
    # Commits
    # -------------------------------------------------------------------------
    async def fetch_commits(
        self,
        tool_config_id: str,
        url_info: GitUrlInfo,
        branch_name: str | None,
        token: str | None,
        since: datetime | None,
        until: datetime | None,
    ) -> list[ScmCommit]:
        github = self._client(token, url_info)
        repository = url_info.full_name
        logger.debug(
            "Fetching GitHub commits for {repo} (branch={branch}, since={since})",
            repo=repository,
            branch=branch_name or "default",
            since=since,
        )

        async def fetch_page(page: int) -> tuple[list[ScmCommit], int | None]:
            try:
                resp = await github.rest.repos.async_list_commits(
                    owner=url_info.owner,
                    repo=url_info.repository_name,
                    per_page=self._page_size,
                    page=page,
                    **_present(sha=branch_name, since=since, until=until),
                )
            except RequestFailed as e:
                raise self._handle_error(e) from e

            raw = [_dump(item) for item in resp.parsed_data]
            commits = [
                commit
                for commit in (
                    self._to_commit(data, tool_config_id, repository, branch_name) for data in raw
                )
                if in_window(commit.commit_timestamp, since, until)
            ]
            next_page = page + 1 if len(raw) >= self._page_size else None
            return commits, next_page

        return await paginate(
            self.platform_name,
            fetch_page,
            1,
            repository=repository,
            before_page=self._rate_limit_guard(token, repository, url_info.base_url),
        )

    @staticmethod
    def _to_commit(
        data: dict[str, Any],
        tool_config_id: str,
        repository: str,
        branch_name: str | None,
    ) -> ScmCommit:
        detail = data.get("commit") or {}
        author = detail.get("author") or {}
        committer = detail.get("committer") or {}
        parents = [parent["sha"] for parent in data.get("parents") or [] if parent.get("sha")]
        stats = data.get("stats") or {}
        return ScmCommit(
            revision_id=data["sha"],
            tool_config_id=tool_config_id,
            repository_name=repository,
            branch_name=branch_name,
            commit_message=detail.get("message"),
            commit_timestamp=parse_timestamp(committer.get("date") or author.get("date")),
            author_name=author.get("name"),
            author_email=author.get("email"),
            author_username=_login(data.get("author")),
            committer_name=committer.get("name"),
            committer_email=committer.get("email"),
            added_lines=stats.get("additions") or 0,
            removed_lines=stats.get("deletions") or 0,
            files_changed=len(data.get("files") or []),
            parent_shas=parents,
            is_merge_commit=len(parents) > 1,
        )

    # -------------------------------------------------------------------------
    # Pull Requests
    # -------------------------------------------------------------------------
    async def fetch_merge_requests(
        self,
        tool_config_id: str,
        url_info: GitUrlInfo,
        branch_name: str | None,
        token: str | None,
        since: datetime | None,
        until: datetime | None,
    ) -> list[ScmMergeRequest]:
        github = self._client(token, url_info)
        repository = url_info.full_name
        logger.debug("Fetching GitHub pull requests for {repo} since {since}", repo=repository, since=since)

        async def fetch_page(page: int) -> tuple[list[ScmMergeRequest], int | None]:
            try:
                resp = await github.rest.pulls.async_list(
                    owner=url_info.owner,
                    repo=url_info.repository_name,
                    state="all",
                    sort="updated",
                    direction="desc",
                    per_page=self._page_size,
                    page=page,
                )
            except RequestFailed as e:
                raise self._handle_error(e) from e

            raw = [_dump(item) for item in resp.parsed_data]
            pulls = [self._to_merge_request(data, tool_config_id, repository) for data in raw]
            matching = [
                pr
                for pr in pulls
                if in_window(pr.updated_on, since, until) and matches_branch(pr, branch_name)
            ]

            # Sorted by update time descending, so an item before the window ends paging
            reached_start = since is not None and any(
                pr.updated_on is not None and pr.updated_on < since for pr in pulls
            )
            next_page = page + 1 if len(raw) >= self._page_size and not reached_start else None
            return matching, next_page

        return await paginate(
            self.platform_name,
            fetch_page,
            1,
            repository=repository,
            before_page=self._rate_limit_guard(token, repository, url_info.base_url),
        )

    @staticmethod
    def _to_merge_request(
        data: dict[str, Any],
        tool_config_id: str,
        repository: str,
    ) -> ScmMergeRequest:
        merged_on = parse_timestamp(data.get("merged_at"))
        state = MergeRequestState.from_platform(data.get("state"), merged=merged_on is not None)
        reviewers = [
            login for login in (_login(user) for user in data.get("requested_reviewers") or []) if login
        ]
        return ScmMergeRequest(
            external_id=str(data["number"]),
            tool_config_id=tool_config_id,
            repository_name=repository,
            title=data.get("title") or "",
            summary=data.get("body"),
            state=state,
            created_on=parse_timestamp(data.get("created_at")),
            updated_on=parse_timestamp(data.get("updated_at")),
            merged_on=merged_on,
            closed_on=parse_timestamp(data.get("closed_at")),
            from_branch=(data.get("head") or {}).get("ref"),
            to_branch=(data.get("base") or {}).get("ref"),
            author_username=_login(data.get("user")),
            reviewer_usernames=reviewers,
            added_lines=data.get("additions") or 0,
            removed_lines=data.get("deletions") or 0,
            files_changed=data.get("changed_files") or 0,
            commit_count=data.get("commits") or 0,
            merge_request_url=data.get("html_url"),
            is_draft=bool(data.get("draft")),
        )

    # -------------------------------------------------------------------------
    # Repositories
    # -------------------------------------------------------------------------
    async def fetch_repositories(self, request: ScanRequest) -> list[ScmRepository]:
        github = self._client(request.token, None)
        since = request.since

        async def fetch_page(page: int) -> tuple[list[ScmRepository], int | None]:
            try:
                resp = await github.rest.repos.async_list_for_authenticated_user(
                    sort="updated",
                    direction="desc",
                    per_page=self._page_size,
                    page=page,
                    **_present(since=since),
                )
            except RequestFailed as e:
                raise self._handle_error(e) from e

            raw = [_dump(item) for item in resp.parsed_data]
            repositories = [
                ScmRepository(
                    connection_id=request.connection_id,
                    tool_type=self.tool_type,
                    repository_name=data["full_name"],
                    url=data.get("html_url"),
                    default_branch=data.get("default_branch"),
                    is_private=bool(data.get("private")),
                    last_updated=parse_timestamp(data.get("pushed_at") or data.get("updated_at")),
                )
                for data in raw
            ]
            next_page = page + 1 if len(raw) >= self._page_size else None
            return repositories, next_page

        return await paginate(
            self.platform_name,
            fetch_page,
            1,
            repository=request.connection_id or "repositories",
            before_page=self._rate_limit_guard(request.token, request.display_name, None),
            limit=request.limit,
        )

    # -------------------------------------------------------------------------
    # Error Handling
    # -------------------------------------------------------------------------
    def _handle_error(self, error: RequestFailed) -> PlatformApiError:
        """Convert githubkit exceptions to platform exceptions."""
        status = error.response.status_code

        if status == 401:
            return PlatformAuthenticationError(self.platform_name, "Invalid GitHub token", status)
        if status == 403:
            headers = error.response.headers
            if headers.get("x-ratelimit-remaining") == "0":
                reset_ts = int(headers.get("x-ratelimit-reset", "0") or 0)
                reset_at = datetime.fromtimestamp(reset_ts, tz=UTC) if reset_ts else None
                return PlatformRateLimitError(
                    self.platform_name, "GitHub rate limit exceeded", status, reset_at
                )
            return PlatformAuthenticationError(self.platform_name, f"Access forbidden: {error}", status)
        if status == 404:
            return PlatformNotFoundError(self.platform_name, str(error), status)
        if status == 429:
            return PlatformRateLimitError(self.platform_name, "Too many requests", status)
        return PlatformApiError(self.platform_name, f"GitHub API error ({status}): {error}", status)
