"""GitLab platform service over the REST v4 API.

The API base comes from the GitUrlInfo of each call, so one service
instance serves gitlab.com and any number of self-hosted instances.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlsplit

import httpx

from scm_scanner.config import PlatformConfig, get_settings
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
from .http import PlatformHttpClient, isoformat_z, parse_timestamp

if TYPE_CHECKING:
    from scm_scanner.rate_limit import RateLimitService

logger = get_logger(__name__)


def _next_page(headers: httpx.Headers) -> int | None:
    value = headers.get("x-next-page", "")
    return int(value) if value.isdigit() else None


class GitLabService(BasePlatformService):
    """Fetches commits, merge requests and projects from GitLab."""

    tool_type = ToolType.GITLAB

    def __init__(
        self,
        rate_limit_service: RateLimitService | None = None,
        config: PlatformConfig | None = None,
        page_size: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(rate_limit_service, config, page_size)
        self._http = PlatformHttpClient(self.platform_name, http_client)

    def _default_config(self) -> PlatformConfig:
        return get_settings().platforms.gitlab

    async def aclose(self) -> None:
        await self._http.aclose()

    @staticmethod
    def _headers(token: str | None) -> dict[str, str]:
        return {"PRIVATE-TOKEN": token} if token else {}

    def _connection_base(self, request: ScanRequest) -> str:
        """API base of the instance a connection points at."""
        parts = urlsplit(request.repository_url)
        if parts.scheme and parts.hostname and parts.hostname != "gitlab.com":
            return f"{parts.scheme}://{parts.netloc}"
        return self._api_base()

    def _project_url(self, url_info: GitUrlInfo) -> str:
        project = quote(url_info.full_name, safe="")
        return f"{self._api_base(url_info)}/api/v4/projects/{project}"

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
        url = f"{self._project_url(url_info)}/repository/commits"
        repository = url_info.full_name

        async def fetch_page(page: int) -> tuple[list[ScmCommit], int | None]:
            data, headers = await self._http.get_json(
                url,
                headers=self._headers(token),
                params={
                    "ref_name": branch_name,
                    "since": isoformat_z(since),
                    "until": isoformat_z(until),
                    "with_stats": "true",
                    "per_page": self._page_size,
                    "page": page,
                },
            )
            commits = [
                commit
                for commit in (
                    self._to_commit(item, tool_config_id, repository, branch_name) for item in data
                )
                if in_window(commit.commit_timestamp, since, until)
            ]
            return commits, _next_page(headers)

        return await paginate(
            self.platform_name,
            fetch_page,
            1,
            repository=repository,
            before_page=self._rate_limit_guard(token, repository, self._api_base(url_info)),
        )

    @staticmethod
    def _to_commit(
        item: dict[str, Any],
        tool_config_id: str,
        repository: str,
        branch_name: str | None,
    ) -> ScmCommit:
        stats = item.get("stats") or {}
        parents = list(item.get("parent_ids") or [])
        return ScmCommit(
            revision_id=item["id"],
            tool_config_id=tool_config_id,
            repository_name=repository,
            branch_name=branch_name,
            commit_message=item.get("message"),
            commit_timestamp=parse_timestamp(item.get("committed_date") or item.get("authored_date")),
            author_name=item.get("author_name"),
            author_email=item.get("author_email"),
            committer_name=item.get("committer_name"),
            committer_email=item.get("committer_email"),
            added_lines=stats.get("additions") or 0,
            removed_lines=stats.get("deletions") or 0,
            parent_shas=parents,
            is_merge_commit=len(parents) > 1,
        )

    # -------------------------------------------------------------------------
    # Merge Requests
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
        url = f"{self._project_url(url_info)}/merge_requests"
        repository = url_info.full_name

        async def fetch_page(page: int) -> tuple[list[ScmMergeRequest], int | None]:
            data, headers = await self._http.get_json(
                url,
                headers=self._headers(token),
                params={
                    "state": "all",
                    "scope": "all",
                    "order_by": "updated_at",
                    "sort": "desc",
                    "updated_after": isoformat_z(since),
                    "updated_before": isoformat_z(until),
                    "per_page": self._page_size,
                    "page": page,
                },
            )
            merge_requests = [
                mr
                for mr in (self._to_merge_request(item, tool_config_id, repository) for item in data)
                if in_window(mr.updated_on, since, until) and matches_branch(mr, branch_name)
            ]
            return merge_requests, _next_page(headers)

        return await paginate(
            self.platform_name,
            fetch_page,
            1,
            repository=repository,
            before_page=self._rate_limit_guard(token, repository, self._api_base(url_info)),
        )

    @staticmethod
    def _to_merge_request(
        item: dict[str, Any],
        tool_config_id: str,
        repository: str,
    ) -> ScmMergeRequest:
        author = item.get("author") or {}
        reviewers = [user["username"] for user in item.get("reviewers") or [] if user.get("username")]
        return ScmMergeRequest(
            external_id=str(item["iid"]),
            tool_config_id=tool_config_id,
            repository_name=repository,
            title=item.get("title") or "",
            summary=item.get("description"),
            state=MergeRequestState.from_platform(item.get("state")),
            created_on=parse_timestamp(item.get("created_at")),
            updated_on=parse_timestamp(item.get("updated_at")),
            merged_on=parse_timestamp(item.get("merged_at")),
            closed_on=parse_timestamp(item.get("closed_at")),
            from_branch=item.get("source_branch"),
            to_branch=item.get("target_branch"),
            author_username=author.get("username"),
            author_display_name=author.get("name"),
            reviewer_usernames=reviewers,
            merge_request_url=item.get("web_url"),
            is_draft=bool(item.get("draft") or item.get("work_in_progress")),
        )

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------
    async def fetch_repositories(self, request: ScanRequest) -> list[ScmRepository]:
        api_base = self._connection_base(request)
        url = f"{api_base}/api/v4/projects"
        logger.debug("Listing GitLab projects on {base} since {since}", base=api_base, since=request.since)

        async def fetch_page(page: int) -> tuple[list[ScmRepository], int | None]:
            data, headers = await self._http.get_json(
                url,
                headers=self._headers(request.token),
                params={
                    "membership": "true",
                    "simple": "true",
                    "order_by": "last_activity_at",
                    "sort": "desc",
                    "last_activity_after": isoformat_z(request.since),
                    "per_page": self._page_size,
                    "page": page,
                },
            )
            repositories = [
                ScmRepository(
                    connection_id=request.connection_id,
                    tool_type=self.tool_type,
                    repository_name=item["path_with_namespace"],
                    url=item.get("web_url"),
                    default_branch=item.get("default_branch"),
                    is_private=item.get("visibility", "private") != "public",
                    last_updated=parse_timestamp(item.get("last_activity_at")),
                )
                for item in data
            ]
            return repositories, _next_page(headers)

        return await paginate(
            self.platform_name,
            fetch_page,
            1,
            repository=request.connection_id or "projects",
            before_page=self._rate_limit_guard(request.token, request.display_name, api_base),
            limit=request.limit,
        )
