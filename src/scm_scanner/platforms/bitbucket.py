"""Bitbucket platform service for Bitbucket Cloud and Bitbucket Server.

Cloud (api.bitbucket.org/2.0) pages by following the "next" link of each
response. Server (/rest/api/1.0) pages by start offset until isLastPage.
Both list newest items first, so commit paging stops once a page reaches
commits older than the window start.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

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
from .credentials import basic_or_bearer_headers
from .http import PlatformHttpClient, isoformat_z, parse_timestamp

if TYPE_CHECKING:
    from scm_scanner.rate_limit import RateLimitService

logger = get_logger(__name__)

SERVER_API_PATH = "/rest/api/1.0"
CLOUD_MAX_PAGE_SIZE = 50
CLOUD_PULL_REQUEST_STATES = ("OPEN", "MERGED", "DECLINED", "SUPERSEDED")


def _parse_author(raw: str | None) -> tuple[str | None, str | None]:
    """Split a raw "Name <email>" author string."""
    if not raw:
        return None, None
    name, _, rest = raw.partition("<")
    email = rest.rstrip(">").strip() or None
    return name.strip() or None, email


def _server_next(data: dict[str, Any]) -> int | None:
    if data.get("isLastPage", True):
        return None
    return data.get("nextPageStart")


class BitbucketService(BasePlatformService):
    """Fetches commits, pull requests and repositories from Bitbucket.

    Tokens are "username:app_password" (basic auth) or an access token
    (bearer auth).
    """

    tool_type = ToolType.BITBUCKET

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
        return get_settings().platforms.bitbucket

    async def aclose(self) -> None:
        await self._http.aclose()

    @staticmethod
    def _is_server(url_info: GitUrlInfo) -> bool:
        return url_info.is_self_hosted

    def _cloud_repo_url(self, url_info: GitUrlInfo) -> str:
        return f"{self._config.api_url.rstrip('/')}/repositories/{url_info.owner}/{url_info.repository_name}"

    def _server_repo_url(self, url_info: GitUrlInfo) -> str:
        return (
            f"{self._api_base(url_info)}{SERVER_API_PATH}"
            f"/projects/{url_info.owner}/repos/{url_info.repository_name}"
        )

    async def _follow_next(
        self,
        first_url: str,
        token: str | None,
        convert: Callable[[dict[str, Any]], Any],
        *,
        repository: str,
        stop_before: Callable[[Any], bool] | None = None,
        rate_limit_base: str | None = None,
        limit: int | None = None,
    ) -> list[Any]:
        """Page a Bitbucket Cloud collection through its "next" links."""
        headers = basic_or_bearer_headers(token)

        async def fetch_page(url: str) -> tuple[list[Any], str | None]:
            data, _ = await self._http.get_json(url, headers=headers)
            items = [convert(value) for value in data.get("values") or []]
            next_url = data.get("next")
            if stop_before is not None and any(stop_before(item) for item in items):
                next_url = None
            return items, next_url

        return await paginate(
            self.platform_name,
            fetch_page,
            first_url,
            repository=repository,
            before_page=self._rate_limit_guard(token, repository, rate_limit_base),
            limit=limit,
        )

    async def _page_server(
        self,
        url: str,
        token: str | None,
        convert: Callable[[dict[str, Any]], Any],
        *,
        repository: str,
        params: dict[str, Any] | None = None,
        stop_before: Callable[[Any], bool] | None = None,
        rate_limit_base: str | None = None,
        limit: int | None = None,
    ) -> list[Any]:
        """Page a Bitbucket Server collection by start offset."""
        headers = basic_or_bearer_headers(token)

        async def fetch_page(start: int) -> tuple[list[Any], int | None]:
            data, _ = await self._http.get_json(
                url,
                headers=headers,
                params={**(params or {}), "start": start, "limit": self._page_size},
            )
            items = [convert(value) for value in data.get("values") or []]
            next_start = _server_next(data)
            if stop_before is not None and any(stop_before(item) for item in items):
                next_start = None
            return items, next_start

        return await paginate(
            self.platform_name,
            fetch_page,
            0,
            repository=repository,
            before_page=self._rate_limit_guard(token, repository, rate_limit_base),
            limit=limit,
        )

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
        repository = url_info.full_name
        logger.debug(
            "Fetching Bitbucket {flavor} commits for {repo} since {since}",
            flavor="Server" if self._is_server(url_info) else "Cloud",
            repo=repository,
            since=since,
        )

        def older_than_window(commit: ScmCommit) -> bool:
            return since is not None and commit.commit_timestamp is not None and commit.commit_timestamp < since

        if self._is_server(url_info):
            params = {"until": f"refs/heads/{branch_name}"} if branch_name else None
            commits = await self._page_server(
                f"{self._server_repo_url(url_info)}/commits",
                token,
                lambda value: self._server_commit(value, tool_config_id, repository, branch_name),
                repository=repository,
                params=params,
                stop_before=older_than_window,
                rate_limit_base=self._api_base(url_info),
            )
        else:
            first = httpx.URL(
                f"{self._cloud_repo_url(url_info)}/commits"
                + (f"/{branch_name}" if branch_name else ""),
                params={"pagelen": min(self._page_size, 100)},
            )
            commits = await self._follow_next(
                str(first),
                token,
                lambda value: self._cloud_commit(value, tool_config_id, repository, branch_name),
                repository=repository,
                stop_before=older_than_window,
                rate_limit_base=self._config.api_url,
            )

        return [commit for commit in commits if in_window(commit.commit_timestamp, since, until)]

    @staticmethod
    def _cloud_commit(
        value: dict[str, Any],
        tool_config_id: str,
        repository: str,
        branch_name: str | None,
    ) -> ScmCommit:
        author = value.get("author") or {}
        name, email = _parse_author(author.get("raw"))
        user = author.get("user") or {}
        parents = [parent["hash"] for parent in value.get("parents") or [] if parent.get("hash")]
        return ScmCommit(
            revision_id=value["hash"],
            tool_config_id=tool_config_id,
            repository_name=repository,
            branch_name=branch_name,
            commit_message=value.get("message"),
            commit_timestamp=parse_timestamp(value.get("date")),
            author_name=user.get("display_name") or name,
            author_email=email,
            author_username=user.get("nickname"),
            committer_name=name,
            committer_email=email,
            parent_shas=parents,
            is_merge_commit=len(parents) > 1,
        )

    @staticmethod
    def _server_commit(
        value: dict[str, Any],
        tool_config_id: str,
        repository: str,
        branch_name: str | None,
    ) -> ScmCommit:
        author = value.get("author") or {}
        committer = value.get("committer") or author
        parents = [parent["id"] for parent in value.get("parents") or [] if parent.get("id")]
        return ScmCommit(
            revision_id=value["id"],
            tool_config_id=tool_config_id,
            repository_name=repository,
            branch_name=branch_name,
            commit_message=value.get("message"),
            commit_timestamp=parse_timestamp(
                value.get("committerTimestamp") or value.get("authorTimestamp")
            ),
            author_name=author.get("displayName") or author.get("name"),
            author_email=author.get("emailAddress"),
            author_username=author.get("name"),
            committer_name=committer.get("displayName") or committer.get("name"),
            committer_email=committer.get("emailAddress"),
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
        repository = url_info.full_name

        if self._is_server(url_info):
            pulls = await self._page_server(
                f"{self._server_repo_url(url_info)}/pull-requests",
                token,
                lambda value: self._server_pull_request(value, tool_config_id, repository),
                repository=repository,
                params={"state": "ALL", "order": "NEWEST"},
                rate_limit_base=self._api_base(url_info),
            )
        else:
            params: dict[str, Any] = {
                "state": list(CLOUD_PULL_REQUEST_STATES),
                "sort": "-updated_on",
                "pagelen": min(self._page_size, CLOUD_MAX_PAGE_SIZE),
            }
            if since is not None:
                params["q"] = f"updated_on >= {isoformat_z(since)}"
            first = httpx.URL(f"{self._cloud_repo_url(url_info)}/pullrequests", params=params)
            pulls = await self._follow_next(
                str(first),
                token,
                lambda value: self._cloud_pull_request(value, tool_config_id, repository),
                repository=repository,
                rate_limit_base=self._config.api_url,
            )

        return [
            pr
            for pr in pulls
            if in_window(pr.updated_on, since, until) and matches_branch(pr, branch_name)
        ]

    @staticmethod
    def _cloud_pull_request(
        value: dict[str, Any],
        tool_config_id: str,
        repository: str,
    ) -> ScmMergeRequest:
        state = MergeRequestState.from_platform(value.get("state"))
        updated_on = parse_timestamp(value.get("updated_on"))
        author = value.get("author") or {}
        reviewers = [
            user.get("nickname") or user.get("display_name")
            for user in value.get("reviewers") or []
            if user.get("nickname") or user.get("display_name")
        ]
        return ScmMergeRequest(
            external_id=str(value["id"]),
            tool_config_id=tool_config_id,
            repository_name=repository,
            title=value.get("title") or "",
            summary=value.get("description"),
            state=state,
            created_on=parse_timestamp(value.get("created_on")),
            updated_on=updated_on,
            merged_on=updated_on if state == MergeRequestState.MERGED else None,
            closed_on=updated_on if state != MergeRequestState.OPEN else None,
            from_branch=((value.get("source") or {}).get("branch") or {}).get("name"),
            to_branch=((value.get("destination") or {}).get("branch") or {}).get("name"),
            author_username=author.get("nickname"),
            author_display_name=author.get("display_name"),
            reviewer_usernames=reviewers,
            merge_request_url=((value.get("links") or {}).get("html") or {}).get("href"),
            is_draft=bool(value.get("draft")),
        )

    @staticmethod
    def _server_pull_request(
        value: dict[str, Any],
        tool_config_id: str,
        repository: str,
    ) -> ScmMergeRequest:
        state = MergeRequestState.from_platform(value.get("state"))
        closed_on = parse_timestamp(value.get("closedDate"))
        author = (value.get("author") or {}).get("user") or {}
        reviewers = [
            (reviewer.get("user") or {}).get("name")
            for reviewer in value.get("reviewers") or []
            if (reviewer.get("user") or {}).get("name")
        ]
        links = (value.get("links") or {}).get("self") or []
        return ScmMergeRequest(
            external_id=str(value["id"]),
            tool_config_id=tool_config_id,
            repository_name=repository,
            title=value.get("title") or "",
            summary=value.get("description"),
            state=state,
            created_on=parse_timestamp(value.get("createdDate")),
            updated_on=parse_timestamp(value.get("updatedDate")),
            merged_on=closed_on if state == MergeRequestState.MERGED else None,
            closed_on=closed_on,
            from_branch=(value.get("fromRef") or {}).get("displayId"),
            to_branch=(value.get("toRef") or {}).get("displayId"),
            author_username=author.get("name"),
            author_email=author.get("emailAddress"),
            author_display_name=author.get("displayName"),
            reviewer_usernames=reviewers,
            merge_request_url=links[0].get("href") if links else None,
            is_draft=bool(value.get("draft")),
        )

    # -------------------------------------------------------------------------
    # Repositories
    # -------------------------------------------------------------------------
    async def fetch_repositories(self, request: ScanRequest) -> list[ScmRepository]:
        parts = urlsplit(request.repository_url)
        host = (parts.hostname or "").lower()
        since = request.since
        repository = request.connection_id or "repositories"

        if host and "bitbucket.org" not in host:
            server_base = f"{parts.scheme or 'https'}://{parts.netloc}"
            repositories = await self._page_server(
                f"{server_base}{SERVER_API_PATH}/repos",
                request.token,
                lambda value: self._server_repository(value, request.connection_id),
                repository=repository,
                rate_limit_base=server_base,
                limit=request.limit,
            )
            return repositories

        params: dict[str, Any] = {"role": "member", "sort": "-updated_on", "pagelen": CLOUD_MAX_PAGE_SIZE}
        if since is not None:
            params["q"] = f"updated_on >= {isoformat_z(since)}"
        first = httpx.URL(f"{self._config.api_url.rstrip('/')}/repositories", params=params)
        return await self._follow_next(
            str(first),
            request.token,
            lambda value: self._cloud_repository(value, request.connection_id),
            repository=repository,
            rate_limit_base=self._config.api_url,
            limit=request.limit,
        )

    def _cloud_repository(self, value: dict[str, Any], connection_id: str | None) -> ScmRepository:
        return ScmRepository(
            connection_id=connection_id,
            tool_type=self.tool_type,
            repository_name=value["full_name"],
            url=((value.get("links") or {}).get("html") or {}).get("href"),
            default_branch=(value.get("mainbranch") or {}).get("name"),
            is_private=bool(value.get("is_private")),
            last_updated=parse_timestamp(value.get("updated_on")),
        )

    def _server_repository(self, value: dict[str, Any], connection_id: str | None) -> ScmRepository:
        project = (value.get("project") or {}).get("key", "")
        links = (value.get("links") or {}).get("self") or []
        return ScmRepository(
            connection_id=connection_id,
            tool_type=self.tool_type,
            repository_name=f"{project}/{value['slug']}" if project else value["slug"],
            url=links[0].get("href") if links else None,
            is_private=not value.get("public", False),
        )
