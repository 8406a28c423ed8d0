"""Azure DevOps (Azure Repos) platform service over the REST API.

Collections page with $top/$skip. Pull request lists carry no update
timestamp, so the closing date (or creation date while active) stands in
for it when filtering against the window.
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
from scm_scanner.url_parser import extract_azure_organization

from .base import BasePlatformService, in_window, matches_branch, paginate
from .credentials import azure_devops_headers
from .http import PlatformHttpClient, isoformat_z, parse_timestamp

if TYPE_CHECKING:
    from scm_scanner.rate_limit import RateLimitService

logger = get_logger(__name__)

API_VERSION = "7.0"
REFS_PREFIX = "refs/heads/"


def _branch(ref: str | None) -> str | None:
    if ref and ref.startswith(REFS_PREFIX):
        return ref[len(REFS_PREFIX) :]
    return ref


def _skip_cursor(skip: int, received: int, top: int) -> int | None:
    return skip + top if received >= top else None


class AzureDevOpsService(BasePlatformService):
    """Fetches commits, pull requests and repositories from Azure DevOps."""

    tool_type = ToolType.AZURE_REPOSITORY

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
        return get_settings().platforms.azure_devops

    async def aclose(self) -> None:
        await self._http.aclose()

    def _organization_base(self, url_info: GitUrlInfo) -> str:
        """Organization URL: https://{org}.visualstudio.com or {api_url}/{org}."""
        if url_info.host and url_info.host.endswith(".visualstudio.com"):
            return f"https://{url_info.host}"
        return f"{self._config.api_url.rstrip('/')}/{url_info.organization or url_info.owner}"

    def _repository_api(self, url_info: GitUrlInfo) -> str:
        project = quote(url_info.project or url_info.repository_name, safe="")
        repo = quote(url_info.repository_name, safe="")
        return f"{self._organization_base(url_info)}/{project}/_apis/git/repositories/{repo}"

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
        url = f"{self._repository_api(url_info)}/commits"
        repository = url_info.full_name
        top = self._page_size
        params: dict[str, Any] = {
            "searchCriteria.fromDate": isoformat_z(since),
            "searchCriteria.toDate": isoformat_z(until),
            "api-version": API_VERSION,
        }
        if branch_name:
            params["searchCriteria.itemVersion.version"] = branch_name
            params["searchCriteria.itemVersion.versionType"] = "branch"

        async def fetch_page(skip: int) -> tuple[list[ScmCommit], int | None]:
            data, _ = await self._http.get_json(
                url,
                headers=azure_devops_headers(token),
                params={**params, "searchCriteria.$top": top, "searchCriteria.$skip": skip},
            )
            values = data.get("value") or []
            commits = [
                commit
                for commit in (
                    self._to_commit(value, tool_config_id, repository, branch_name) for value in values
                )
                if in_window(commit.commit_timestamp, since, until)
            ]
            return commits, _skip_cursor(skip, len(values), top)

        return await paginate(
            self.platform_name,
            fetch_page,
            0,
            repository=repository,
            before_page=self._rate_limit_guard(token, repository, self._organization_base(url_info)),
        )

    @staticmethod
    def _to_commit(
        value: dict[str, Any],
        tool_config_id: str,
        repository: str,
        branch_name: str | None,
    ) -> ScmCommit:
        author = value.get("author") or {}
        committer = value.get("committer") or {}
        counts = value.get("changeCounts") or {}
        parents = list(value.get("parents") or [])
        return ScmCommit(
            revision_id=value["commitId"],
            tool_config_id=tool_config_id,
            repository_name=repository,
            branch_name=branch_name,
            commit_message=value.get("comment"),
            commit_timestamp=parse_timestamp(committer.get("date") or author.get("date")),
            author_name=author.get("name"),
            author_email=author.get("email"),
            committer_name=committer.get("name"),
            committer_email=committer.get("email"),
            files_changed=sum(int(count) for count in counts.values()),
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
        url = f"{self._repository_api(url_info)}/pullrequests"
        repository = url_info.full_name
        top = self._page_size
        logger.debug("Fetching Azure DevOps pull requests for {repo} since {since}", repo=repository, since=since)

        async def fetch_page(skip: int) -> tuple[list[ScmMergeRequest], int | None]:
            data, _ = await self._http.get_json(
                url,
                headers=azure_devops_headers(token),
                params={
                    "searchCriteria.status": "all",
                    "$top": top,
                    "$skip": skip,
                    "api-version": API_VERSION,
                },
            )
            values = data.get("value") or []
            pulls = [
                pr
                for pr in (self._to_merge_request(value, tool_config_id, repository) for value in values)
                if in_window(pr.updated_on, since, until) and matches_branch(pr, branch_name)
            ]
            return pulls, _skip_cursor(skip, len(values), top)

        return await paginate(
            self.platform_name,
            fetch_page,
            0,
            repository=repository,
            before_page=self._rate_limit_guard(token, repository, self._organization_base(url_info)),
        )

    @staticmethod
    def _to_merge_request(
        value: dict[str, Any],
        tool_config_id: str,
        repository: str,
    ) -> ScmMergeRequest:
        state = MergeRequestState.from_platform(value.get("status"))
        created_on = parse_timestamp(value.get("creationDate"))
        closed_on = parse_timestamp(value.get("closedDate"))
        author = value.get("createdBy") or {}
        reviewers = [
            reviewer.get("uniqueName")
            for reviewer in value.get("reviewers") or []
            if reviewer.get("uniqueName")
        ]
        return ScmMergeRequest(
            external_id=str(value["pullRequestId"]),
            tool_config_id=tool_config_id,
            repository_name=repository,
            title=value.get("title") or "",
            summary=value.get("description"),
            state=state,
            created_on=created_on,
            updated_on=closed_on or created_on,
            merged_on=closed_on if state == MergeRequestState.MERGED else None,
            closed_on=closed_on,
            from_branch=_branch(value.get("sourceRefName")),
            to_branch=_branch(value.get("targetRefName")),
            author_username=author.get("uniqueName"),
            author_display_name=author.get("displayName"),
            reviewer_usernames=reviewers,
            merge_request_url=value.get("url"),
            is_draft=bool(value.get("isDraft")),
        )

    # -------------------------------------------------------------------------
    # Repositories
    # -------------------------------------------------------------------------
    async def fetch_repositories(self, request: ScanRequest) -> list[ScmRepository]:
        organization = extract_azure_organization(request.repository_url)
        host = (urlsplit(request.repository_url).hostname or "").lower()
        if host.endswith(".visualstudio.com"):
            base = f"https://{host}"
        else:
            base = f"{self._config.api_url.rstrip('/')}/{organization or ''}".rstrip("/")
        url = f"{base}/_apis/git/repositories"

        guard = self._rate_limit_guard(request.token, request.display_name, base)
        if guard is not None:
            await guard()
        data, _ = await self._http.get_json(
            url,
            headers=azure_devops_headers(request.token),
            params={"api-version": API_VERSION},
        )
        repositories = []
        for value in data.get("value") or []:
            project = value.get("project") or {}
            repositories.append(
                ScmRepository(
                    connection_id=request.connection_id,
                    tool_type=self.tool_type,
                    repository_name=f"{project.get('name')}/{value['name']}"
                    if project.get("name")
                    else value["name"],
                    url=value.get("webUrl"),
                    default_branch=_branch(value.get("defaultBranch")),
                    is_private=project.get("visibility", "private") != "public",
                    last_updated=parse_timestamp(project.get("lastUpdateTime")),
                )
            )

        since = request.since
        if since is not None:
            repositories = [repo for repo in repositories if in_window(repo.last_updated, since, None)]
        if request.limit is not None:
            repositories = repositories[: request.limit]
        logger.debug(
            "Found {count} Azure DevOps repositories for {org}",
            count=len(repositories),
            org=organization or host,
        )
        return repositories
