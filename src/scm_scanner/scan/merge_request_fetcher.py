"""Merge request fetching and reconciliation.

Merge requests are long-lived and change state long after they were
opened, so a plain "updated since last scan" fetch misses transitions of
old open merge requests. Two phases run instead:

- Phase A fetches merge requests updated inside the scan window.
- Phase B re-fetches merge requests still recorded as open, looking back
  to the oldest of them (bounded), and keeps only the known ones.

Results are reconciled by external id; phase B wins on conflicts.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from scm_scanner.config import ScannerConfig, get_settings
from scm_scanner.db.persistence import PersistenceService
from scm_scanner.exceptions import DataProcessingError
from scm_scanner.logging import get_logger
from scm_scanner.platforms import (
    GitPlatformMergeRequestService,
    MergeRequestServiceLocator,
    format_platform_token,
)
from scm_scanner.schemas import GitUrlInfo, MergeRequestState, ScanRequest, ScmMergeRequest
from scm_scanner.url_parser import parse_git_url

from .windows import months_ago, resolve_window_start, utc_now

logger = get_logger(__name__)


def reconcile(
    new_merge_requests: Iterable[ScmMergeRequest],
    updated_merge_requests: Iterable[ScmMergeRequest],
) -> list[ScmMergeRequest]:
    """Merge both phases into one list keyed by external id.

    Entries of updated_merge_requests replace same-id entries of
    new_merge_requests. Entries without an external id are dropped.

    Returns:
        At most one merge request per external id, in first-seen order
    """
    merged: dict[str, ScmMergeRequest] = {}
    for mr in [*new_merge_requests, *updated_merge_requests]:
        if not mr.external_id:
            logger.warning("Dropping merge request without external id: {title!r}", title=mr.title)
            continue
        merged[mr.external_id] = mr
    return list(merged.values())


class MergeRequestFetcher:
    """Fetches new merge requests and refreshes known open ones.

    Usage:
        fetcher = MergeRequestFetcher(merge_request_locator, persistence)
        merge_requests = await fetcher.fetch_merge_requests(request)
    """

    def __init__(
        self,
        locator: MergeRequestServiceLocator,
        persistence: PersistenceService,
        config: ScannerConfig | None = None,
    ) -> None:
        self._locator = locator
        self._persistence = persistence
        self._config = config or get_settings().scanner

    async def fetch_merge_requests(
        self,
        request: ScanRequest,
        now: datetime | None = None,
    ) -> list[ScmMergeRequest]:
        """Fetch and reconcile the merge requests of a repository.

        Args:
            request: Scan request
            now: Reference time for default windows

        Returns:
            Reconciled merge requests, unique by external id

        Raises:
            DataProcessingError: If the platform is unsupported or the URL unparseable
        """
        service = self._locator.get_merge_request_service(request.tool_type)
        if service is None:
            raise DataProcessingError(
                f"No suitable merge request fetch strategy found for tool type: {request.tool_type}"
            )
        url_info = parse_git_url(
            request.repository_url,
            request.tool_type,
            request.username,
            request.repository_name,
        )
        if url_info is None:
            raise DataProcessingError(f"Invalid repository URL: {request.repository_url}")

        token = format_platform_token(request.tool_type, request.username, request.token)
        now = now or utc_now()

        # Phase A
        since = resolve_window_start(request, self._config.first_scan_from_months, now)
        logger.info(
            "Fetching merge requests for {repo} since {since}",
            repo=request.display_name,
            since=since.isoformat(),
        )
        new_merge_requests = await service.fetch_merge_requests(
            request.tool_config_id,
            url_info,
            request.branch_name,
            token,
            since,
            request.until,
        )

        # Phase B
        updated_merge_requests = await self._refresh_open_merge_requests(
            service, request, url_info, token, now
        )

        merge_requests = reconcile(new_merge_requests, updated_merge_requests)
        logger.info(
            "Reconciled {count} merge requests for {repo} ({new} new, {updated} refreshed)",
            count=len(merge_requests),
            repo=request.display_name,
            new=len(new_merge_requests),
            updated=len(updated_merge_requests),
        )
        return merge_requests

    # -------------------------------------------------------------------------
    # Open merge request refresh
    # -------------------------------------------------------------------------
    async def _refresh_open_merge_requests(
        self,
        service: GitPlatformMergeRequestService,
        request: ScanRequest,
        url_info: GitUrlInfo,
        token: str | None,
        now: datetime,
    ) -> list[ScmMergeRequest]:
        open_merge_requests = await self._load_open_merge_requests(request.tool_config_id)
        if not open_merge_requests:
            return []

        updates_since = self.updates_since(open_merge_requests, now)
        known_ids = {mr.external_id for mr in open_merge_requests if mr.external_id}
        logger.debug(
            "Re-checking {count} open merge requests for {repo} since {since}",
            count=len(known_ids),
            repo=request.display_name,
            since=updates_since.isoformat(),
        )
        fetched = await service.fetch_merge_requests(
            request.tool_config_id,
            url_info,
            request.branch_name,
            token,
            updates_since,
            None,
        )
        return [mr for mr in fetched if mr.external_id in known_ids]

    async def _load_open_merge_requests(self, tool_config_id: str) -> list[ScmMergeRequest]:
        """Read stored open merge requests, at most max_open_merge_request_pages pages."""
        open_merge_requests: list[ScmMergeRequest] = []
        try:
            for page_number in range(self._config.max_open_merge_request_pages):
                page = await self._persistence.find_merge_requests_by_tool_config_id_and_state(
                    tool_config_id,
                    MergeRequestState.OPEN,
                    page=page_number,
                    size=self._config.max_merge_requests_per_scan,
                )
                open_merge_requests.extend(page.items)
                if not page.has_next:
                    break
            else:
                logger.warning(
                    "Open merge requests of {tool_config_id} exceed {pages} pages, re-checking the first {count}",
                    tool_config_id=tool_config_id,
                    pages=self._config.max_open_merge_request_pages,
                    count=len(open_merge_requests),
                )
        except Exception as e:
            logger.warning(
                "Could not read open merge requests of {tool_config_id}, skipping refresh: {error}",
                tool_config_id=tool_config_id,
                error=str(e),
            )
            return []
        return open_merge_requests

    def updates_since(self, open_merge_requests: list[ScmMergeRequest], now: datetime) -> datetime:
        """Oldest update among open merge requests, clamped to the max lookback."""
        dates = [mr.updated_on for mr in open_merge_requests if mr.updated_on is not None]
        oldest = (
            min(dates) if dates else months_ago(self._config.open_merge_request_default_lookback_months, now)
        )
        return max(oldest, months_ago(self._config.open_merge_request_max_lookback_months, now))
