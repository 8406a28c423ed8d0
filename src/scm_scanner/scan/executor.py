"""All-or-nothing execution of one repository scan.

The executor fetches everything first and writes last. Every failure,
including the per-scan timeout, surfaces as a single DataProcessingError
chained to its cause; the caller's transaction then rolls back so nothing
from the scan is persisted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from scm_scanner.db.persistence import PersistenceService
from scm_scanner.exceptions import DataProcessingError
from scm_scanner.logging import bind_scan
from scm_scanner.schemas import ScanRequest

from .commit_fetcher import CommitFetcher
from .merge_request_fetcher import MergeRequestFetcher
from .results import ScanResult
from .users import DataReferenceUpdater, UserProcessor
from .windows import utc_now

SCAN_FAILED_MESSAGE = "Repository scan failed"


@dataclass(frozen=True)
class ScanCommand:
    """One repository scan to execute."""

    request: ScanRequest
    timeout: float | None = None
    """Seconds before the scan is abandoned (None disables)."""


class ScanCommandExecutor:
    """Runs fetch, user resolution, linking and persistence for one repository.

    Usage:
        async with get_session() as session:
            persistence = PersistenceService(session)
            executor = ScanCommandExecutor(
                commit_fetcher=CommitFetcher(commits_locator),
                merge_request_fetcher=MergeRequestFetcher(mr_locator, persistence),
                user_processor=UserProcessor(persistence),
                reference_updater=DataReferenceUpdater(persistence),
                persistence=persistence,
            )
            result = await executor.execute(ScanCommand(request, timeout=3600))
    """

    def __init__(
        self,
        commit_fetcher: CommitFetcher,
        merge_request_fetcher: MergeRequestFetcher,
        user_processor: UserProcessor,
        reference_updater: DataReferenceUpdater,
        persistence: PersistenceService,
    ) -> None:
        self._commit_fetcher = commit_fetcher
        self._merge_request_fetcher = merge_request_fetcher
        self._user_processor = user_processor
        self._reference_updater = reference_updater
        self._persistence = persistence

    async def execute(self, command: ScanCommand) -> ScanResult:
        """Execute a scan.

        Args:
            command: Request and timeout

        Returns:
            ScanResult of the successful scan

        Raises:
            DataProcessingError: "Repository scan failed", chained to the cause
        """
        request = command.request
        log = bind_scan(request.tool_config_id, request.display_name)
        start_time = utc_now()
        log.info("Starting scan of {url}", url=request.repository_url)

        try:
            async with asyncio.timeout(command.timeout):
                result = await self._scan(request, start_time)
        except Exception as e:
            log.error(
                "Scan of {url} failed: {error_type}: {error}",
                url=request.repository_url,
                error_type=type(e).__name__,
                error=str(e) or "timed out",
            )
            raise DataProcessingError(SCAN_FAILED_MESSAGE) from e

        log.info(
            "Scan of {url} completed in {duration}ms: {commits} commits, {merge_requests} merge requests, "
            "{users} users",
            url=request.repository_url,
            duration=result.duration_ms,
            commits=result.commits_found,
            merge_requests=result.merge_requests_found,
            users=result.users_found,
        )
        return result

    async def _scan(self, request: ScanRequest, start_time: datetime) -> ScanResult:
        commits = await self._commit_fetcher.fetch_commits(request)
        merge_requests = await self._merge_request_fetcher.fetch_merge_requests(request)

        users = await self._user_processor.process_users(commits, merge_requests, request)
        self._reference_updater.update_commits_with_user_references(commits, users.user_map, request)
        await self._reference_updater.update_merge_requests_with_user_references(
            merge_requests, users.user_map, request
        )

        if commits:
            await self._persistence.save_commits(commits)
        if merge_requests:
            await self._persistence.save_merge_requests(merge_requests)

        return ScanResult(
            success=True,
            repository_url=request.repository_url,
            repository_name=request.repository_name,
            start_time=start_time,
            end_time=utc_now(),
            commits_found=len(commits),
            merge_requests_found=len(merge_requests),
            users_found=len(users.all_users),
        )
