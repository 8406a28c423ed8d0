"""Scanner service: the outer harness around ScanCommandExecutor.

Owns the platform services, their locators and the rate limit service.
Each scan runs in its own database transaction; scans of the same
repository (tool_config_id) never overlap, and at most
scanner.max_concurrent_scans scans run at once.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scm_scanner.config import Settings, get_settings
from scm_scanner.db.engine import get_session, get_session_factory
from scm_scanner.db.persistence import PersistenceService
from scm_scanner.logging import get_logger
from scm_scanner.platforms import (
    AzureDevOpsService,
    BitbucketService,
    CommitsServiceLocator,
    GitHubService,
    GitLabService,
    GitPlatformService,
    MergeRequestServiceLocator,
    PlatformServiceLocator,
    RepositoryServiceLocator,
)
from scm_scanner.rate_limit import RateLimitService, default_monitors
from scm_scanner.schemas import ScanRequest, ToolType

from .commit_fetcher import CommitFetcher
from .executor import ScanCommand, ScanCommandExecutor
from .merge_request_fetcher import MergeRequestFetcher
from .repository_fetcher import RepositoryFetcher
from .results import RepositoryScanResult, ScanResult
from .users import DataReferenceUpdater, UserProcessor
from .windows import utc_now

logger = get_logger(__name__)


class GitScannerService:
    """Runs repository scans with per-repository serialization.

    Usage:
        async with build_default_scanner() as scanner:
            result = await scanner.scan_repository(request)
            results = await scanner.scan_repositories(requests)
    """

    def __init__(
        self,
        services: Mapping[ToolType | str, GitPlatformService],
        rate_limit_service: RateLimitService | None = None,
        settings: Settings | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        """Initialize the scanner.

        Args:
            services: Platform service per tool type
            rate_limit_service: Shared rate limit service (for shutdown interrupts)
            settings: Application settings (uses get_settings() if not provided)
            session_factory: Session factory (uses the default engine if not provided)
        """
        self._settings = settings or get_settings()
        self._platforms = PlatformServiceLocator(services)
        self._commits_locator = CommitsServiceLocator(services)
        self._merge_request_locator = MergeRequestServiceLocator(services)
        self._repository_locator = RepositoryServiceLocator(services)
        self._rate_limit = rate_limit_service
        self._session_factory = session_factory
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: dict[str, int] = {}
        self._semaphore = asyncio.Semaphore(self._settings.scanner.max_concurrent_scans)

    @property
    def platforms(self) -> PlatformServiceLocator:
        """Locator over the registered platform services."""
        return self._platforms

    async def __aenter__(self) -> GitScannerService:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close every platform service."""
        for tool_type in self._platforms.tool_types:
            service = self._platforms.get_platform_service(tool_type)
            if service is not None:
                await service.aclose()

    def shutdown(self) -> None:
        """Wake scans waiting out a rate limit cooldown."""
        if self._rate_limit is not None:
            self._rate_limit.cooldown.interrupt()

    @asynccontextmanager
    async def _repository_lock(self, tool_config_id: str) -> AsyncIterator[None]:
        """Serialize scans of one repository; idle locks are dropped."""
        lock = self._locks.setdefault(tool_config_id, asyncio.Lock())
        if lock.locked():
            logger.info(
                "Waiting for running scan of {tool_config_id} to finish",
                tool_config_id=tool_config_id,
            )
        self._lock_holders[tool_config_id] = self._lock_holders.get(tool_config_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[tool_config_id] -= 1
            if self._lock_holders[tool_config_id] == 0:
                del self._lock_holders[tool_config_id]
                del self._locks[tool_config_id]

    def _session_factory_or_default(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    def _build_executor(self, persistence: PersistenceService) -> ScanCommandExecutor:
        scanner_config = self._settings.scanner
        return ScanCommandExecutor(
            commit_fetcher=CommitFetcher(self._commits_locator, scanner_config),
            merge_request_fetcher=MergeRequestFetcher(self._merge_request_locator, persistence, scanner_config),
            user_processor=UserProcessor(persistence),
            reference_updater=DataReferenceUpdater(persistence),
            persistence=persistence,
        )

    # -------------------------------------------------------------------------
    # Repository scans
    # -------------------------------------------------------------------------
    async def scan_repository(self, request: ScanRequest) -> ScanResult:
        """Scan one repository inside one transaction.

        Waits for any running scan of the same tool_config_id first.

        Raises:
            DataProcessingError: If the scan failed (nothing was persisted)
        """
        async with self._repository_lock(request.tool_config_id), self._semaphore:
            async with get_session(self._session_factory_or_default()) as session:
                executor = self._build_executor(PersistenceService(session))
                return await executor.execute(
                    ScanCommand(request, timeout=self._settings.scanner.scan_timeout_seconds)
                )

    async def scan_repositories(self, requests: list[ScanRequest]) -> list[ScanResult]:
        """Scan repositories concurrently, reporting every outcome.

        Failed scans are reported with ScanResult.from_error instead of
        raising, so one failing repository does not stop the batch.

        Returns:
            One ScanResult per request, in request order
        """

        async def run(request: ScanRequest) -> ScanResult:
            start_time = utc_now()
            try:
                return await self.scan_repository(request)
            except Exception as e:
                logger.error(
                    "Scan of {repo} failed: {error}",
                    repo=request.display_name,
                    error=str(e.__cause__ or e),
                )
                return ScanResult.from_error(request, e, start_time, utc_now())

        results = await asyncio.gather(*(run(request) for request in requests))
        succeeded = sum(1 for result in results if result.success)
        logger.info(
            "Scanned {total} repositories: {succeeded} succeeded, {failed} failed",
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
        )
        return list(results)

    # -------------------------------------------------------------------------
    # Connection repository discovery
    # -------------------------------------------------------------------------
    async def scan_connection_repositories(self, request: ScanRequest) -> RepositoryScanResult:
        """List and store the repositories of a connection.

        A failed listing is recorded on the connection's sync log in a
        separate transaction before the error propagates.
        """
        factory = self._session_factory_or_default()
        try:
            async with get_session(factory) as session:
                persistence = PersistenceService(session)
                fetcher = RepositoryFetcher(self._repository_locator, persistence, self._settings.scanner)
                return await fetcher.fetch_repositories(request)
        except Exception as e:
            if request.connection_id:
                async with get_session(factory) as session:
                    await PersistenceService(session).mark_sync_finished(
                        request.connection_id, utc_now(), success=False, error_message=str(e)
                    )
            raise


def build_platform_services(
    rate_limit_service: RateLimitService | None,
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> dict[ToolType, GitPlatformService]:
    """Build one service per supported platform."""
    platforms = settings.platforms
    page_size = settings.scanner.page_size
    return {
        ToolType.GITHUB: GitHubService(rate_limit_service, platforms.github, page_size),
        ToolType.GITLAB: GitLabService(rate_limit_service, platforms.gitlab, page_size, http_client),
        ToolType.BITBUCKET: BitbucketService(rate_limit_service, platforms.bitbucket, page_size, http_client),
        ToolType.AZURE_REPOSITORY: AzureDevOpsService(
            rate_limit_service, platforms.azure_devops, page_size, http_client
        ),
    }


def build_default_scanner(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> GitScannerService:
    """Wire a scanner for all four platforms from the settings."""
    settings = settings or get_settings()
    rate_limit_service = None
    if settings.rate_limit.enabled:
        rate_limit_service = RateLimitService(default_monitors(http_client), settings.rate_limit)
    services = build_platform_services(rate_limit_service, settings, http_client)
    return GitScannerService(services, rate_limit_service, settings, session_factory)
