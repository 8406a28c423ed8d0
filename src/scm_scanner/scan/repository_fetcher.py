"""Repository discovery for a connection."""

from __future__ import annotations

from datetime import UTC, datetime

from scm_scanner.config import ScannerConfig, get_settings
from scm_scanner.db.models import ConnectionSyncLog, SyncStatus
from scm_scanner.db.persistence import PersistenceService
from scm_scanner.exceptions import DataProcessingError
from scm_scanner.logging import get_logger
from scm_scanner.platforms import RepositoryServiceLocator
from scm_scanner.schemas import ScanRequest

from .results import RepositoryScanResult
from .windows import months_ago, utc_now

logger = get_logger(__name__)


class RepositoryFetcher:
    """Lists the repositories of a connection and records the sync.

    The listing window starts at the last successful sync of the
    connection, or first_scan_from_months back on a first sync.
    """

    def __init__(
        self,
        locator: RepositoryServiceLocator,
        persistence: PersistenceService,
        config: ScannerConfig | None = None,
    ) -> None:
        self._locator = locator
        self._persistence = persistence
        self._config = config or get_settings().scanner

    def repositories_since(self, sync_log: ConnectionSyncLog | None, now: datetime) -> datetime:
        """Start of the repository listing window."""
        if sync_log is not None and sync_log.status == SyncStatus.SUCCESS and sync_log.last_sync_at:
            last_sync_at = sync_log.last_sync_at
            return last_sync_at if last_sync_at.tzinfo else last_sync_at.replace(tzinfo=UTC)
        return months_ago(self._config.first_scan_from_months, now)

    async def fetch_repositories(self, request: ScanRequest) -> RepositoryScanResult:
        """Fetch and persist the repositories of request.connection_id.

        Args:
            request: Scan request carrying connection_id and credentials

        Returns:
            RepositoryScanResult (success when at least one repository was found)

        Raises:
            DataProcessingError: If the connection id is missing or the platform unsupported
        """
        if not request.connection_id:
            raise DataProcessingError("Repository scan requires a connection id")
        connection_id = request.connection_id

        start_time = utc_now()
        sync_log = await self._persistence.get_sync_log(connection_id)
        since = self.repositories_since(sync_log, start_time)

        service = self._locator.get_repository_service(request.tool_type)
        if service is None:
            raise DataProcessingError(
                f"No suitable repository fetch strategy found for tool type: {request.tool_type}"
            )

        await self._persistence.mark_sync_started(connection_id, start_time)
        logger.info(
            "Fetching repositories for connection {connection_id} since {since}",
            connection_id=connection_id,
            since=since.isoformat(),
        )
        repositories = await service.fetch_repositories(request.model_copy(update={"since": since}))

        if repositories:
            await self._persistence.save_repositories(repositories)
            logger.info(
                "Persisted {count} repositories for connection {connection_id}",
                count=len(repositories),
                connection_id=connection_id,
            )
        end_time = utc_now()
        await self._persistence.mark_sync_finished(
            connection_id,
            end_time,
            success=bool(repositories),
            repositories_found=len(repositories),
        )
        return RepositoryScanResult(
            connection_id=connection_id,
            start_time=start_time,
            end_time=end_time,
            repositories=tuple(repositories),
        )
