"""Repository for ConnectionSyncLog model CRUD operations."""

import asyncio
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from scm_scanner.db.models import ConnectionSyncLog, SyncStatus

from .base import BaseRepository


class SyncLogRepository(BaseRepository[ConnectionSyncLog]):
    """Repository tracking the repository sync state of each connection.

    Lifecycle of one sync:
    - mark_started: status IN_PROGRESS, started timestamp set
    - mark_finished: status SUCCESS or FAILED; last_sync_at only advances on success
    """

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, ConnectionSyncLog, write_lock)

    async def get_by_connection(self, connection_id: str) -> ConnectionSyncLog | None:
        """Get the sync log of a connection."""
        return await self._get_by_field("connection_id", connection_id)

    async def mark_started(self, connection_id: str, started_at: datetime) -> ConnectionSyncLog:
        """Create or reset the log for a new sync."""
        log = await self.get_by_connection(connection_id)
        if log is None:
            log = ConnectionSyncLog(connection_id=connection_id)
            self.add(log)
        log.status = SyncStatus.IN_PROGRESS
        log.last_sync_started_at = started_at
        log.error_message = None
        await self.flush()
        return log

    async def mark_finished(
        self,
        connection_id: str,
        finished_at: datetime,
        *,
        success: bool,
        repositories_found: int = 0,
        error_message: str | None = None,
    ) -> ConnectionSyncLog:
        """Record the outcome of a sync."""
        log = await self.get_by_connection(connection_id)
        if log is None:
            log = ConnectionSyncLog(connection_id=connection_id)
            self.add(log)
        log.status = SyncStatus.SUCCESS if success else SyncStatus.FAILED
        log.repositories_found = repositories_found
        log.error_message = error_message
        if success:
            log.last_sync_at = finished_at
        await self.flush()
        return log
