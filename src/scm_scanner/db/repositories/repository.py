"""Repository for ScmRepositoryRecord model CRUD operations."""

import asyncio
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scm_scanner.db.models import ScmRepositoryRecord

from .base import BaseRepository


class ScmRepositoryRepository(BaseRepository[ScmRepositoryRecord]):
    """Repository for repositories discovered per connection."""

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, ScmRepositoryRecord, write_lock)

    async def get_by_connection(self, connection_id: str) -> list[ScmRepositoryRecord]:
        """Get all repositories of a connection, by name."""
        stmt = (
            select(ScmRepositoryRecord)
            .where(ScmRepositoryRecord.connection_id == connection_id)
            .order_by(ScmRepositoryRecord.repository_name)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def upsert_many(self, connection_id: str, rows: list[dict[str, Any]]) -> tuple[int, int]:
        """Insert new repositories and update known ones.

        Returns:
            Tuple of (created, updated) counts
        """
        existing = {record.repository_name: record for record in await self.get_by_connection(connection_id)}
        created = updated = 0
        for row in rows:
            record = existing.get(row["repository_name"])
            if record is None:
                record = ScmRepositoryRecord(connection_id=connection_id, **row)
                self.add(record)
                existing[row["repository_name"]] = record
                created += 1
            else:
                for key, value in row.items():
                    setattr(record, key, value)
                updated += 1
        await self.flush()
        return created, updated
