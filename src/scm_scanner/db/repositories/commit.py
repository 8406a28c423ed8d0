"""Repository for Commit model CRUD operations."""

import asyncio
from collections.abc import Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scm_scanner.db.models import Commit

from .base import BaseRepository


class CommitRepository(BaseRepository[Commit]):
    """Repository for scanned commits, unique on (tool_config_id, revision_id)."""

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, Commit, write_lock)

    async def get_by_revision(self, tool_config_id: str, revision_id: str) -> Commit | None:
        """Get a commit by repository and revision id."""
        stmt = select(Commit).where(
            Commit.tool_config_id == tool_config_id,
            Commit.revision_id == revision_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_revisions(self, tool_config_id: str, revision_ids: Iterable[str]) -> dict[str, Commit]:
        """Get existing commits keyed by revision id."""
        ids = set(revision_ids)
        if not ids:
            return {}
        stmt = select(Commit).where(Commit.tool_config_id == tool_config_id, Commit.revision_id.in_(ids))
        result = await self._session.execute(stmt)
        return {commit.revision_id: commit for commit in result.scalars().all()}

    async def upsert_many(self, tool_config_id: str, rows: list[dict[str, Any]]) -> tuple[int, int]:
        """Insert new commits and update known ones.

        Args:
            tool_config_id: Repository identifier
            rows: Column values per commit, each with a revision_id

        Returns:
            Tuple of (created, updated) counts
        """
        existing = await self.get_by_revisions(tool_config_id, (row["revision_id"] for row in rows))
        created = updated = 0
        for row in rows:
            commit = existing.get(row["revision_id"])
            if commit is None:
                commit = Commit(tool_config_id=tool_config_id, **row)
                self.add(commit)
                existing[row["revision_id"]] = commit
                created += 1
            else:
                for key, value in row.items():
                    setattr(commit, key, value)
                updated += 1
        await self.flush()
        return created, updated
