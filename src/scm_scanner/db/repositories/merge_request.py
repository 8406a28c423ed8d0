"""Repository for MergeRequest model CRUD operations."""

import asyncio
from collections.abc import Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scm_scanner.db.models import MergeRequest
from scm_scanner.schemas import MergeRequestState

from .base import BaseRepository, Page


class MergeRequestRepository(BaseRepository[MergeRequest]):
    """Repository for scanned merge requests.

    Unique on (tool_config_id, external_id). The stored state follows the
    platform: OPEN rows are re-checked on every scan until they close.
    """

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, MergeRequest, write_lock)

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    async def get_by_external_id(self, tool_config_id: str, external_id: str) -> MergeRequest | None:
        """Get a merge request by repository and platform id."""
        stmt = select(MergeRequest).where(
            MergeRequest.tool_config_id == tool_config_id,
            MergeRequest.external_id == external_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_ids(
        self, tool_config_id: str, external_ids: Iterable[str]
    ) -> dict[str, MergeRequest]:
        """Get existing merge requests keyed by external id."""
        ids = set(external_ids)
        if not ids:
            return {}
        stmt = select(MergeRequest).where(
            MergeRequest.tool_config_id == tool_config_id,
            MergeRequest.external_id.in_(ids),
        )
        result = await self._session.execute(stmt)
        return {mr.external_id: mr for mr in result.scalars().all()}

    async def find_by_state(
        self,
        tool_config_id: str,
        state: MergeRequestState,
        page: int = 0,
        size: int = 100,
    ) -> Page[MergeRequest]:
        """Get one page of merge requests in a state, oldest update first.

        Args:
            tool_config_id: Repository identifier
            state: State to filter by
            page: 0-based page number
            size: Page size

        Returns:
            Page of merge requests
        """
        stmt = (
            select(MergeRequest)
            .where(MergeRequest.tool_config_id == tool_config_id, MergeRequest.state == state)
            .order_by(MergeRequest.updated_on, MergeRequest.id)
        )
        return await self._paginate(stmt, page, size)

    # -------------------------------------------------------------------------
    # Write Methods
    # -------------------------------------------------------------------------

    async def upsert_many(self, tool_config_id: str, rows: list[dict[str, Any]]) -> tuple[int, int]:
        """Insert new merge requests and update known ones.

        Args:
            tool_config_id: Repository identifier
            rows: Column values per merge request, each with an external_id

        Returns:
            Tuple of (created, updated) counts
        """
        existing = await self.get_by_external_ids(tool_config_id, (row["external_id"] for row in rows))
        created = updated = 0
        for row in rows:
            merge_request = existing.get(row["external_id"])
            if merge_request is None:
                merge_request = MergeRequest(tool_config_id=tool_config_id, **row)
                self.add(merge_request)
                existing[row["external_id"]] = merge_request
                created += 1
            else:
                for key, value in row.items():
                    setattr(merge_request, key, value)
                updated += 1
        await self.flush()
        return created, updated
