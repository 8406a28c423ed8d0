"""Persistence contract used by the scan engine.

PersistenceService wraps the repositories behind schema-level methods so
fetchers and the executor never touch ORM rows. Every method works inside
the caller's session; committing is the caller's decision, which is what
makes a scan all-or-nothing.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from scm_scanner.exceptions import DataProcessingError
from scm_scanner.logging import get_logger
from scm_scanner.schemas import (
    MergeRequestState,
    ScmCommit,
    ScmMergeRequest,
    ScmRepository,
    ScmUser,
)

from .models import ConnectionSyncLog
from .repositories import (
    CommitRepository,
    MergeRequestRepository,
    Page,
    ScmRepositoryRepository,
    SyncLogRepository,
    UserRepository,
)

logger = get_logger(__name__)


def _naive_utc(value: datetime | None) -> datetime | None:
    """Store datetimes as naive UTC (SQLite keeps no offset)."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _require_tool_config_id(kind: str, items: Iterable[ScmCommit | ScmMergeRequest | ScmUser]) -> None:
    missing = [item for item in items if not item.tool_config_id]
    if missing:
        raise DataProcessingError(f"Cannot save {len(missing)} {kind} without a tool config id")


class PersistenceService:
    """Schema-level persistence for one database session.

    Usage:
        async with get_session() as session:
            persistence = PersistenceService(session)
            page = await persistence.find_merge_requests_by_tool_config_id_and_state(
                "cfg-1", MergeRequestState.OPEN, page=0, size=100
            )
    """

    def __init__(self, session: AsyncSession, write_lock: asyncio.Lock | None = None) -> None:
        """Initialize the service.

        Args:
            session: Async SQLAlchemy session (caller commits or rolls back)
            write_lock: Optional lock to serialize flushes on a shared session
        """
        self._session = session
        self._commits = CommitRepository(session, write_lock)
        self._merge_requests = MergeRequestRepository(session, write_lock)
        self._users = UserRepository(session, write_lock)
        self._repositories = ScmRepositoryRepository(session, write_lock)
        self._sync_logs = SyncLogRepository(session, write_lock)

    @property
    def session(self) -> AsyncSession:
        """Access the underlying session."""
        return self._session

    # -------------------------------------------------------------------------
    # Merge Requests
    # -------------------------------------------------------------------------
    async def find_merge_requests_by_tool_config_id_and_state(
        self,
        tool_config_id: str,
        state: MergeRequestState,
        page: int = 0,
        size: int = 100,
    ) -> Page[ScmMergeRequest]:
        """Read one page of stored merge requests in a state.

        Args:
            tool_config_id: Repository identifier
            state: State to filter by
            page: 0-based page number
            size: Page size

        Returns:
            Page of ScmMergeRequest schemas
        """
        rows = await self._merge_requests.find_by_state(tool_config_id, state, page, size)
        return Page(
            items=ScmMergeRequest.from_orm_list(rows.items),
            page=rows.page,
            size=rows.size,
            total=rows.total,
        )

    async def save_merge_requests(self, merge_requests: list[ScmMergeRequest]) -> int:
        """Upsert merge requests on (tool_config_id, external_id).

        Returns:
            Number of merge requests written
        """
        _require_tool_config_id("merge requests", merge_requests)
        grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for mr in merge_requests:
            if not mr.external_id:
                raise DataProcessingError(f"Cannot save merge request without an external id: {mr.title!r}")
            grouped[mr.tool_config_id or ""].append(self._merge_request_row(mr))

        saved = 0
        for tool_config_id, rows in grouped.items():
            created, updated = await self._merge_requests.upsert_many(tool_config_id, rows)
            logger.debug(
                "Saved merge requests for {tool_config_id}: {created} new, {updated} updated",
                tool_config_id=tool_config_id,
                created=created,
                updated=updated,
            )
            saved += created + updated
        return saved

    @staticmethod
    def _merge_request_row(mr: ScmMergeRequest) -> dict[str, Any]:
        return {
            "external_id": mr.external_id,
            "repository_name": mr.repository_name,
            "title": mr.title,
            "summary": mr.summary,
            "state": mr.state,
            "created_on": _naive_utc(mr.created_on),
            "updated_on": _naive_utc(mr.updated_on),
            "merged_on": _naive_utc(mr.merged_on),
            "closed_on": _naive_utc(mr.closed_on),
            "from_branch": mr.from_branch,
            "to_branch": mr.to_branch,
            "author_id": mr.author.id if mr.author else None,
            "author_username": mr.author.username if mr.author else mr.author_username,
            "reviewer_usernames": [user.username for user in mr.reviewers] or list(mr.reviewer_usernames),
            "added_lines": mr.added_lines,
            "removed_lines": mr.removed_lines,
            "files_changed": mr.files_changed,
            "commit_count": mr.commit_count,
            "merge_request_url": mr.merge_request_url,
            "is_draft": mr.is_draft,
        }

    # -------------------------------------------------------------------------
    # Commits
    # -------------------------------------------------------------------------
    async def save_commits(self, commits: list[ScmCommit]) -> int:
        """Upsert commits on (tool_config_id, revision_id).

        Returns:
            Number of commits written
        """
        _require_tool_config_id("commits", commits)
        grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for commit in commits:
            grouped[commit.tool_config_id or ""].append(self._commit_row(commit))

        saved = 0
        for tool_config_id, rows in grouped.items():
            created, updated = await self._commits.upsert_many(tool_config_id, rows)
            logger.debug(
                "Saved commits for {tool_config_id}: {created} new, {updated} updated",
                tool_config_id=tool_config_id,
                created=created,
                updated=updated,
            )
            saved += created + updated
        return saved

    @staticmethod
    def _commit_row(commit: ScmCommit) -> dict[str, Any]:
        return {
            "revision_id": commit.revision_id,
            "repository_name": commit.repository_name,
            "branch_name": commit.branch_name,
            "commit_message": commit.commit_message,
            "commit_timestamp": _naive_utc(commit.commit_timestamp),
            "author_id": commit.author.id if commit.author else None,
            "author_name": commit.author_name,
            "author_email": commit.author_email,
            "committer_id": commit.committer.id if commit.committer else None,
            "committer_name": commit.committer_name,
            "committer_email": commit.committer_email,
            "added_lines": commit.added_lines,
            "removed_lines": commit.removed_lines,
            "files_changed": commit.files_changed,
            "parent_shas": list(commit.parent_shas),
            "is_merge_commit": commit.is_merge_commit,
        }

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------
    async def save_users(self, users: list[ScmUser]) -> list[ScmUser]:
        """Upsert users and set their database ids in place.

        Returns:
            The same user instances, now carrying ids
        """
        _require_tool_config_id("users", users)
        grouped: dict[str, list[ScmUser]] = defaultdict(list)
        for user in users:
            grouped[user.tool_config_id or ""].append(user)

        for tool_config_id, group in grouped.items():
            existing = await self._users.get_by_usernames(tool_config_id, (user.username for user in group))
            for user in group:
                row, _ = await self._users.create_or_update(
                    tool_config_id,
                    user.username,
                    email=user.email,
                    display_name=user.display_name,
                    repository_name=user.repository_name,
                    existing=existing.get(user.key),
                )
                existing[row.username] = row
                user.id = row.id
        return users

    async def find_or_create_user(self, user: ScmUser) -> ScmUser:
        """Return the stored identity for a user, creating it when unknown."""
        saved = await self.save_users([user])
        return saved[0]

    # -------------------------------------------------------------------------
    # Repositories
    # -------------------------------------------------------------------------
    async def save_repositories(self, repositories: list[ScmRepository]) -> int:
        """Upsert repositories on (connection_id, repository_name).

        Returns:
            Number of repositories written
        """
        grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for repository in repositories:
            if not repository.connection_id:
                raise DataProcessingError(
                    f"Cannot save repository without a connection id: {repository.repository_name}"
                )
            grouped[repository.connection_id].append(
                {
                    "repository_name": repository.repository_name,
                    "tool_type": repository.tool_type.value if repository.tool_type else None,
                    "url": repository.url,
                    "default_branch": repository.default_branch,
                    "is_private": repository.is_private,
                    "last_updated": _naive_utc(repository.last_updated),
                }
            )

        saved = 0
        for connection_id, rows in grouped.items():
            created, updated = await self._repositories.upsert_many(connection_id, rows)
            saved += created + updated
        return saved

    async def get_repositories(self, connection_id: str) -> list[ScmRepository]:
        """Read the stored repositories of a connection."""
        return ScmRepository.from_orm_list(await self._repositories.get_by_connection(connection_id))

    # -------------------------------------------------------------------------
    # Sync Logs
    # -------------------------------------------------------------------------
    async def get_sync_log(self, connection_id: str) -> ConnectionSyncLog | None:
        """Get the repository sync log of a connection."""
        return await self._sync_logs.get_by_connection(connection_id)

    async def mark_sync_started(self, connection_id: str, started_at: datetime) -> ConnectionSyncLog:
        """Mark a repository sync as in progress."""
        return await self._sync_logs.mark_started(connection_id, _naive_utc(started_at) or started_at)

    async def mark_sync_finished(
        self,
        connection_id: str,
        finished_at: datetime,
        *,
        success: bool,
        repositories_found: int = 0,
        error_message: str | None = None,
    ) -> ConnectionSyncLog:
        """Record the outcome of a repository sync."""
        return await self._sync_logs.mark_finished(
            connection_id,
            _naive_utc(finished_at) or finished_at,
            success=success,
            repositories_found=repositories_found,
            error_message=error_message,
        )
