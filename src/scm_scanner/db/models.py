"""SQLAlchemy ORM models for scanned SCM data."""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON

from scm_scanner.schemas.enums import MergeRequestState


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class SyncStatus(str, Enum):
    """Outcome of the last repository sync of a connection."""

    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


# ------------------------------------------------------------------------------
# User model
# ------------------------------------------------------------------------------
class User(Base):
    """Canonical contributor identity within one repository."""

    __tablename__ = "scm_users"

    id: Mapped[int] = mapped_column(primary_key=True)
    tool_config_id: Mapped[str] = mapped_column(String(100), index=True)
    username: Mapped[str] = mapped_column(String(200))  # lower-cased lookup key
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    repository_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("tool_config_id", "username", name="uq_user_tool_config_username"),)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}')>"


# ------------------------------------------------------------------------------
# Commit model
# ------------------------------------------------------------------------------
class Commit(Base):
    """A scanned commit."""

    __tablename__ = "scm_commits"

    id: Mapped[int] = mapped_column(primary_key=True)
    tool_config_id: Mapped[str] = mapped_column(String(100), index=True)
    revision_id: Mapped[str] = mapped_column(String(100))
    repository_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    branch_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    commit_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    commit_timestamp: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    author_id: Mapped[int | None] = mapped_column(
        ForeignKey("scm_users.id", ondelete="SET NULL"), nullable=True
    )
    author_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    author_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    committer_id: Mapped[int | None] = mapped_column(
        ForeignKey("scm_users.id", ondelete="SET NULL"), nullable=True
    )
    committer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    committer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    added_lines: Mapped[int] = mapped_column(default=0)
    removed_lines: Mapped[int] = mapped_column(default=0)
    files_changed: Mapped[int] = mapped_column(default=0)
    parent_shas: Mapped[list[str]] = mapped_column(JSON, default=list)
    is_merge_commit: Mapped[bool] = mapped_column(default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    __table_args__ = (UniqueConstraint("tool_config_id", "revision_id", name="uq_commit_revision"),)

    def __repr__(self) -> str:
        return f"<Commit(id={self.id}, revision='{self.revision_id[:12]}')>"


# ------------------------------------------------------------------------------
# MergeRequest model
# ------------------------------------------------------------------------------
class MergeRequest(Base):
    """A scanned merge request (pull request)."""

    __tablename__ = "scm_merge_requests"

    id: Mapped[int] = mapped_column(primary_key=True)
    tool_config_id: Mapped[str] = mapped_column(String(100), index=True)
    external_id: Mapped[str] = mapped_column(String(100))
    repository_name: Mapped[str | None] = mapped_column(String(300), nullable=True)

    # --------------------------------------------------------------------------
    # Synced fields (updated on every scan that sees the merge request)
    # --------------------------------------------------------------------------
    title: Mapped[str] = mapped_column(String(500), default="")
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[MergeRequestState] = mapped_column(default=MergeRequestState.OPEN, index=True)
    created_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    merged_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    closed_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    from_branch: Mapped[str | None] = mapped_column(String(300), nullable=True)
    to_branch: Mapped[str | None] = mapped_column(String(300), nullable=True)

    author_id: Mapped[int | None] = mapped_column(
        ForeignKey("scm_users.id", ondelete="SET NULL"), nullable=True
    )
    author_username: Mapped[str | None] = mapped_column(String(200), nullable=True)
    reviewer_usernames: Mapped[list[str]] = mapped_column(JSON, default=list)

    added_lines: Mapped[int] = mapped_column(default=0)
    removed_lines: Mapped[int] = mapped_column(default=0)
    files_changed: Mapped[int] = mapped_column(default=0)
    commit_count: Mapped[int] = mapped_column(default=0)
    merge_request_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_draft: Mapped[bool] = mapped_column(default=False)

    # --------------------------------------------------------------------------
    # Metadata
    # --------------------------------------------------------------------------
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    # One merge request per external id within a repository
    __table_args__ = (UniqueConstraint("tool_config_id", "external_id", name="uq_merge_request_external_id"),)

    def __repr__(self) -> str:
        return f"<MergeRequest(id={self.id}, external_id='{self.external_id}', state={self.state.value})>"

    @property
    def is_open(self) -> bool:
        """Check if the merge request is still open."""
        return self.state == MergeRequestState.OPEN


# ------------------------------------------------------------------------------
# ScmRepositoryRecord model
# ------------------------------------------------------------------------------
class ScmRepositoryRecord(Base):
    """Repository discovered for a connection."""

    __tablename__ = "scm_repositories"

    id: Mapped[int] = mapped_column(primary_key=True)
    connection_id: Mapped[str] = mapped_column(String(100), index=True)
    tool_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    repository_name: Mapped[str] = mapped_column(String(300))
    url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    default_branch: Mapped[str | None] = mapped_column(String(300), nullable=True)
    is_private: Mapped[bool] = mapped_column(default=False)
    last_updated: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint("connection_id", "repository_name", name="uq_connection_repository"),
    )

    def __repr__(self) -> str:
        return f"<ScmRepositoryRecord(id={self.id}, name='{self.repository_name}')>"


# ------------------------------------------------------------------------------
# ConnectionSyncLog model
# ------------------------------------------------------------------------------
class ConnectionSyncLog(Base):
    """Last repository sync of a connection.

    The incremental window of the next repository listing starts at
    last_sync_at when the previous sync succeeded.
    """

    __tablename__ = "connection_sync_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    connection_id: Mapped[str] = mapped_column(String(100), unique=True)
    status: Mapped[SyncStatus] = mapped_column(default=SyncStatus.IN_PROGRESS)
    last_sync_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    repositories_found: Mapped[int] = mapped_column(default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<ConnectionSyncLog(connection_id='{self.connection_id}', status={self.status.value})>"
