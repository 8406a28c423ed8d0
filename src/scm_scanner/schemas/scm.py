"""Pydantic schemas for scanned SCM records.

These are the records that flow through a scan: platform services
produce them, the user processor links them, persistence upserts them.
They are mutable so reference linking can update them in place.
"""

from pydantic import Field

from .base import SchemaBase, UtcDatetime
from .enums import MergeRequestState, ToolType


class ScmUser(SchemaBase):
    """Canonical contributor identity within one repository."""

    id: int | None = None
    username: str
    email: str | None = None
    display_name: str | None = None
    tool_config_id: str | None = None
    repository_name: str | None = None

    @property
    def key(self) -> str:
        """Lookup key used to deduplicate identities."""
        return self.username.lower()


class ScmCommit(SchemaBase):
    """A commit as fetched from a platform."""

    revision_id: str = Field(min_length=1, description="Platform assigned SHA / commit id")
    tool_config_id: str | None = None
    repository_name: str | None = None
    branch_name: str | None = None
    commit_message: str | None = None
    commit_timestamp: UtcDatetime | None = None

    # Raw identity as reported by the platform
    author_name: str | None = None
    author_email: str | None = None
    author_username: str | None = None
    committer_name: str | None = None
    committer_email: str | None = None

    # Resolved references (set by DataReferenceUpdater)
    author: ScmUser | None = None
    committer: ScmUser | None = None

    added_lines: int = Field(default=0, ge=0)
    removed_lines: int = Field(default=0, ge=0)
    files_changed: int = Field(default=0, ge=0)
    parent_shas: list[str] = Field(default_factory=list)
    is_merge_commit: bool = False


class ScmMergeRequest(SchemaBase):
    """A merge request (pull request) as fetched from a platform."""

    external_id: str | None = Field(default=None, description="Platform MR/PR number")
    tool_config_id: str | None = None
    repository_name: str | None = None
    title: str = ""
    summary: str | None = None
    state: MergeRequestState = MergeRequestState.OPEN
    created_on: UtcDatetime | None = None
    updated_on: UtcDatetime | None = None
    merged_on: UtcDatetime | None = None
    closed_on: UtcDatetime | None = None
    from_branch: str | None = None
    to_branch: str | None = None

    # Raw identity as reported by the platform
    author_username: str | None = None
    author_email: str | None = None
    author_display_name: str | None = None
    reviewer_usernames: list[str] = Field(default_factory=list)

    # Resolved references (set by DataReferenceUpdater)
    author: ScmUser | None = None
    reviewers: list[ScmUser] = Field(default_factory=list)

    added_lines: int = Field(default=0, ge=0)
    removed_lines: int = Field(default=0, ge=0)
    files_changed: int = Field(default=0, ge=0)
    commit_count: int = Field(default=0, ge=0)
    merge_request_url: str | None = None
    is_draft: bool = False

    @property
    def is_open(self) -> bool:
        """Check if the merge request is still open."""
        return self.state == MergeRequestState.OPEN


class ScmRepository(SchemaBase):
    """Repository metadata discovered for a connection."""

    connection_id: str | None = None
    tool_type: ToolType | None = None
    repository_name: str
    url: str | None = None
    default_branch: str | None = None
    is_private: bool = False
    last_updated: UtcDatetime | None = None
