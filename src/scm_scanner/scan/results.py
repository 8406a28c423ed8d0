"""Result objects for scan operations.

Structured results provide consistent interfaces for monitoring,
error handling, and CLI output.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from scm_scanner.schemas import ScanRequest, ScmRepository


def _duration_ms(start_time: datetime, end_time: datetime) -> int:
    return int((end_time - start_time).total_seconds() * 1000)


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one repository scan.

    Built once when the scan finishes and never mutated afterwards.
    """

    success: bool
    """True if every fetched record was persisted."""

    repository_url: str
    """URL of the scanned repository."""

    repository_name: str | None
    """Display name of the scanned repository."""

    start_time: datetime
    """When the scan started."""

    end_time: datetime
    """When the scan finished."""

    commits_found: int = 0
    """Commits fetched (and persisted) by the scan."""

    merge_requests_found: int = 0
    """Merge requests after reconciliation."""

    users_found: int = 0
    """Distinct contributors resolved by the scan."""

    error_message: str | None = None
    """Failure description when success is False."""

    @property
    def duration_ms(self) -> int:
        """Elapsed wall time in milliseconds."""
        return _duration_ms(self.start_time, self.end_time)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "success": self.success,
            "repository_url": self.repository_url,
            "repository_name": self.repository_name,
            "commits_found": self.commits_found,
            "merge_requests_found": self.merge_requests_found,
            "users_found": self.users_found,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_ms": self.duration_ms,
        }
        if self.error_message:
            result["error"] = self.error_message
        return result

    @classmethod
    def from_error(
        cls,
        request: ScanRequest,
        error: BaseException,
        start_time: datetime,
        end_time: datetime,
    ) -> ScanResult:
        """Create a result describing a failed scan.

        Only the scanner service reports failures this way; the executor
        raises instead.

        Args:
            request: The failed scan's request
            error: The exception that caused the failure
            start_time: When the scan started
            end_time: When the failure surfaced

        Returns:
            ScanResult with success=False
        """
        message = str(error)
        if error.__cause__ is not None:
            message = f"{message}: {error.__cause__}"
        return cls(
            success=False,
            repository_url=request.repository_url,
            repository_name=request.repository_name,
            start_time=start_time,
            end_time=end_time,
            error_message=message,
        )


@dataclass(frozen=True)
class RepositoryScanResult:
    """Outcome of listing the repositories of a connection."""

    connection_id: str | None
    start_time: datetime
    end_time: datetime
    repositories: tuple[ScmRepository, ...] = ()

    @property
    def repositories_found(self) -> int:
        """Number of repositories discovered."""
        return len(self.repositories)

    @property
    def success(self) -> bool:
        """A listing succeeds when it found at least one repository."""
        return self.repositories_found > 0

    @property
    def duration_ms(self) -> int:
        """Elapsed wall time in milliseconds."""
        return _duration_ms(self.start_time, self.end_time)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "connection_id": self.connection_id,
            "repositories_found": self.repositories_found,
            "repositories": [repo.repository_name for repo in self.repositories],
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_ms": self.duration_ms,
        }
