"""Enums shared by schemas, persistence and platform services."""

from enum import Enum, StrEnum


class ToolType(StrEnum):
    """Source control platforms the scanner can dispatch to.

    Values are the lower-cased tool type strings used in scan requests.
    """

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"
    AZURE_REPOSITORY = "azurerepository"

    @property
    def platform_name(self) -> str:
        """Human readable platform name used in logs and rate limit statuses."""
        return _PLATFORM_NAMES[self]

    @classmethod
    def parse(cls, value: "str | ToolType | None") -> "ToolType | None":
        """Resolve a tool type string case-insensitively.

        Accepts either the tool type value ("azurerepository") or the
        platform name ("Azure DevOps").

        Args:
            value: Raw tool type or platform name

        Returns:
            Matching ToolType, or None for unknown values
        """
        if value is None:
            return None
        if isinstance(value, ToolType):
            return value
        normalized = value.strip().lower()
        for tool_type in cls:
            if normalized in (tool_type.value, tool_type.platform_name.lower()):
                return tool_type
        return None


_PLATFORM_NAMES = {
    ToolType.GITHUB: "GitHub",
    ToolType.GITLAB: "GitLab",
    ToolType.BITBUCKET: "Bitbucket",
    ToolType.AZURE_REPOSITORY: "Azure DevOps",
}


class MergeRequestState(str, Enum):
    """Normalized merge request state across platforms."""

    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"  # closed without merge
    DECLINED = "declined"

    @classmethod
    def from_platform(cls, value: str | None, *, merged: bool = False) -> "MergeRequestState":
        """Map a platform specific state string to a normalized state.

        Args:
            value: Raw state ("opened", "active", "completed", "DECLINED", ...)
            merged: True when the platform reports a merge timestamp separately

        Returns:
            Normalized MergeRequestState (OPEN for unknown values)
        """
        if merged:
            return cls.MERGED
        return _PLATFORM_STATES.get((value or "").strip().lower(), cls.OPEN)


_PLATFORM_STATES = {
    "open": MergeRequestState.OPEN,
    "opened": MergeRequestState.OPEN,
    "active": MergeRequestState.OPEN,
    "merged": MergeRequestState.MERGED,
    "completed": MergeRequestState.MERGED,
    "closed": MergeRequestState.CLOSED,
    "abandoned": MergeRequestState.CLOSED,
    "locked": MergeRequestState.CLOSED,
    "declined": MergeRequestState.DECLINED,
    "superseded": MergeRequestState.DECLINED,
}


class OutputFormat(str, Enum):
    """Output format for CLI commands."""

    TEXT = "text"
    """Human-readable text output."""

    JSON = "json"
    """Machine-readable JSON output."""
