"""Pydantic schemas describing one repository scan."""

from pydantic import ConfigDict, Field, field_validator

from .base import SchemaBase, UtcDatetime
from .enums import ToolType


class ScanRequest(SchemaBase):
    """Immutable input to one repository scan.

    The incremental cursor is either last_scan_from (epoch millis of the
    previous scan) or an explicit since/until pair. last_scan_from wins
    over since, which wins over the configured default lookback.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True, str_strip_whitespace=True)

    repository_url: str = Field(description="Clone or browse URL of the repository")
    repository_name: str | None = Field(default=None, description="Display name of the repository")
    tool_type: ToolType = Field(description="Platform the repository lives on")
    tool_config_id: str = Field(description="Identifier correlating all records of the repository")
    username: str | None = Field(default=None, description="Account name (Bitbucket app passwords)")
    token: str | None = Field(default=None, repr=False, description="Access token or app password")
    branch_name: str | None = Field(default=None, description="Branch to scan (None = default)")
    connection_id: str | None = Field(default=None, description="Connection the repository belongs to")
    last_scan_from: int | None = Field(default=None, ge=0, description="Epoch millis of previous scan")
    since: UtcDatetime | None = Field(default=None, description="Explicit window start (inclusive)")
    until: UtcDatetime | None = Field(default=None, description="Explicit window end (exclusive)")
    limit: int | None = Field(default=None, ge=1, description="Optional cap on fetched items")

    @field_validator("tool_type", mode="before")
    @classmethod
    def _parse_tool_type(cls, value: object) -> object:
        """Accept tool types in any case ("GitHub", "AZUREREPOSITORY")."""
        if isinstance(value, str):
            return ToolType.parse(value) or value
        return value

    @property
    def display_name(self) -> str:
        """Repository name for logs, falling back to the URL."""
        return self.repository_name or self.repository_url


class GitUrlInfo(SchemaBase):
    """Structured identity parsed from a repository URL."""

    model_config = ConfigDict(frozen=True)

    platform: ToolType
    owner: str = Field(description="User, group, workspace or project key owning the repository")
    repository_name: str
    original_url: str
    host: str | None = Field(default=None, description="Hostname of the platform instance")
    base_url: str | None = Field(
        default=None,
        description="Scheme, host and context path of a self-hosted instance",
    )
    organization: str | None = Field(default=None, description="Azure DevOps organization")
    project: str | None = Field(default=None, description="Azure DevOps or Bitbucket Server project")
    is_self_hosted: bool = False

    @property
    def full_name(self) -> str:
        """Repository path in owner/name form."""
        return f"{self.owner}/{self.repository_name}"
