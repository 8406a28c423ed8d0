"""Configuration settings for SCM Scanner."""

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitConfig(BaseModel):
    """Configuration for rate limit governance.

    Controls the usage threshold that triggers a cooldown and how the
    scanner reacts to cooldowns that look anomalous.
    """

    enabled: bool = Field(
        default=True,
        description="Check platform quota before each page fetch",
    )
    threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Usage fraction at which a cooldown starts (0 = use monitor default)",
    )
    max_cooldown_hours: float = Field(
        default=24,
        gt=0,
        description="Cooldowns longer than this are treated as an anomaly",
    )
    fail_on_excessive_cooldown: bool = Field(
        default=False,
        description="Abort the scan instead of skipping an anomalous cooldown",
    )
    cooldown_buffer_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Extra wait added after the platform reset time",
    )

    @property
    def max_cooldown(self) -> timedelta:
        """Get the maximum cooldown as a timedelta."""
        return timedelta(hours=self.max_cooldown_hours)


class ScannerConfig(BaseModel):
    """Configuration for scan windows and pagination.

    Controls how far back first scans look, how the open merge request
    refresh is bounded, and per-scan resource limits.
    """

    first_scan_from_months: int = Field(
        default=6,
        ge=1,
        description="Lookback window for a repository's first scan",
    )
    open_merge_request_max_lookback_months: int = Field(
        default=6,
        ge=1,
        description="Upper bound on how far back open merge requests are re-checked",
    )
    open_merge_request_default_lookback_months: int = Field(
        default=3,
        ge=1,
        description="Re-check window when no open merge request carries an update date",
    )
    max_merge_requests_per_scan: int = Field(
        default=5000,
        ge=1,
        description="Page size used when reading known open merge requests",
    )
    max_open_merge_request_pages: int = Field(
        default=10,
        ge=1,
        description="Maximum pages of known open merge requests to re-check",
    )
    page_size: int = Field(
        default=100,
        ge=1,
        le=100,
        description="Items requested per platform API page",
    )
    scan_timeout_seconds: float | None = Field(
        default=14400.0,
        gt=0,
        description="Upper bound on one repository scan (None disables)",
    )
    max_concurrent_scans: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Repository scans allowed to run in parallel",
    )


class PlatformConfig(BaseModel):
    """API endpoint and quota settings for one SCM platform."""

    api_url: str = Field(description="Base URL of the platform REST API")
    rate_limit_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Monitor default threshold when no global threshold is set",
    )


class PlatformsConfig(BaseModel):
    """Per-platform configuration."""

    github: PlatformConfig = Field(
        default_factory=lambda: PlatformConfig(api_url="https://api.github.com")
    )
    gitlab: PlatformConfig = Field(
        default_factory=lambda: PlatformConfig(api_url="https://gitlab.com")
    )
    bitbucket: PlatformConfig = Field(
        default_factory=lambda: PlatformConfig(api_url="https://api.bitbucket.org/2.0")
    )
    azure_devops: PlatformConfig = Field(
        default_factory=lambda: PlatformConfig(api_url="https://dev.azure.com")
    )


class LoggingConfig(BaseModel):
    """Configuration for logging behavior.

    Controls file logging, rotation, and output format.
    """

    log_file: str | None = Field(
        default=None,
        description="Optional path for file logging (enables rotation)",
    )
    rotation: str = Field(
        default="10 MB",
        description="When to rotate log file (e.g., '10 MB', '1 day')",
    )
    retention: str = Field(
        default="7 days",
        description="How long to keep rotated logs",
    )
    serialize: bool = Field(
        default=False,
        description="If True, output JSON format to file",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------------------------------------------------------------
    # Database
    # --------------------------------------------------------------------------
    database_url: str = Field(
        default="sqlite+aiosqlite:///./scm_scanner.db",
        description="Async database connection string",
    )

    # --------------------------------------------------------------------------
    # Application
    # --------------------------------------------------------------------------
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # --------------------------------------------------------------------------
    # Scanning
    # --------------------------------------------------------------------------
    scanner: ScannerConfig = Field(
        default_factory=ScannerConfig,
        description="Scan window and pagination configuration",
    )
    rate_limit: RateLimitConfig = Field(
        default_factory=RateLimitConfig,
        description="Rate limit governance configuration",
    )
    platforms: PlatformsConfig = Field(
        default_factory=PlatformsConfig,
        description="Per-platform API endpoints and thresholds",
    )

    # --------------------------------------------------------------------------
    # Logging Configuration
    # --------------------------------------------------------------------------
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration (file output, rotation)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
