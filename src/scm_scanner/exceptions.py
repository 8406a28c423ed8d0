"""Scanner exceptions.

Callers of a repository scan only need to branch on DataProcessingError;
the platform and rate limit errors describe what went wrong underneath.
"""

from datetime import UTC, datetime


class ScannerError(Exception):
    """Base exception for all scanner errors."""

    default_error_code = "SCANNER_ERROR"

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code


class DataProcessingError(ScannerError):
    """Raised when a scan cannot be completed.

    The executor wraps every lower-level failure of a scan in this error,
    chained to the original cause.
    """

    default_error_code = "DATA_PROCESSING_ERROR"


# -----------------------------------------------------------------------------
# Platform API Errors
# -----------------------------------------------------------------------------
class PlatformApiError(ScannerError):
    """Raised when a platform HTTP or SDK call fails."""

    default_error_code = "PLATFORM_API_ERROR"

    def __init__(
        self,
        platform: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(f"{platform} API error: {message}")
        self.platform = platform
        self.status_code = status_code


class PlatformAuthenticationError(PlatformApiError):
    """Raised when the platform rejects the credentials (401/403)."""

    pass


class PlatformNotFoundError(PlatformApiError):
    """Raised when a resource is not found (404)."""

    pass


class PlatformRateLimitError(PlatformApiError):
    """Raised when the platform answers 429 or reports an exhausted quota."""

    def __init__(
        self,
        platform: str,
        message: str,
        status_code: int | None = 429,
        reset_at: datetime | None = None,
    ) -> None:
        super().__init__(platform, message, status_code)
        self.reset_at = reset_at


# -----------------------------------------------------------------------------
# Rate Limit Governance
# -----------------------------------------------------------------------------
class RateLimitExceededError(DataProcessingError):
    """Raised when a cooldown is longer than the configured maximum.

    Only raised when fail_on_excessive_cooldown is enabled.
    """

    default_error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        platform: str,
        current_usage: int,
        total_limit: int,
        threshold: float,
        reset_time: int,
    ) -> None:
        reset_at = datetime.fromtimestamp(reset_time / 1000, tz=UTC)
        super().__init__(
            f"Rate limit threshold ({threshold * 100:.0f}%) exceeded for {platform} platform. "
            f"Current usage: {current_usage}/{total_limit}. "
            f"Reset time: {reset_at.isoformat()}. "
            "Stopping scan to prevent rate limit violation."
        )
        self.platform = platform
        self.current_usage = current_usage
        self.total_limit = total_limit
        self.threshold = threshold
        self.reset_time = reset_time
