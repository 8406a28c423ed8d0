"""Pydantic schemas for platform rate limit data.

A RateLimitStatus is a point-in-time snapshot of one platform's quota,
either read from the platform or estimated for platforms that do not
expose one.
"""

import time
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, computed_field


def now_millis() -> int:
    """Current wall clock time as epoch milliseconds."""
    return int(time.time() * 1000)


class ThrottleOutcome(StrEnum):
    """What a rate limit check did.

    Only an anomalous cooldown with fail_on_excessive_cooldown enabled is
    fatal; that case raises RateLimitExceededError instead of returning.
    """

    DISABLED = "disabled"
    """Rate limit checking is turned off."""

    NO_TOKEN = "no_token"
    """No credentials supplied, nothing to check."""

    NO_MONITOR = "no_monitor"
    """No monitor registered for the platform."""

    CHECK_FAILED = "check_failed"
    """Status could not be read; treated as within limits."""

    WITHIN_LIMIT = "within_limit"
    """Usage is below the threshold."""

    ALREADY_RESET = "already_reset"
    """Threshold exceeded but the reset time has passed."""

    COOLDOWN_SKIPPED = "cooldown_skipped"
    """Cooldown longer than the configured maximum; continued without waiting."""

    WAITED = "waited"
    """Waited until the reset time plus buffer."""

    INTERRUPTED = "interrupted"
    """The cooldown was interrupted and the scan resumed early."""

    @property
    def waited(self) -> bool:
        """Whether the calling flow was suspended."""
        return self in (ThrottleOutcome.WAITED, ThrottleOutcome.INTERRUPTED)


class RateLimitStatus(BaseModel):
    """Quota usage for one platform at one moment.

    Immutable; monitors create a fresh instance on every check.
    """

    model_config = ConfigDict(frozen=True)

    platform: str = Field(description="Platform display name")
    used: int = Field(ge=0, description="Requests used in the current window")
    remaining: int = Field(ge=0, description="Requests remaining in the current window")
    limit: int = Field(ge=0, description="Requests allowed per window")
    reset_time: int = Field(description="Epoch millis when the quota renews")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def usage_percentage(self) -> float:
        """Fraction of the quota consumed (0.0 when the limit is unknown)."""
        if self.limit == 0:
            return 0.0
        return self.used / self.limit

    @property
    def reset_at(self) -> datetime:
        """Reset time as a UTC datetime."""
        return datetime.fromtimestamp(self.reset_time / 1000, tz=UTC)

    def exceeds_threshold(self, threshold: float) -> bool:
        """Check whether usage has reached the threshold fraction.

        Args:
            threshold: Usage fraction, e.g. 0.8

        Returns:
            True if usage_percentage >= threshold (never for a zero limit)
        """
        if self.limit == 0:
            return False
        return self.usage_percentage >= threshold

    def millis_until_reset(self, now: int | None = None) -> int:
        """Milliseconds until the quota renews (negative if already past)."""
        return self.reset_time - (now if now is not None else now_millis())

    @classmethod
    def estimated(
        cls,
        platform: str,
        *,
        remaining: int,
        limit: int,
        reset_in_seconds: float,
    ) -> "RateLimitStatus":
        """Build a status for platforms that only allow an estimate.

        Args:
            platform: Platform display name
            remaining: Estimated requests remaining
            limit: Estimated requests per window
            reset_in_seconds: Seconds from now until the window renews

        Returns:
            RateLimitStatus with used = limit - remaining
        """
        return cls(
            platform=platform,
            used=max(0, limit - remaining),
            remaining=remaining,
            limit=limit,
            reset_time=now_millis() + int(reset_in_seconds * 1000),
        )
