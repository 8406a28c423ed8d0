"""Platform-agnostic rate limit governance.

RateLimitService checks a platform's quota before each page fetch and,
when usage has reached the threshold, suspends the calling coroutine
until the platform's reset time. The check is advisory: a missing or
failing signal never aborts a scan. The wait itself is a hard backoff.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from scm_scanner.config import RateLimitConfig, get_settings
from scm_scanner.exceptions import RateLimitExceededError
from scm_scanner.logging import get_logger
from scm_scanner.schemas import ToolType

from .monitors import RateLimitMonitor
from .schemas import RateLimitStatus, ThrottleOutcome, now_millis

logger = get_logger(__name__)


class CooldownTimer:
    """Cancellable, interruptible wait used for rate limit cooldowns.

    Cancelling the waiting task raises CancelledError as usual.
    interrupt() is the shutdown signal: it wakes every current waiter and
    makes later waits return immediately until reset() is called.
    """

    def __init__(self) -> None:
        self._interrupted = asyncio.Event()

    async def wait(self, seconds: float) -> bool:
        """Wait for the given number of seconds.

        Args:
            seconds: Delay to wait

        Returns:
            True if the full delay elapsed, False if interrupted
        """
        if seconds <= 0:
            return True
        try:
            await asyncio.wait_for(self._interrupted.wait(), timeout=seconds)
        except TimeoutError:
            return True
        return False

    def interrupt(self) -> None:
        """Wake all waiters and skip future waits."""
        self._interrupted.set()

    def reset(self) -> None:
        """Allow waits to block again after an interrupt."""
        self._interrupted.clear()

    @property
    def is_interrupted(self) -> bool:
        """Whether interrupt() has been called since the last reset()."""
        return self._interrupted.is_set()


class RateLimitService:
    """Checks platform quota against a threshold and waits out cooldowns.

    Usage:
        service = RateLimitService(default_monitors())
        outcome = await service.check_rate_limit(
            ToolType.GITHUB, token, "owner/repo", base_url=None
        )

    The service holds no per-scan state and is safe for concurrent scans.
    """

    def __init__(
        self,
        monitors: Iterable[RateLimitMonitor],
        config: RateLimitConfig | None = None,
        cooldown: CooldownTimer | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            monitors: One monitor per supported platform
            config: Rate limit configuration (uses settings if not provided)
            cooldown: Timer used for cooldown waits
        """
        self._config = config or get_settings().rate_limit
        self._cooldown = cooldown or CooldownTimer()
        self._monitors: dict[ToolType, RateLimitMonitor] = {}
        for monitor in monitors:
            self._monitors[monitor.platform] = monitor
            logger.debug("Registered rate limit monitor for {platform}", platform=monitor.platform_name)

    @property
    def cooldown(self) -> CooldownTimer:
        """Timer used for cooldowns (interrupt it on shutdown)."""
        return self._cooldown

    def get_monitor(self, platform: str | ToolType) -> RateLimitMonitor | None:
        """Get the monitor for a platform by tool type or display name."""
        tool_type = ToolType.parse(platform)
        if tool_type is None:
            return None
        return self._monitors.get(tool_type)

    def resolve_threshold(self, monitor: RateLimitMonitor) -> float:
        """Global threshold when configured, else the monitor default."""
        if self._config.threshold > 0:
            return self._config.threshold
        return monitor.default_threshold

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------
    async def get_status(
        self,
        platform: str | ToolType,
        token: str,
        base_url: str | None = None,
    ) -> RateLimitStatus | None:
        """Read the current status without applying any throttling.

        Returns:
            RateLimitStatus, or None if no monitor is registered
        """
        monitor = self.get_monitor(platform)
        if monitor is None:
            return None
        return await monitor.get_rate_limit_status(token, base_url)

    async def check_rate_limit(
        self,
        platform: str | ToolType,
        token: str | None,
        repository_name: str | None,
        base_url: str | None = None,
    ) -> ThrottleOutcome:
        """Check quota and wait out a cooldown if the threshold is reached.

        Args:
            platform: Tool type or platform display name
            token: Credentials for the platform
            repository_name: Repository being scanned (for logs)
            base_url: API base URL for self-hosted instances

        Returns:
            ThrottleOutcome describing what happened

        Raises:
            RateLimitExceededError: If the cooldown exceeds max_cooldown_hours
                and fail_on_excessive_cooldown is enabled
        """
        if not self._config.enabled:
            logger.debug("Rate limit checking disabled")
            return ThrottleOutcome.DISABLED

        if not token:
            logger.debug("No token for {platform}, skipping rate limit check", platform=platform)
            return ThrottleOutcome.NO_TOKEN

        monitor = self.get_monitor(platform)
        if monitor is None:
            logger.warning("No rate limit monitor registered for platform {platform}", platform=platform)
            return ThrottleOutcome.NO_MONITOR

        try:
            status = await monitor.get_rate_limit_status(token, base_url)
            threshold = self.resolve_threshold(monitor)
            logger.debug(
                "{platform} quota for {repo}: {used}/{limit} ({pct:.1%}, threshold {threshold:.0%})",
                platform=status.platform,
                repo=repository_name,
                used=status.used,
                limit=status.limit,
                pct=status.usage_percentage,
                threshold=threshold,
            )
            if not status.exceeds_threshold(threshold):
                return ThrottleOutcome.WITHIN_LIMIT
            return await self._handle_threshold_exceeded(status, threshold, repository_name)
        except (RateLimitExceededError, asyncio.CancelledError):
            raise
        except Exception as e:
            logger.warning(
                "Failed to check rate limit for {platform} ({repo}), continuing: {error}",
                platform=monitor.platform_name,
                repo=repository_name,
                error=str(e),
            )
            return ThrottleOutcome.CHECK_FAILED

    async def _handle_threshold_exceeded(
        self,
        status: RateLimitStatus,
        threshold: float,
        repository_name: str | None,
    ) -> ThrottleOutcome:
        wait_ms = status.millis_until_reset(now_millis())
        if wait_ms <= 0:
            logger.info(
                "{platform} rate limit threshold reached but quota has already reset",
                platform=status.platform,
            )
            return ThrottleOutcome.ALREADY_RESET

        max_cooldown_ms = self._config.max_cooldown.total_seconds() * 1000
        if wait_ms > max_cooldown_ms:
            if self._config.fail_on_excessive_cooldown:
                raise RateLimitExceededError(
                    status.platform,
                    status.used,
                    status.limit,
                    threshold,
                    status.reset_time,
                )
            logger.warning(
                "{platform} cooldown of {hours:.1f}h exceeds the {max_hours}h maximum "
                "(clock skew or platform outage?); continuing without waiting",
                platform=status.platform,
                hours=wait_ms / 3_600_000,
                max_hours=self._config.max_cooldown_hours,
            )
            return ThrottleOutcome.COOLDOWN_SKIPPED

        wait_seconds = wait_ms / 1000 + self._config.cooldown_buffer_seconds
        logger.warning(
            "{platform} usage {pct:.1%} reached threshold {threshold:.0%} while scanning {repo}; "
            "waiting {seconds:.0f}s until {reset_at}",
            platform=status.platform,
            pct=status.usage_percentage,
            threshold=threshold,
            repo=repository_name,
            seconds=wait_seconds,
            reset_at=status.reset_at.isoformat(),
        )
        try:
            completed = await self._cooldown.wait(wait_seconds)
        except asyncio.CancelledError:
            logger.info("{platform} cooldown cancelled", platform=status.platform)
            raise

        if not completed:
            logger.info("{platform} cooldown interrupted, resuming scan", platform=status.platform)
            return ThrottleOutcome.INTERRUPTED

        logger.info("{platform} cooldown finished, resuming scan", platform=status.platform)
        return ThrottleOutcome.WAITED
