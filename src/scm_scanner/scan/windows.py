"""Incremental scan window resolution."""

from datetime import UTC, datetime

from dateutil.relativedelta import relativedelta

from scm_scanner.schemas import ScanRequest


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def months_ago(months: int, now: datetime | None = None) -> datetime:
    """Calendar months before now (end-of-month days are clamped)."""
    return (now or utc_now()) - relativedelta(months=months)


def from_epoch_millis(millis: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(millis / 1000, tz=UTC)


def to_epoch_millis(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def resolve_window_start(
    request: ScanRequest,
    first_scan_from_months: int,
    now: datetime | None = None,
) -> datetime:
    """Resolve the inclusive start of a scan window.

    Precedence:
        1. last_scan_from when set and non-zero
        2. the explicit since of the request
        3. now minus first_scan_from_months (first scan of a repository)

    Args:
        request: Scan request carrying the cursor
        first_scan_from_months: Default lookback for a first scan
        now: Reference time (defaults to the current time)

    Returns:
        Aware UTC datetime
    """
    if request.last_scan_from:
        return from_epoch_millis(request.last_scan_from)
    if request.since is not None:
        return request.since
    return months_ago(first_scan_from_months, now)
