"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def epoch_ms(now: datetime | None = None) -> int:
    """Milliseconds since epoch for `now` (default: current time)."""
    return int((now or utc_now()).timestamp() * 1000)
