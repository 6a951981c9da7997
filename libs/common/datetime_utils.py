"""Datetime utilities for timezone-aware UTC timestamps.

Usage:
    from libs.common.datetime_utils import utc_now

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
"""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime.

    Use this for every persisted timestamp; naive datetimes compare badly
    against ``timestamptz`` columns.
    """
    return datetime.now(timezone.utc)


def minutes_ago(minutes: int, now: datetime | None = None) -> datetime:
    """Return the UTC instant ``minutes`` before ``now`` (default: current time)."""
    return (now or utc_now()) - timedelta(minutes=minutes)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
