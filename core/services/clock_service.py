from __future__ import annotations

from datetime import datetime, timedelta, timezone

# Storage offset used by the upstream exchanges. Fixed, no DST.
IST = timezone(timedelta(hours=5, minutes=30), name="IST")


def now_ist() -> datetime:
    return datetime.now(tz=IST)


def to_ist(dt: datetime) -> datetime:
    """
    Express `dt` in UTC+05:30 without changing the instant.

    Naive datetimes are interpreted as UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(IST)


def iso(dt: datetime) -> str:
    return to_ist(dt).isoformat()
