"""UTC-everywhere time handling. Business dates are taken in a named timezone."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_local(dt: datetime, tz_name: str) -> datetime:
    """
    Convert UTC datetime to local timezone.

    Args:
        dt: UTC datetime
        tz_name: IANA timezone name (e.g., "Africa/Lubumbashi")

    Raises:
        ValueError: If datetime is naive or timezone name is invalid
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime. Datetime must be timezone-aware."
        )

    try:
        local_tz = ZoneInfo(tz_name)
    except (KeyError, ZoneInfoNotFoundError):
        raise ValueError(f"Unknown timezone: {tz_name}")

    return dt.astimezone(local_tz)


def today_in(tz_name: str) -> date:
    """
    Calendar date right now in the given timezone.

    Issue dates are business dates: a document created at 23:30 UTC in
    Kinshasa is dated the next day.
    """
    return to_local(now_utc(), tz_name).date()
