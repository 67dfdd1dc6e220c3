"""
Time helpers

The database stores naive UTC datetimes; everything that compares against
stored timestamps goes through these helpers.
"""
from datetime import datetime, timezone


def utc_now_naive() -> datetime:
    """
    Current UTC time without tzinfo (the storage format)

    Returns:
        naive datetime in UTC
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc(dt: datetime) -> datetime:
    """
    Convert any datetime to naive UTC

    Args:
        dt: aware or naive datetime (naive is assumed to already be UTC)

    Returns:
        naive UTC datetime
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
