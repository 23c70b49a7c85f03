"""
Centralized datetime utilities for capindex.

All datetimes are handled in UTC. The persisted index stores timestamps as
ISO strings with a 'Z' suffix, and quarantined files carry a compact
timestamp suffix, so both formats are produced here.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC datetime.

    Respects the mock time set with set_mock_time() so tests can pin
    generated_at values and quarantine suffixes.
    """
    if _mock_time is not None:
        return _mock_time
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """
    Get current UTC datetime as ISO string with 'Z' suffix.

    Example: "2024-01-15T10:30:45.123456Z"
    """
    return format_iso(utc_now())


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure datetime is in UTC timezone.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    elif dt.tzinfo == timezone.utc:
        return dt
    else:
        return dt.astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """
    Format datetime to ISO string with Z suffix.

    Example: "2024-01-15T10:30:45.123456Z"
    """
    utc_dt = ensure_utc(dt)
    return utc_dt.isoformat().replace('+00:00', 'Z')


def file_timestamp(dt: Optional[datetime] = None) -> str:
    """
    Compact, filesystem-safe timestamp.

    Example: "20240115T103045123456Z"
    """
    utc_dt = ensure_utc(dt or utc_now())
    return utc_dt.strftime(FILE_TIMESTAMP_FORMAT)


# For testing and mocking
_mock_time: Optional[datetime] = None


def set_mock_time(dt: Optional[datetime]) -> None:
    """
    Set mock time for testing.

    Set to None to go back to the real clock.

    Example:
        set_mock_time(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))
        ...
        set_mock_time(None)
    """
    global _mock_time
    _mock_time = ensure_utc(dt) if dt else None


FILE_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"
"""Timestamp format used for quarantine file suffixes"""
