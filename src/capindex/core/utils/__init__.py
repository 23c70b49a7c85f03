"""
Core utilities module for capindex.
"""

from .datetime_utils import (
    utc_now,
    utc_now_iso,
    ensure_utc,
    format_iso,
    file_timestamp,
    set_mock_time,
    FILE_TIMESTAMP_FORMAT,
)

__all__ = [
    'utc_now',
    'utc_now_iso',
    'ensure_utc',
    'format_iso',
    'file_timestamp',
    'set_mock_time',
    'FILE_TIMESTAMP_FORMAT',
]
