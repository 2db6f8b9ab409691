"""
Time helpers for TCFS.

Capsule timestamps are stored as RFC 3339 UTC text with one-second
resolution: YYYY-MM-DDTHH:MM:SSZ. Sub-second precision is dropped on
formatting and never accepted on parsing.
"""

import re
from datetime import UTC, datetime
from typing import Callable

from tcfs.errors import ErrorCode, Result

_RFC3339_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})Z$")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize an aware datetime to UTC.

    Raises:
        ValueError: If the datetime is naive
    """
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        msg = "datetime must be timezone-aware"
        raise ValueError(msg)
    return value.astimezone(UTC)


def truncate_to_second(value: datetime) -> datetime:
    """Drop sub-second precision."""
    return value.replace(microsecond=0)


def format_rfc3339(value: datetime) -> str:
    """
    Format an aware datetime as YYYY-MM-DDTHH:MM:SSZ.

    The year is always four digits, so years below 1000 read back.
    """
    return truncate_to_second(ensure_utc(value)).isoformat().replace("+00:00", "Z")


def parse_rfc3339(text: str) -> Result[datetime]:
    """
    Parse a YYYY-MM-DDTHH:MM:SSZ timestamp.

    Args:
        text: The timestamp string

    Returns:
        Result with an aware UTC datetime, or INVALID_TIME_FORMAT
    """
    if not isinstance(text, str):
        return Result.fail(ErrorCode.INVALID_TIME_FORMAT, "Timestamp must be a string")

    match = _RFC3339_RE.match(text.strip())
    if match is None:
        return Result.fail(
            ErrorCode.INVALID_TIME_FORMAT,
            f"Invalid RFC3339 format: {text!r} (expected YYYY-MM-DDTHH:MM:SSZ)",
        )

    year, month, day, hour, minute, second = (int(part) for part in match.groups())
    try:
        parsed = datetime(year, month, day, hour, minute, second, tzinfo=UTC)
    except ValueError as e:
        return Result.fail(ErrorCode.INVALID_TIME_FORMAT, f"Invalid date/time values: {e}")

    return Result.ok(parsed)

