"""Conversions between wall-clock time strings and minute offsets.

All times are doctor-local wall-clock values stored verbatim as
zero-padded ``HH:MM:SS`` strings, so lexical order equals chronological
order. No timezone handling happens here.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")

MINUTES_PER_DAY = 24 * 60


def time_to_minutes(value: str) -> int:
    """Return minutes since midnight for an ``HH:MM`` or ``HH:MM:SS`` string."""

    hours, minutes = value.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def minutes_to_time(minutes: int) -> str:
    """Return the zero-padded ``HH:MM:SS`` string for a minute offset."""

    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}:00"


def normalize_time(value: str) -> str:
    """Validate a 24h clock string and return it as ``HH:MM:SS``.

    Raises ``ValueError`` for anything that is not a valid clock time. The
    grid has minute resolution, so a non-zero seconds field is rejected.
    """

    match = _TIME_PATTERN.match(str(value).strip())
    if not match:
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")

    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ValueError(f"Invalid time {value!r}; outside 00:00-23:59")
    if seconds:
        raise ValueError(f"Invalid time {value!r}; seconds must be 00")

    return f"{hours:02d}:{minutes:02d}:00"


def combine(day: date, clock: str) -> datetime:
    """Combine a calendar date and a clock string into a naive datetime."""

    minutes = time_to_minutes(clock)
    return datetime.combine(day, time(minutes // 60, minutes % 60))
