"""Shared timestamp normalization and duration helpers."""
from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

from recorder.errors import InvalidQuery

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_storage_timestamp(value: datetime) -> str:
    """Fixed-width ISO-8601 form, so stored timestamps sort lexicographically."""
    return to_utc(value).isoformat(timespec="microseconds")


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y/%m/%d %H:%M:%S", "%Y/%m/%d", "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Convert mixed timestamp inputs into aware UTC datetimes."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        token = value.strip()
        if not token:
            return None
        if _DATE_ONLY_RE.match(token):
            try:
                day = date.fromisoformat(token)
            except ValueError:
                return None
            return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
        parsed = _parse_datetime_token(token)
        return to_utc(parsed) if parsed else None
    return None


def parse_time_bound(value: Any, field_name: str, end_of_day: bool = False) -> datetime | None:
    """Parse an optional search bound; malformed input is rejected, not ignored.

    With ``end_of_day`` a date-only value covers that whole day, so it can be
    used as an inclusive upper bound.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise InvalidQuery(f"Malformed {field_name}: {value!r}")
    if end_of_day and isinstance(value, str) and _DATE_ONLY_RE.match(value.strip()):
        return parsed + timedelta(days=1, microseconds=-1)
    return parsed


def format_duration(seconds: float) -> str:
    """Largest applicable unit breakdown: ``1h 5m``, ``3m 20s`` or ``42s``."""
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_session_name(first_timestamp: datetime) -> str:
    return f"Session {to_utc(first_timestamp):%Y-%m-%d %H:%M:%S}"
