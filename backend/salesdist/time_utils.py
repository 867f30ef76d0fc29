from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional

from .errors import ValidationError


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    """Business date used for transaction/visit dates and reference numbers."""
    return utcnow().date()


def week_bounds(day: date) -> tuple[date, date]:
    """Monday..Sunday window containing `day` (inclusive)."""
    start = day - timedelta(days=day.weekday())
    return start, start + timedelta(days=6)


def parse_iso_date(value) -> Optional[date]:
    """
    Normalize a date filter.

    - None / "" -> None
    - date / datetime -> date
    - "YYYY-MM-DD" (or a full ISO datetime) -> date
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        if len(s) > 10:
            return parse_iso_datetime(s).date()
        return date.fromisoformat(s)
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}", details={"expected": "YYYY-MM-DD"})


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_iso_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d is not None else None
