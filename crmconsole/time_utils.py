from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def today() -> date:
    """Operator-local calendar day."""
    return date.today()


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
        return dt

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parse "YYYY-MM-DD" (or the date part of a datetime string)."""
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    return date.fromisoformat(s[:10])


def format_datetime(value: Optional[str]) -> str:
    """Table display: "YYYY-MM-DD HH:MM", "-" when absent or unparseable."""
    try:
        dt = parse_iso_datetime(value)
    except ValueError:
        return "-"
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M")


def format_date(value: Optional[str]) -> str:
    try:
        d = parse_iso_date(value)
    except ValueError:
        return "-"
    if d is None:
        return "-"
    return d.isoformat()


def short_day(value: str) -> str:
    """Chart axis label, e.g. "3/14"."""
    d = parse_iso_date(value)
    if d is None:
        return ""
    return f"{d.month}/{d.day}"


def trailing_window(days: int, end: Optional[date] = None) -> tuple[date, date]:
    """Inclusive [start, end] covering the last `days` calendar days."""
    end = end or today()
    return end - timedelta(days=days - 1), end
