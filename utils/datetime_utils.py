"""Utilities for local due dates, UTC timestamps and calendar arithmetic."""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timezone
from typing import Optional, Union

UTC = timezone.utc

_LOCAL_FORMATS = ("%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M", "%Y-%m-%d", "%d.%m.%Y %H:%M", "%d.%m.%Y")


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _parse_iso(value: str) -> Optional[datetime]:
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    for fmt in _LOCAL_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_local_datetime(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """Parse a due date / reminder into a naive local ``datetime``.

    Aware values are converted to local wall-clock time first. Bare dates map
    to local midnight. Unparseable input yields ``None``.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return datetime.combine(value, time.min)
    elif isinstance(value, str):
        dt = _parse_iso(value)
        if dt is None:
            return None
    else:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """Parse an ISO string or epoch milliseconds into an aware UTC ``datetime``."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, UTC)
    if isinstance(value, str):
        dt = _parse_iso(value)
        return ensure_utc(dt) if dt else None
    return None


def to_local_string(dt: Optional[datetime]) -> Optional[str]:
    """Format a local datetime the way ``datetime-local`` inputs expect it."""

    if dt is None:
        return None
    return dt.strftime("%Y-%m-%dT%H:%M")


def epoch_millis(dt: datetime) -> float:
    return ensure_utc(dt).timestamp() * 1000.0


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def add_months(dt: datetime, months: int) -> datetime:
    """Shift ``dt`` by whole calendar months, clamping to the month's last day.

    ``2024-01-31 + 1 month`` is ``2024-02-29``; ``2023-01-31 + 1`` is
    ``2023-02-28``. Time of day is preserved.
    """

    index = dt.year * 12 + (dt.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.replace(year=year, month=month, day=min(dt.day, last_day))


def add_years(dt: datetime, years: int) -> datetime:
    return add_months(dt, years * 12)


__all__ = [
    "UTC",
    "add_months",
    "add_years",
    "ensure_utc",
    "epoch_millis",
    "parse_local_datetime",
    "parse_timestamp",
    "start_of_day",
    "to_local_string",
    "utc_now",
]
