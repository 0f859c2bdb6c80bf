"""Timestamp parsing and days-since-last-activity."""
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

import pandas as pd

# Stand-in for "no activity inside the lookback window".
LOOKBACK_CEILING_DAYS = 240

# Stand-in for "never active" when classifying churn risk.
NEVER_ACTIVE_DAYS = 999

_DAY = timedelta(days=1)
_DAY_FIRST_FORMATS = ("%d/%m/%Y", "%d/%m/%y", "%d-%b-%y", "%d-%b-%Y")
_TIME_FORMATS = ("%H:%M", "%H:%M:%S", "%H:%M:%S.%f")

# d/m/y or d-Mon-y, optionally followed by a time of day
_DAY_FIRST_SHAPE = re.compile(
    r"^(\d{1,2}\s*[/-]\s*(?:\d{1,2}|[A-Za-z]{3,})\s*[/-]\s*\d{2,4})(?:[\sT]+(.+))?$"
)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _pandas_timestamp(text: str, dayfirst: bool = False) -> datetime | None:
    try:
        parsed = pd.to_datetime(text, utc=True, dayfirst=dayfirst)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def _day_first_timestamp(date_part: str, clock: str | None) -> datetime | None:
    date_part = date_part.replace(" ", "")
    for fmt in _DAY_FIRST_FORMATS:
        try:
            day = datetime.strptime(date_part, fmt)
        except ValueError:
            continue
        if not clock:
            return day.replace(tzinfo=timezone.utc)
        for time_fmt in _TIME_FORMATS:
            try:
                time_of_day = datetime.strptime(clock.strip(), time_fmt).time()
            except ValueError:
                continue
            return datetime.combine(day.date(), time_of_day, tzinfo=timezone.utc)
        return None
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an upstream timestamp into an aware UTC datetime.

    Accepts datetimes, dates, ISO-8601 strings (with or without offset) and the
    day-first formats used by the usage exports, with or without a time of
    day. Day-first text is never read month-first. Returns None when
    unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    match = _DAY_FIRST_SHAPE.match(text)
    if match is None:
        return _pandas_timestamp(text)
    return _day_first_timestamp(match.group(1), match.group(2)) or _pandas_timestamp(text, dayfirst=True)


def days_since(last_seen: datetime | None, now: datetime) -> int | None:
    """Whole days (floored) between ``last_seen`` and ``now``.

    None when there is no timestamp. Timestamps after ``now`` count as 0.
    """
    if last_seen is None:
        return None
    days = (as_utc(now) - as_utc(last_seen)) // _DAY
    return max(0, days)


def recency_or_ceiling(last_seen: datetime | None, now: datetime) -> int:
    """Like days_since, substituting the lookback ceiling for "never seen"."""
    days = days_since(last_seen, now)
    return LOOKBACK_CEILING_DAYS if days is None else days
