"""Usage feed loading and parsing."""
from datetime import date
from pathlib import Path
from typing import IO

import pandas as pd

from .identity import normalise_email
from .logger import log
from .models import SNAPSHOT_EVENT, RawUsageEvent
from .recency import parse_timestamp

EMAIL_COLUMNS = ("useremail", "user_email", "email")
EVENT_COLUMNS = ("eventname", "event_name", "event")
TIMESTAMP_COLUMNS = ("timestamp", "createdat", "created_at", "date")
NAME_COLUMNS = ("username", "user_name", "name")
SURFACE_COLUMN = "surface"


def _find_column(columns: list[str], aliases: tuple[str, ...]) -> str | None:
    lowered = {c.strip().lower(): c for c in columns}
    for alias in aliases:
        if alias in lowered:
            return lowered[alias]
    return None


def _cell(row: pd.Series, column: str | None) -> str:
    if column is None:
        return ""
    value = row.get(column)
    if value is None or pd.isna(value):
        return ""
    return str(value).strip()


def load_usage_events(source: Path | IO[str], surface: str = "product") -> list[RawUsageEvent]:
    """Load the usage event feed.

    Columns are matched case-insensitively; when no email column is named the
    first column is taken as the identity key. Rows without an email, an event
    name or a parseable timestamp are dropped.
    """
    df = pd.read_csv(source, dtype=str, keep_default_na=False)
    columns = list(df.columns)
    if not columns:
        return []

    email_col = _find_column(columns, EMAIL_COLUMNS) or columns[0]
    event_col = _find_column(columns, EVENT_COLUMNS)
    ts_col = _find_column(columns, TIMESTAMP_COLUMNS)
    if event_col is None or ts_col is None:
        raise ValueError(f"Usage feed needs event and timestamp columns, got {columns}")
    name_col = _find_column(columns, NAME_COLUMNS)
    surface_col = _find_column(columns, (SURFACE_COLUMN,))

    events = []
    dropped = 0
    for _, row in df.iterrows():
        email = normalise_email(_cell(row, email_col))
        event_name = _cell(row, event_col)
        timestamp = parse_timestamp(_cell(row, ts_col))
        if not email or not event_name or timestamp is None:
            dropped += 1
            continue

        properties = {
            str(k): v for k, v in row.items()
            if k not in (email_col, event_col, ts_col) and v != ""
        }
        events.append(RawUsageEvent(
            user_email=email,
            event_name=event_name,
            timestamp=timestamp,
            user_name=_cell(row, name_col) or None,
            surface=_cell(row, surface_col) or surface,
            properties=properties,
        ))

    if dropped:
        log.debug(f"Dropped {dropped} malformed usage rows")
    return events


def load_snapshot_feed(source: Path | IO[str], surface: str) -> list[RawUsageEvent]:
    """Load a wide snapshot export.

    The first column holds the email and every other column is one snapshot;
    a non-blank, non-"0" cell holds the user's last-seen date at that snapshot.
    Each distinct last-seen date becomes one event.
    """
    df = pd.read_csv(source, dtype=str, keep_default_na=False)
    columns = list(df.columns)
    if len(columns) < 2:
        raise ValueError("Snapshot feed has no snapshot columns")

    email_col = columns[0]
    events = []
    for _, row in df.iterrows():
        email = normalise_email(_cell(row, email_col))
        if not email:
            continue

        seen = set()
        for column in columns[1:]:
            cell = _cell(row, column)
            if not cell or cell == "0":
                continue
            timestamp = parse_timestamp(cell)
            if timestamp is None or timestamp in seen:
                continue
            seen.add(timestamp)
            events.append(RawUsageEvent(
                user_email=email,
                event_name=SNAPSHOT_EVENT,
                timestamp=timestamp,
                surface=surface,
                properties={"snapshot": column},
            ))
    return events


def get_date_range(events: list[RawUsageEvent]) -> tuple[date, date]:
    """First and last event dates in a feed."""
    dates = [e.timestamp.date() for e in events]
    if not dates:
        raise ValueError("No valid dates found in usage feed")
    return min(dates), max(dates)
