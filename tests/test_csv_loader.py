"""Usage and snapshot CSV feeds."""
import io
from datetime import date, datetime, timezone

import pytest

from engagement_analytics.csv_loader import (
    SNAPSHOT_EVENT,
    get_date_range,
    load_snapshot_feed,
    load_usage_events,
)

EVENT_FEED = """userEmail,eventName,timestamp,userName,project
Alice@Example.com,search,2024-06-01T09:00:00Z,Alice,p1
bob@example.com,export_report,05/06/2024,,
,search,2024-06-01T09:00:00Z,Nobody,
carol@example.com,,2024-06-01T09:00:00Z,,
dave@example.com,search,yesterday-ish,,
"""

SNAPSHOT_FEED = """email,Jan snapshot,Feb snapshot,Mar snapshot
alice@example.com,10/01/2024,10/01/2024,02/03/2024
bob@example.com,0,,
,01/01/2024,,
"""


class TestLoadUsageEvents:
    def test_valid_rows_kept_and_malformed_dropped(self):
        events = load_usage_events(io.StringIO(EVENT_FEED), surface="landiq")
        assert [e.user_email for e in events] == ["alice@example.com", "bob@example.com"]

    def test_row_fields(self):
        alice, bob = load_usage_events(io.StringIO(EVENT_FEED), surface="landiq")
        assert alice.event_name == "search"
        assert alice.timestamp == datetime(2024, 6, 1, 9, tzinfo=timezone.utc)
        assert alice.user_name == "Alice"
        assert alice.surface == "landiq"
        assert alice.properties["project"] == "p1"
        assert bob.timestamp == datetime(2024, 6, 5, tzinfo=timezone.utc)
        assert bob.user_name is None

    def test_surface_column_overrides_default(self):
        feed = "email,event,date,surface\na@x.io,open,2024-01-01,giraffe\nb@x.io,open,2024-01-01,\n"
        events = load_usage_events(io.StringIO(feed), surface="landiq")
        assert [e.surface for e in events] == ["giraffe", "landiq"]

    def test_first_column_is_identity_when_unnamed(self):
        feed = "who,event,timestamp\nA@X.io,open,2024-01-01\n"
        (only,) = load_usage_events(io.StringIO(feed))
        assert only.user_email == "a@x.io"

    def test_missing_required_columns(self):
        with pytest.raises(ValueError):
            load_usage_events(io.StringIO("email,event\na@x.io,open\n"))


class TestLoadSnapshotFeed:
    def test_one_event_per_distinct_date(self):
        events = load_snapshot_feed(io.StringIO(SNAPSHOT_FEED), surface="giraffe")
        assert {e.user_email for e in events} == {"alice@example.com"}
        assert sorted(e.timestamp.date() for e in events) == [date(2024, 1, 10), date(2024, 3, 2)]
        assert all(e.event_name == SNAPSHOT_EVENT and e.surface == "giraffe" for e in events)

    def test_needs_snapshot_columns(self):
        with pytest.raises(ValueError):
            load_snapshot_feed(io.StringIO("email\na@x.io\n"), surface="giraffe")


def test_get_date_range():
    events = load_usage_events(io.StringIO(EVENT_FEED))
    assert get_date_range(events) == (date(2024, 6, 1), date(2024, 6, 5))
    with pytest.raises(ValueError):
        get_date_range([])
