"""Shared fixtures for the engagement analytics tests."""
from datetime import datetime, timedelta, timezone

import pytest

from engagement_analytics.models import (
    CrmSnapshot,
    RawCrmOrganisation,
    RawCrmPerson,
    RawDeal,
    RawTicketRecord,
    RawUsageEvent,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


def event(email: str, name: str, when: datetime, surface: str = "landiq") -> RawUsageEvent:
    return RawUsageEvent(user_email=email, event_name=name, timestamp=when, surface=surface)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def tickets():
    return [
        RawTicketRecord(
            key="HD-1",
            reporter_email="Alice@Example.com ",
            reporter_name="Alice",
            organisation="Acme",
            created_at=days_ago(40),
            resolved_at=days_ago(38),
            request_type="Bug",
            satisfaction=2,
        ),
        RawTicketRecord(
            key="HD-2",
            reporter_email="alice@example.com",
            created_at=days_ago(10),
            request_type="Question",
            satisfaction=5,
        ),
        RawTicketRecord(
            key="HD-3",
            reporter_email="bob@example.com",
            reporter_name="Bob",
            created_at=days_ago(5),
        ),
        RawTicketRecord(key="HD-4", reporter_email="   ", created_at=days_ago(1)),
    ]


@pytest.fixture
def crm():
    return CrmSnapshot(
        persons=[
            RawCrmPerson(id=1, name="Alice A.", emails=["alice@example.com"], org_id=10,
                         customer_type="Subscriber"),
            RawCrmPerson(id=2, name="Carol", emails=["", "CAROL@example.com"], org_name="Globex"),
        ],
        organisations=[RawCrmOrganisation(id=10, name="Acme Corp")],
        deals=[
            RawDeal(id=100, person_id=1, value=500.0, status="won", stage_name="Trial",
                    add_time=days_ago(60), license_count="5 seats"),
            RawDeal(id=101, person_id=1, value=250.0, status="open", stage_name="Renewal",
                    add_time=days_ago(20), license_count="n/a"),
            RawDeal(id=102, person_email="carol@example.com", value=100.0, status="lost"),
            RawDeal(id=103, person_id=99, value=1000.0, status="won"),
        ],
    )


@pytest.fixture
def usage_events():
    return [
        event("alice@example.com", "search", days_ago(3)),
        event("alice@example.com", "export_report", days_ago(2)),
        event("alice@example.com", "search", days_ago(1)),
        event("dave@example.com", "search", days_ago(100), surface="giraffe"),
    ]
