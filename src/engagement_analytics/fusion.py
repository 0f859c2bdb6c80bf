"""Profile fusion: one UnifiedUserProfile per normalised email.

Sources are merged in a fixed order, each with its own merge rules:

1. Tickets seed profiles and accumulate the support facet. Satisfaction is
   last-write-wins in input order.
2. CRM persons and deals fill the commercial facet. A CRM organisation
   overrides any organisation guessed from tickets; ``is_paying`` latches
   once any linked deal is won.
3. Usage events fill the usage facet. Users seen only in usage still get a
   profile, with support and commercial facets left at their defaults.
   Snapshot last-seen markers update per-surface recency and nothing else.

Display name, job title and customer type are first-non-empty-wins.
"""
import re
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable

from .identity import normalise_email, primary_email
from .logger import log
from .models import (
    CrmSnapshot,
    RawTicketRecord,
    RawUsageEvent,
    UnifiedUserProfile,
)

SUPPORT_SURFACE = "support"

_LEADING_INT = re.compile(r"\s*(\d+)")


def parse_license_count(raw: str | None) -> int | None:
    """Leading integer of a licence-count field; 0 when it has none."""
    if raw is None:
        return None
    match = _LEADING_INT.match(str(raw))
    return int(match.group(1)) if match else 0


def group_events_by_email(events: Iterable[RawUsageEvent]) -> dict[str, list[RawUsageEvent]]:
    """Usage events per normalised email, preserving input order."""
    grouped: dict[str, list[RawUsageEvent]] = defaultdict(list)
    for event in events:
        email = normalise_email(event.user_email)
        if email and event.event_name:
            grouped[email].append(event)
    return dict(grouped)


def _fill(profile: UnifiedUserProfile, field: str, value: str | None) -> None:
    if value and not getattr(profile, field):
        setattr(profile, field, value)


def _merge_tickets(profiles: dict[str, UnifiedUserProfile], tickets: Iterable[RawTicketRecord]) -> int:
    dropped = 0
    for ticket in tickets:
        email = normalise_email(ticket.reporter_email)
        if not email:
            dropped += 1
            continue

        profile = profiles.get(email)
        if profile is None:
            profile = profiles[email] = UnifiedUserProfile(email=email)
        _fill(profile, "name", ticket.reporter_name)
        _fill(profile, "organisation", ticket.organisation)
        _fill(profile, "job_title", ticket.job_title)

        profile.total_tickets += 1
        if ticket.resolved_at is not None:
            profile.resolved_tickets += 1

        created = ticket.created_at
        if created is not None:
            if profile.first_contact_date is None or created < profile.first_contact_date:
                profile.first_contact_date = created
            if profile.last_contact_date is None or created > profile.last_contact_date:
                profile.last_contact_date = created
                profile.surface_last_seen[SUPPORT_SURFACE] = created

        if ticket.request_type and ticket.request_type not in profile.request_types:
            profile.request_types.append(ticket.request_type)

        if ticket.satisfaction is not None:
            profile.satisfaction = ticket.satisfaction

    return dropped


def _merge_crm(profiles: dict[str, UnifiedUserProfile], crm: CrmSnapshot) -> int:
    dropped = 0
    org_names = {org.id: org.name for org in crm.organisations}
    person_emails: dict[int, str] = {}

    for person in crm.persons:
        email = primary_email(person.emails)
        if not email:
            dropped += 1
            continue
        person_emails[person.id] = email

        profile = profiles.get(email)
        if profile is None:
            profile = profiles[email] = UnifiedUserProfile(email=email)
        profile.crm_person_id = person.id
        _fill(profile, "name", person.name)
        _fill(profile, "job_title", person.job_title)
        _fill(profile, "customer_type", person.customer_type)

        organisation = person.org_name or org_names.get(person.org_id)
        if organisation:
            profile.organisation = organisation

    stage_times: dict[str, datetime | None] = {}
    for deal in crm.deals:
        email = person_emails.get(deal.person_id) or normalise_email(deal.person_email)
        profile = profiles.get(email) if email else None
        if profile is None:
            dropped += 1
            continue

        profile.deals.append(deal)
        profile.total_deal_value += deal.value
        if deal.status == "won":
            profile.is_paying = True

        if deal.stage_name:
            previous = stage_times.get(email)
            if previous is None or deal.add_time is None or deal.add_time >= previous:
                profile.stage = deal.stage_name
                stage_times[email] = deal.add_time or previous

        license_count = parse_license_count(deal.license_count)
        if license_count is not None:
            profile.license_count = license_count

    return dropped


def _merge_usage(profiles: dict[str, UnifiedUserProfile], events: Iterable[RawUsageEvent]) -> None:
    for email, user_events in group_events_by_email(events).items():
        profile = profiles.get(email)
        if profile is None:
            profile = profiles[email] = UnifiedUserProfile(email=email)
        _fill(profile, "name", next((e.user_name for e in user_events if e.user_name), None))

        for event in user_events:
            last = profile.surface_last_seen.get(event.surface)
            if last is None or event.timestamp > last:
                profile.surface_last_seen[event.surface] = event.timestamp

        # snapshot markers only feed recency
        real_events = [e for e in user_events if not e.is_snapshot]
        if not real_events:
            continue

        timestamps = sorted(e.timestamp for e in real_events)
        profile.total_events = len(real_events)
        profile.features = list(dict.fromkeys(e.event_name for e in real_events))
        profile.first_seen_date = timestamps[0]
        profile.last_active_date = timestamps[-1]
        profile.days_active = (timestamps[-1] - timestamps[0]) // timedelta(days=1) + 1
        profile.avg_events_per_day = profile.total_events / profile.days_active


def fuse(
    ticket_records: Iterable[RawTicketRecord],
    crm_records: CrmSnapshot | None,
    usage_events: Iterable[RawUsageEvent],
) -> dict[str, UnifiedUserProfile]:
    """Merge the three sources into profiles keyed by normalised email."""
    profiles: dict[str, UnifiedUserProfile] = {}

    dropped_tickets = _merge_tickets(profiles, ticket_records)
    dropped_crm = _merge_crm(profiles, crm_records or CrmSnapshot())
    _merge_usage(profiles, usage_events)

    if dropped_tickets or dropped_crm:
        log.debug(f"Fusion dropped {dropped_tickets} tickets and {dropped_crm} CRM records without identity")
    log.info(f"Fused {len(profiles)} profiles")
    return profiles
