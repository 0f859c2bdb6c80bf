"""Platform-wide insights, daily timeline and strategic action lists."""
import math
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Iterable

from .identity import normalise_email
from .models import (
    AtRiskUser,
    FeatureUsage,
    InactivityBucket,
    OrganisationStats,
    PlatformInsights,
    RawDeal,
    RawTicketRecord,
    RawUsageEvent,
    StrategicSegments,
    TimelineDay,
    UnifiedUserProfile,
)
from .organisations import UNKNOWN_CUSTOMER_TYPE, UNKNOWN_ORGANISATION, organisation_of
from .recency import LOOKBACK_CEILING_DAYS, as_utc, days_since

TOP_N = 5

RECENT_DAYS = 60
CHURN_DAYS = 120
ACTIVE_DAYS = 30
RE_ENGAGE_RANGE = (30, 90)
EXPANSION_MIN_USERS = 5
EXPANSION_MAX_ADOPTION = 0.2

AT_RISK_DAYS = 180
INACTIVITY_BUCKETS = [
    ("< 30 days", 29),
    ("30-89 days", 89),
    ("90-179 days", 179),
    (">= 180 days", None),
]


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _percent(numerator: int, denominator: int) -> int:
    return math.floor(_ratio(numerator, denominator) * 100 + 0.5)


def feature_label(feature: str) -> str:
    return " ".join(word.capitalize() for word in feature.split("_"))


def feature_usage(profiles: Iterable[UnifiedUserProfile], n: int = TOP_N) -> list[FeatureUsage]:
    """Top features by user count, as % of paying and of non-paying users."""
    paying_users = non_paying_users = 0
    paying, non_paying = Counter(), Counter()
    for profile in profiles:
        if profile.is_paying:
            paying_users += 1
            paying.update(profile.features)
        else:
            non_paying_users += 1
            non_paying.update(profile.features)

    totals = paying + non_paying
    ranked = sorted(totals.items(), key=lambda item: -item[1])[:n]
    return [
        FeatureUsage(
            feature=feature_label(feature),
            paying=_percent(paying[feature], paying_users),
            non_paying=_percent(non_paying[feature], non_paying_users),
        )
        for feature, _ in ranked
    ]


def platform_insights(
    profiles: dict[str, UnifiedUserProfile],
    organisations: dict[str, OrganisationStats],
    ticket_count: int | None = None,
) -> PlatformInsights:
    users = list(profiles.values())
    total_users = len(users)
    paying_users = sum(1 for p in users if p.is_paying)
    if ticket_count is None:
        ticket_count = sum(p.total_tickets for p in users)
    revenue = sum(p.total_deal_value for p in users)

    support_orgs = sorted(
        (org for org in organisations.values() if org.total_tickets > 0),
        key=lambda org: -org.total_tickets,
    )

    return PlatformInsights(
        total_users=total_users,
        paying_users=paying_users,
        conversion_rate=_ratio(paying_users, total_users) * 100,
        avg_tickets_per_user=_ratio(ticket_count, total_users),
        avg_revenue_per_user=_ratio(revenue, paying_users),
        churn_risk_users=sum(1 for p in users if p.churn_risk == "high"),
        top_support_orgs=[org.name for org in support_orgs[:TOP_N]],
        feature_usage=feature_usage(users),
    )


def build_timeline(
    tickets: Iterable[RawTicketRecord],
    deals: Iterable[RawDeal],
    events: Iterable[RawUsageEvent],
    start: date,
    end: date,
) -> list[TimelineDay]:
    """Daily activity across all three sources between ``start`` and ``end`` inclusive."""
    days: dict[date, TimelineDay] = {}
    active: dict[date, set[str]] = {}
    day = start
    while day <= end:
        days[day] = TimelineDay(date=day)
        active[day] = set()
        day += timedelta(days=1)

    for ticket in tickets:
        if ticket.created_at is not None:
            created = as_utc(ticket.created_at).date()
            if created in days:
                days[created].new_tickets += 1
                email = normalise_email(ticket.reporter_email)
                if email:
                    active[created].add(email)
        if ticket.resolved_at is not None:
            resolved = as_utc(ticket.resolved_at).date()
            if resolved in days:
                days[resolved].resolved_tickets += 1

    for deal in deals:
        if deal.add_time is not None:
            added = as_utc(deal.add_time).date()
            if added in days:
                days[added].new_deals += 1

    for event in events:
        seen = as_utc(event.timestamp).date()
        if seen in days:
            if not event.is_snapshot:
                days[seen].usage_events += 1
            email = normalise_email(event.user_email)
            if email:
                active[seen].add(email)

    for day, users in active.items():
        days[day].active_users = len(users)
    return list(days.values())


def strategic_segments(
    profiles: dict[str, UnifiedUserProfile],
    now: datetime,
    primary: str,
    secondary: str,
) -> StrategicSegments:
    """Action lists from recency on two surfaces.

    Users never seen on either surface are left out. A surface a user was
    never seen on counts as the lookback ceiling.
    """
    points = []
    for email, profile in profiles.items():
        p_days = days_since(profile.surface_last_seen.get(primary), now)
        s_days = days_since(profile.surface_last_seen.get(secondary), now)
        if p_days is None and s_days is None:
            continue
        p_days = LOOKBACK_CEILING_DAYS if p_days is None else min(p_days, LOOKBACK_CEILING_DAYS)
        s_days = LOOKBACK_CEILING_DAYS if s_days is None else min(s_days, LOOKBACK_CEILING_DAYS)
        points.append((email, organisation_of(profile), p_days, s_days))

    quadrants = Counter()
    for _, _, p, s in points:
        if p <= RECENT_DAYS and s <= RECENT_DAYS:
            quadrants["both_recent"] += 1
        elif s <= RECENT_DAYS:
            quadrants[f"{secondary}_only"] += 1
        elif p <= RECENT_DAYS:
            quadrants[f"{primary}_only"] += 1
        else:
            quadrants["neither_recent"] += 1

    low, high = RE_ENGAGE_RANGE
    adoption: dict[str, list[int]] = {}
    for _, org, _, s in points:
        if org == UNKNOWN_ORGANISATION:
            continue
        counts = adoption.setdefault(org, [0, 0])
        counts[0] += 1
        if s < LOOKBACK_CEILING_DAYS:
            counts[1] += 1

    return StrategicSegments(
        primary_surface=primary,
        secondary_surface=secondary,
        quadrants={
            key: quadrants[key]
            for key in ("both_recent", f"{secondary}_only", f"{primary}_only", "neither_recent")
        },
        churn_risk=[e for e, _, p, s in points if p > CHURN_DAYS and s > CHURN_DAYS],
        conversion_opportunity=[
            e for e, _, p, s in points if p <= ACTIVE_DAYS and s == LOOKBACK_CEILING_DAYS
        ],
        success_stories=[e for e, _, p, s in points if p <= ACTIVE_DAYS and s <= ACTIVE_DAYS],
        re_engagement=[
            e for e, _, p, s in points if low <= s <= high or low <= p <= high
        ],
        expansion_targets=[
            org for org, (total, adopted) in adoption.items()
            if total >= EXPANSION_MIN_USERS and _ratio(adopted, total) < EXPANSION_MAX_ADOPTION
        ],
    )


def inactivity_buckets(
    profiles: dict[str, UnifiedUserProfile], surface: str, now: datetime
) -> list[InactivityBucket]:
    """Users seen on ``surface`` grouped by days since last activity."""
    buckets = [InactivityBucket(label=label, max_days=max_days) for label, max_days in INACTIVITY_BUCKETS]
    for profile in profiles.values():
        days = days_since(profile.surface_last_seen.get(surface), now)
        if days is None:
            continue
        for bucket in buckets:
            if bucket.max_days is None or days <= bucket.max_days:
                bucket.count += 1
                break
    return buckets


def at_risk_users(
    profiles: dict[str, UnifiedUserProfile],
    surface: str,
    now: datetime,
    threshold: int = AT_RISK_DAYS,
) -> list[AtRiskUser]:
    """Users inactive on ``surface`` for at least ``threshold`` days, longest first."""
    rows = []
    for email, profile in profiles.items():
        last_seen = profile.surface_last_seen.get(surface)
        days = days_since(last_seen, now)
        if days is None or days < threshold:
            continue
        rows.append(AtRiskUser(
            email=email,
            organisation=organisation_of(profile),
            customer_type=profile.customer_type or UNKNOWN_CUSTOMER_TYPE,
            last_seen=as_utc(last_seen).date(),
            days_inactive=days,
        ))
    rows.sort(key=lambda row: -row.days_inactive)
    return rows
