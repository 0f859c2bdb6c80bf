"""Organisation roll-ups and per-surface recency quartiles."""
import math
from collections import Counter
from datetime import datetime
from typing import Iterable

from .models import (
    FiveNumberSummary,
    OrganisationStats,
    RecencyRow,
    SurfaceRecency,
    UnifiedUserProfile,
)
from .recency import LOOKBACK_CEILING_DAYS, days_since

UNKNOWN_ORGANISATION = "Unknown"
UNKNOWN_CUSTOMER_TYPE = "Unknown Customer Type"
TOP_FEATURES = 5

# Internal and non-customer contacts hidden from recency views by default
DEFAULT_EXCLUDED_CUSTOMER_TYPES = frozenset({
    "Access Revoked",
    "Admin",
    "Contact Register",
    "Giraffe/WSP",
    "Land iQ Project Team",
    "Potential User",
})


def quartile(sorted_values: list[int], p: float) -> int:
    """Lower nearest-rank quartile: element at floor(p * (n - 1))."""
    return sorted_values[math.floor(p * (len(sorted_values) - 1))]


def five_number_summary(values: Iterable[int]) -> FiveNumberSummary:
    ordered = sorted(values)
    if not ordered:
        raise ValueError("five_number_summary needs at least one value")
    return FiveNumberSummary(
        min=ordered[0],
        q1=quartile(ordered, 0.25),
        median=quartile(ordered, 0.5),
        q3=quartile(ordered, 0.75),
        max=ordered[-1],
    )


def surface_recency(values: list[int]) -> SurfaceRecency:
    """Recency distribution for one surface.

    With no collected values every statistic is the lookback ceiling; the
    median is never reported above it.
    """
    if not values:
        ceiling = LOOKBACK_CEILING_DAYS
        summary = FiveNumberSummary(min=ceiling, q1=ceiling, median=ceiling, q3=ceiling, max=ceiling)
        return SurfaceRecency(sample_size=0, values=[], summary=summary)

    summary = five_number_summary(values)
    summary.median = min(summary.median, LOOKBACK_CEILING_DAYS)
    return SurfaceRecency(sample_size=len(values), values=list(values), summary=summary)


def organisation_of(profile: UnifiedUserProfile) -> str:
    return profile.organisation or UNKNOWN_ORGANISATION


def top_features(members: list[UnifiedUserProfile], n: int = TOP_FEATURES) -> list[str]:
    """Features used by the most members; ties keep first-seen order."""
    counts = Counter()
    for profile in members:
        counts.update(profile.features)
    # sorted() is stable and Counter keeps insertion order
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return [feature for feature, _ in ranked[:n]]


def known_surfaces(profiles: Iterable[UnifiedUserProfile]) -> list[str]:
    surfaces = set()
    for profile in profiles:
        surfaces.update(profile.surface_last_seen)
    return sorted(surfaces)


def aggregate(
    profiles: dict[str, UnifiedUserProfile],
    now: datetime | None = None,
    surfaces: list[str] | None = None,
) -> dict[str, OrganisationStats]:
    """Roll profiles up by organisation.

    Recency quartiles are added per surface when ``now`` is given; users with
    no activity on a surface are left out of that surface's values.
    """
    buckets: dict[str, list[UnifiedUserProfile]] = {}
    for profile in profiles.values():
        buckets.setdefault(organisation_of(profile), []).append(profile)

    if now is not None and surfaces is None:
        surfaces = known_surfaces(profiles.values())

    stats = {}
    for name, members in buckets.items():
        org = OrganisationStats(
            name=name,
            user_count=len(members),
            total_tickets=sum(p.total_tickets for p in members),
            total_deal_value=sum(p.total_deal_value for p in members),
            avg_engagement=sum(p.engagement_score for p in members) / len(members),
            top_features=top_features(members),
        )
        if now is not None:
            for surface in surfaces:
                values = [
                    days_since(p.surface_last_seen[surface], now)
                    for p in members if surface in p.surface_last_seen
                ]
                org.recency[surface] = surface_recency(values)
        stats[name] = org
    return stats


def recency_leaderboard(
    stats: dict[str, OrganisationStats], include_unknown: bool = False
) -> list[RecencyRow]:
    """Organisations ordered by their stalest surface median, stalest first."""
    rows = []
    for org in stats.values():
        if org.name == UNKNOWN_ORGANISATION and not include_unknown:
            continue
        medians = {surface: r.summary.median for surface, r in org.recency.items()}
        rows.append(RecencyRow(organisation=org.name, user_count=org.user_count, medians=medians))
    rows.sort(key=lambda row: max(row.medians.values(), default=0), reverse=True)
    return rows


def filter_by_customer_type(
    profiles: dict[str, UnifiedUserProfile],
    customer_type: str | None = None,
    excluded: Iterable[str] = DEFAULT_EXCLUDED_CUSTOMER_TYPES,
) -> dict[str, UnifiedUserProfile]:
    """Keep profiles of ``customer_type`` (all types when None), minus excluded types."""
    excluded = set(excluded)
    kept = {}
    for email, profile in profiles.items():
        kind = profile.customer_type or UNKNOWN_CUSTOMER_TYPE
        if customer_type is not None and kind != customer_type:
            continue
        if kind in excluded:
            continue
        kept[email] = profile
    return kept
