"""Monthly activity series, trend classification and onboarding cohorts.

Series are built one of two ways:

* exactly, by grouping a user's raw usage events by calendar month, or
* by simulation, for any surface where only the user's last-seen date is
  known (no raw events, or snapshot markers only). The simulation is a
  decaying heuristic and only approximates history; records that use it are
  marked ``simulated``.
"""
import math
from collections import Counter
from datetime import date, datetime
from typing import Iterable

from .fusion import SUPPORT_SURFACE
from .models import (
    ActivityPoint,
    CohortData,
    RawUsageEvent,
    TrendIndicator,
    TrendLabel,
    UnifiedUserProfile,
    UserEngagementData,
)
from .organisations import known_surfaces, organisation_of
from .recency import LOOKBACK_CEILING_DAYS, as_utc, days_since

DEFAULT_WINDOW_MONTHS = 6
SIMULATION_DECAY = 0.15
MAX_MONTHLY_ACTIVITY = 50

STABLE_THRESHOLD = 5
MODERATE_THRESHOLD = 20
STRONG_THRESHOLD = 50

RETENTION_SCORE_THRESHOLD = 20


def month_start(value: date | datetime) -> date:
    return date(value.year, value.month, 1)


def add_months(month: date, months: int) -> date:
    year, index = divmod(month.month - 1 + months, 12)
    return date(month.year + year, index + 1, 1)


def month_key(value: date | datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def window_months(now: datetime, window: int | date) -> list[date]:
    """Month starts covered by ``window``, oldest first.

    An int is a count of months ending with the current one; a date is a
    fixed epoch whose month starts the window.
    """
    current = month_start(as_utc(now))
    if isinstance(window, date):
        start = month_start(window)
        count = (current.year - start.year) * 12 + current.month - start.month + 1
    else:
        count = window
    return [add_months(current, -i) for i in range(count - 1, -1, -1)]


def build_activity_series(
    events: Iterable[RawUsageEvent],
    now: datetime,
    surfaces: list[str] | None = None,
    window: int | date = DEFAULT_WINDOW_MONTHS,
) -> list[ActivityPoint]:
    """Exact series: each event counts once in its calendar month."""
    events = list(events)
    if surfaces is None:
        surfaces = sorted({e.surface for e in events})

    counts = Counter((e.surface, month_key(as_utc(e.timestamp))) for e in events)

    series = []
    for month in window_months(now, window):
        key = month_key(month)
        usage = {surface: counts[(surface, key)] for surface in surfaces}
        series.append(ActivityPoint(date=month, usage=usage, total=sum(usage.values())))
    return series


def simulate_activity_series(
    days_by_surface: dict[str, int | None],
    now: datetime,
    months: int = DEFAULT_WINDOW_MONTHS,
) -> list[ActivityPoint]:
    """Approximate series from recency alone, weighted towards recent months."""
    current = month_start(as_utc(now))
    series = []
    for i in range(months - 1, -1, -1):
        weight = 1 - i * SIMULATION_DECAY
        usage = {}
        for surface, days in days_by_surface.items():
            if days is None or days > LOOKBACK_CEILING_DAYS:
                usage[surface] = 0
            else:
                usage[surface] = max(0, math.floor((LOOKBACK_CEILING_DAYS - days) * weight / 10))
        series.append(ActivityPoint(date=add_months(current, -i), usage=usage, total=sum(usage.values())))
    return series


def trend(series: list[ActivityPoint], surface: str | None = None) -> TrendIndicator:
    """Compare the mean of the second half of the series with the first half.

    ``surface`` None means the per-point total.
    """
    if len(series) < 2:
        return TrendIndicator()

    if surface is None:
        values = [p.total for p in series]
    else:
        values = [p.usage.get(surface, 0) for p in series]

    half = len(values) // 2
    first_avg = sum(values[:half]) / half
    second_avg = sum(values[half:]) / (len(values) - half)
    pct_change = (second_avg - first_avg) / first_avg * 100 if first_avg > 0 else 0.0

    change = abs(pct_change)
    if change <= STABLE_THRESHOLD:
        return TrendIndicator(pct_change=pct_change)

    if change > STRONG_THRESHOLD:
        magnitude = "strong"
    elif change > MODERATE_THRESHOLD:
        magnitude = "moderate"
    else:
        magnitude = "weak"
    return TrendIndicator(
        direction="up" if pct_change > 0 else "down",
        magnitude=magnitude,
        pct_change=pct_change,
    )


def trend_label(indicator: TrendIndicator) -> TrendLabel:
    if indicator.direction == "up":
        return "increasing"
    if indicator.direction == "down":
        return "decreasing"
    return "stable"


def activity_score(series: list[ActivityPoint]) -> float:
    """Share of a nominal 50 events per month actually used, capped at 100."""
    if not series:
        return 0.0
    total = sum(p.total for p in series)
    return min(100.0, total / (len(series) * MAX_MONTHLY_ACTIVITY) * 100)


def onboarding_month(series: list[ActivityPoint], now: datetime) -> str:
    """Month of the first non-zero point; users never active onboard now."""
    for point in series:
        if point.total > 0:
            return month_key(point.date)
    return month_key(as_utc(now))


def usage_surfaces(profiles: Iterable[UnifiedUserProfile]) -> list[str]:
    return [s for s in known_surfaces(profiles) if s != SUPPORT_SURFACE]


def build_engagement_data(
    profiles: dict[str, UnifiedUserProfile],
    now: datetime,
    events_by_email: dict[str, list[RawUsageEvent]] | None = None,
    surfaces: list[str] | None = None,
    window: int | date = DEFAULT_WINDOW_MONTHS,
) -> list[UserEngagementData]:
    """One engagement record per profile.

    Surfaces with raw events get exact monthly counts. Surfaces known only
    through recency (no events, or snapshot markers only) fall back to the
    simulated series; such records are marked ``simulated``.
    """
    events_by_email = events_by_email or {}
    if surfaces is None:
        surfaces = usage_surfaces(profiles.values())
    months = len(window_months(now, window))

    data = []
    for email, profile in profiles.items():
        real_events = [e for e in events_by_email.get(email, []) if not e.is_snapshot]
        exact_surfaces = {e.surface for e in real_events}
        recency_only = {
            s: days_since(profile.surface_last_seen.get(s), now)
            for s in surfaces if s not in exact_surfaces
        }

        if real_events:
            series = build_activity_series(real_events, now, surfaces, window)
            estimated = simulate_activity_series(recency_only, now, months)
            for point, guess in zip(series, estimated):
                point.usage.update(guess.usage)
                point.total = sum(point.usage.values())
            simulated = any(days is not None for days in recency_only.values())
        else:
            series = simulate_activity_series(recency_only, now, months)
            simulated = True

        data.append(UserEngagementData(
            email=email,
            organisation=organisation_of(profile),
            onboarding_month=onboarding_month(series, now),
            activity_points=series,
            surface_trends={s: trend_label(trend(series, s)) for s in surfaces},
            overall_trend=trend_label(trend(series)),
            engagement_score=profile.engagement_score,
            activity_score=activity_score(series),
            simulated=simulated,
        ))
    return data


def cohort(engagement_data: list[UserEngagementData]) -> list[CohortData]:
    """Group users by onboarding month, oldest cohort first."""
    groups: dict[str, list[UserEngagementData]] = {}
    for user in engagement_data:
        groups.setdefault(user.onboarding_month, []).append(user)

    cohorts = []
    for month, members in sorted(groups.items()):
        retained = sum(1 for m in members if m.engagement_score > RETENTION_SCORE_THRESHOLD)
        cohorts.append(CohortData(
            cohort_month=month,
            user_count=len(members),
            avg_engagement_score=sum(m.engagement_score for m in members) / len(members),
            retention_rate=retained / len(members),
            members=members,
        ))
    return cohorts


def filter_engagement_data(
    data: list[UserEngagementData],
    organisations: Iterable[str] | None = None,
    emails: Iterable[str] | None = None,
    min_engagement_score: int | None = None,
    trends: Iterable[TrendLabel] | None = None,
) -> list[UserEngagementData]:
    organisations = set(organisations) if organisations is not None else None
    emails = set(emails) if emails is not None else None
    trends = set(trends) if trends is not None else None

    kept = []
    for user in data:
        if organisations is not None and user.organisation not in organisations:
            continue
        if emails is not None and user.email not in emails:
            continue
        if min_engagement_score is not None and user.engagement_score < min_engagement_score:
            continue
        if trends is not None and user.overall_trend not in trends:
            continue
        kept.append(user)
    return kept
