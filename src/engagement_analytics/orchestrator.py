"""Source fetching and analysis orchestration."""
import asyncio
from datetime import date, datetime, timedelta
from typing import Iterable, Protocol

from .fusion import SUPPORT_SURFACE, fuse, group_events_by_email
from .insights import (
    AT_RISK_DAYS,
    at_risk_users,
    build_timeline,
    inactivity_buckets,
    platform_insights,
    strategic_segments,
)
from .logger import log
from .matrix import active_on_surface, activity_matrix
from .models import (
    AnalysisResult,
    CrmSnapshot,
    RawTicketRecord,
    RawUsageEvent,
    SourceFailure,
    SourceSnapshot,
)
from .organisations import (
    DEFAULT_EXCLUDED_CUSTOMER_TYPES,
    aggregate,
    filter_by_customer_type,
    known_surfaces,
    recency_leaderboard,
)
from .recency import as_utc
from .scoring import score_profiles
from .trends import DEFAULT_WINDOW_MONTHS, build_engagement_data, cohort, usage_surfaces


class TicketSource(Protocol):
    async def fetch_tickets(self, jql: str, max_results: int = 200) -> list[RawTicketRecord]: ...


class CrmSource(Protocol):
    async def fetch_snapshot(self) -> CrmSnapshot: ...


class UsageSource(Protocol):
    async def fetch_events(self) -> list[RawUsageEvent]: ...


class SourceFetcher:
    """Fetch all three sources concurrently.

    A source that fails (or is not configured) contributes an empty
    collection and is reported in ``SourceSnapshot.failures``.
    """

    def __init__(
        self,
        ticket_source: TicketSource | None = None,
        crm_source: CrmSource | None = None,
        usage_source: UsageSource | None = None,
        jql: str = "",
        max_results: int = 200,
    ):
        self.ticket_source = ticket_source
        self.crm_source = crm_source
        self.usage_source = usage_source
        self.jql = jql
        self.max_results = max_results

    async def _tickets(self) -> list[RawTicketRecord]:
        if self.ticket_source is None:
            raise LookupError("ticket source not configured")
        return await self.ticket_source.fetch_tickets(self.jql, max_results=self.max_results)

    async def _crm(self) -> CrmSnapshot:
        if self.crm_source is None:
            raise LookupError("CRM source not configured")
        return await self.crm_source.fetch_snapshot()

    async def _usage(self) -> list[RawUsageEvent]:
        if self.usage_source is None:
            raise LookupError("usage source not configured")
        return await self.usage_source.fetch_events()

    async def fetch_all(self) -> SourceSnapshot:
        results = await asyncio.gather(
            self._tickets(), self._crm(), self._usage(), return_exceptions=True
        )

        failures = []
        defaults = ([], CrmSnapshot(), [])
        values = []
        for name, result, default in zip(("tickets", "crm", "usage"), results, defaults):
            if isinstance(result, Exception):
                log.warning(f"Source {name} failed: {result}")
                failures.append(SourceFailure(source=name, error=str(result)))
                values.append(default)
            elif isinstance(result, BaseException):
                raise result
            else:
                values.append(result)

        tickets, crm, events = values
        log.info(
            f"Fetched {len(tickets)} tickets, {len(crm.persons)} CRM persons, "
            f"{len(crm.deals)} deals, {len(events)} usage events"
        )
        return SourceSnapshot(tickets=tickets, crm=crm, usage_events=events, failures=failures)


class EngagementAnalyzer:
    """Reduce one source snapshot into every aggregate the dashboard needs.

    Each call allocates its own accumulators; nothing is kept between runs.
    Recency views (leaderboard, inactivity buckets, at-risk lists) leave out
    ``excluded_customer_types``; every other aggregate covers all profiles.
    """

    def __init__(
        self,
        window: int | date = DEFAULT_WINDOW_MONTHS,
        comparison_surfaces: tuple[str, str] | None = None,
        matrix_active_days: int | None = 30,
        timeline_days: int = 30,
        excluded_customer_types: Iterable[str] = DEFAULT_EXCLUDED_CUSTOMER_TYPES,
        at_risk_days: int = AT_RISK_DAYS,
    ):
        self.window = window
        self.comparison_surfaces = comparison_surfaces
        self.matrix_active_days = matrix_active_days
        self.timeline_days = timeline_days
        self.excluded_customer_types = frozenset(excluded_customer_types)
        self.at_risk_days = at_risk_days

    def _comparison(self, surfaces: list[str]) -> tuple[str, str] | None:
        if self.comparison_surfaces is not None:
            return self.comparison_surfaces
        if len(surfaces) >= 2:
            return surfaces[0], surfaces[1]
        if surfaces:
            return surfaces[0], SUPPORT_SURFACE
        return None

    def analyze(self, snapshot: SourceSnapshot, now: datetime) -> AnalysisResult:
        now = as_utc(now)

        profiles = score_profiles(
            fuse(snapshot.tickets, snapshot.crm, snapshot.usage_events), now
        )
        organisations = aggregate(profiles, now=now)
        surfaces = usage_surfaces(profiles.values())

        visible = filter_by_customer_type(profiles, excluded=self.excluded_customer_types)
        recency_rows = recency_leaderboard(
            aggregate(visible, now=now, surfaces=known_surfaces(profiles.values()))
        )
        inactivity = {surface: inactivity_buckets(visible, surface, now) for surface in surfaces}
        at_risk = {surface: at_risk_users(visible, surface, now, self.at_risk_days) for surface in surfaces}

        engagement = build_engagement_data(
            profiles,
            now,
            events_by_email=group_events_by_email(snapshot.usage_events),
            surfaces=surfaces,
            window=self.window,
        )

        matrix = segments = None
        comparison = self._comparison(surfaces)
        if comparison is not None:
            primary, secondary = comparison
            matrix = activity_matrix(
                {
                    primary: active_on_surface(profiles, primary, now, self.matrix_active_days),
                    secondary: active_on_surface(profiles, secondary, now, self.matrix_active_days),
                },
                profiles.keys(),
            )
            segments = strategic_segments(profiles, now, primary, secondary)

        end = now.date()
        timeline = build_timeline(
            snapshot.tickets,
            snapshot.crm.deals,
            snapshot.usage_events,
            start=end - timedelta(days=self.timeline_days - 1),
            end=end,
        )

        log.info(f"Analysed {len(profiles)} profiles across {len(organisations)} organisations")
        return AnalysisResult(
            generated_at=now,
            profiles=profiles,
            organisations=organisations,
            recency_rows=recency_rows,
            engagement=engagement,
            cohorts=cohort(engagement),
            matrix=matrix,
            insights=platform_insights(profiles, organisations, ticket_count=len(snapshot.tickets)),
            timeline=timeline,
            segments=segments,
            inactivity=inactivity,
            at_risk=at_risk,
            failures=list(snapshot.failures),
        )


async def run_analysis(
    fetcher: SourceFetcher, analyzer: EngagementAnalyzer, now: datetime | None = None
) -> AnalysisResult:
    """Fetch, then analyse; ``now`` defaults to the time the fetch finished."""
    snapshot = await fetcher.fetch_all()
    return analyzer.analyze(snapshot, now or datetime.now().astimezone())
