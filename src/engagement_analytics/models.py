"""Data models for the engagement analytics layers."""
from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ChurnRisk = Literal["low", "medium", "high"]
Direction = Literal["up", "down", "stable"]
Magnitude = Literal["weak", "moderate", "strong"]
TrendLabel = Literal["increasing", "decreasing", "stable"]

# Event name for rows synthesised from a last-seen snapshot export
SNAPSHOT_EVENT = "active_snapshot"


class RawRecord(BaseModel):
    """Base for records fetched from an upstream source."""
    model_config = ConfigDict(frozen=True)


class RawTicketRecord(RawRecord):
    """One helpdesk ticket."""
    key: str = ""
    reporter_email: str | None = None
    reporter_name: str | None = None
    organisation: str | None = None
    job_title: str | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    request_type: str | None = None
    satisfaction: int | None = Field(default=None, ge=1, le=5)


class RawCrmPerson(RawRecord):
    """CRM contact; emails keep the upstream order, primary first."""
    id: int
    name: str | None = None
    emails: list[str] = Field(default_factory=list)
    org_id: int | None = None
    org_name: str | None = None
    job_title: str | None = None
    customer_type: str | None = None


class RawCrmOrganisation(RawRecord):
    id: int
    name: str


class RawDeal(RawRecord):
    """CRM deal linked to a person by id or email."""
    id: int
    person_id: int | None = None
    person_email: str | None = None
    title: str | None = None
    value: float = 0.0
    status: str = "open"
    stage_name: str | None = None
    add_time: datetime | None = None
    license_count: str | None = None


class CrmSnapshot(RawRecord):
    """Everything pulled from the CRM in one run."""
    persons: list[RawCrmPerson] = Field(default_factory=list)
    organisations: list[RawCrmOrganisation] = Field(default_factory=list)
    deals: list[RawDeal] = Field(default_factory=list)


class RawUsageEvent(RawRecord):
    """One row of the product usage feed."""
    user_email: str
    event_name: str
    timestamp: datetime
    user_name: str | None = None
    surface: str = "product"
    properties: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_snapshot(self) -> bool:
        """True for last-seen markers, which carry recency but no usage."""
        return self.event_name == SNAPSHOT_EVENT


class UnifiedUserProfile(BaseModel):
    """One person across helpdesk, CRM and product usage, keyed by email."""
    email: str
    name: str | None = None
    organisation: str | None = None
    job_title: str | None = None
    customer_type: str | None = None

    # Support facet
    total_tickets: int = 0
    resolved_tickets: int = 0
    first_contact_date: datetime | None = None
    last_contact_date: datetime | None = None
    satisfaction: int | None = None
    request_types: list[str] = Field(default_factory=list)

    # Commercial facet
    crm_person_id: int | None = None
    deals: list[RawDeal] = Field(default_factory=list)
    total_deal_value: float = 0.0
    stage: str | None = None
    is_paying: bool = False
    license_count: int | None = None

    # Usage facet
    total_events: int = 0
    features: list[str] = Field(default_factory=list)
    first_seen_date: datetime | None = None
    last_active_date: datetime | None = None
    avg_events_per_day: float = 0.0
    days_active: int = 0
    surface_last_seen: dict[str, datetime] = Field(default_factory=dict)

    # Derived facet
    engagement_score: int = 0
    churn_risk: ChurnRisk = "low"
    support_to_sales_conversion: bool = False
    lifetime_value: float = 0.0


class FiveNumberSummary(BaseModel):
    min: int
    q1: int
    median: int
    q3: int
    max: int

    def as_list(self) -> list[int]:
        return [self.min, self.q1, self.median, self.q3, self.max]


class SurfaceRecency(BaseModel):
    """Days-since-last-activity distribution for one surface in one organisation."""
    sample_size: int
    values: list[int]
    summary: FiveNumberSummary


class OrganisationStats(BaseModel):
    """Roll-up of every profile assigned to one organisation."""
    name: str
    user_count: int = 0
    total_tickets: int = 0
    total_deal_value: float = 0.0
    avg_engagement: float = 0.0
    top_features: list[str] = Field(default_factory=list)
    recency: dict[str, SurfaceRecency] = Field(default_factory=dict)


class RecencyRow(BaseModel):
    """Per-organisation medians used by the recency box plot."""
    organisation: str
    user_count: int
    medians: dict[str, int]


class ActivityPoint(BaseModel):
    """Usage for one calendar month, keyed by the month's first day."""
    date: date
    usage: dict[str, int] = Field(default_factory=dict)
    total: int = 0


class TrendIndicator(BaseModel):
    direction: Direction = "stable"
    magnitude: Magnitude = "weak"
    pct_change: float = 0.0


class UserEngagementData(BaseModel):
    """Monthly activity series and trend classification for one user."""
    email: str
    organisation: str
    onboarding_month: str
    activity_points: list[ActivityPoint]
    surface_trends: dict[str, TrendLabel]
    overall_trend: TrendLabel
    engagement_score: int
    activity_score: float
    simulated: bool = False


class CohortData(BaseModel):
    """Users sharing an onboarding month."""
    cohort_month: str
    user_count: int
    avg_engagement_score: float
    retention_rate: float
    members: list[UserEngagementData]


class MatrixCell(BaseModel):
    flags: dict[str, bool]
    count: int = 0


class CrossProductMatrix(BaseModel):
    """Contingency counts over binary per-surface activity predicates."""
    surfaces: list[str]
    cells: list[MatrixCell]
    total: int = 0

    def count(self, **flags: bool) -> int:
        for cell in self.cells:
            if cell.flags == flags:
                return cell.count
        return 0


class FeatureUsage(BaseModel):
    """Share of paying vs non-paying users who used a feature, in percent."""
    feature: str
    paying: int
    non_paying: int


class PlatformInsights(BaseModel):
    total_users: int
    paying_users: int
    conversion_rate: float
    avg_tickets_per_user: float
    avg_revenue_per_user: float
    churn_risk_users: int
    top_support_orgs: list[str]
    feature_usage: list[FeatureUsage]


class TimelineDay(BaseModel):
    date: date
    new_tickets: int = 0
    resolved_tickets: int = 0
    active_users: int = 0
    new_deals: int = 0
    usage_events: int = 0


class StrategicSegments(BaseModel):
    """Strategic action lists derived from two-surface recency."""
    primary_surface: str
    secondary_surface: str
    quadrants: dict[str, int]
    churn_risk: list[str]
    conversion_opportunity: list[str]
    success_stories: list[str]
    re_engagement: list[str]
    expansion_targets: list[str]


class InactivityBucket(BaseModel):
    label: str
    max_days: int | None
    count: int = 0


class AtRiskUser(BaseModel):
    email: str
    organisation: str
    customer_type: str
    last_seen: date
    days_inactive: int


class SourceFailure(BaseModel):
    """A source whose fetch failed; its contribution is empty."""
    source: str
    error: str


class SourceSnapshot(BaseModel):
    """Immutable result of one concurrent fetch."""
    model_config = ConfigDict(frozen=True)

    tickets: list[RawTicketRecord] = Field(default_factory=list)
    crm: CrmSnapshot = Field(default_factory=CrmSnapshot)
    usage_events: list[RawUsageEvent] = Field(default_factory=list)
    failures: list[SourceFailure] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """Everything one analysis run produces for the presentation layer."""
    generated_at: datetime
    profiles: dict[str, UnifiedUserProfile]
    organisations: dict[str, OrganisationStats]
    recency_rows: list[RecencyRow]
    engagement: list[UserEngagementData]
    cohorts: list[CohortData]
    matrix: CrossProductMatrix | None = None
    insights: PlatformInsights
    timeline: list[TimelineDay]
    segments: StrategicSegments | None = None
    inactivity: dict[str, list[InactivityBucket]] = Field(default_factory=dict)
    at_risk: dict[str, list[AtRiskUser]] = Field(default_factory=dict)
    failures: list[SourceFailure] = Field(default_factory=list)
