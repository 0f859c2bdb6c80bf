"""Engagement analytics pipeline - fetch, fuse, analyse, report."""
import asyncio
from datetime import datetime

from .cache import DateOrganizedCache
from .config import Settings
from .logger import log, setup_logger
from .models import AnalysisResult
from .orchestrator import EngagementAnalyzer, SourceFetcher
from .sources import CsvUsageSource, HttpClient, JiraTicketSource, PipedriveCrmSource

RESULT_KEY = "engagement_analysis"


def _format_value(value) -> str:
    """Format value for markdown output."""
    if isinstance(value, float):
        return f"{value:.1f}"
    if isinstance(value, dict):
        return "; ".join(f"{k}: {_format_value(v)}" for k, v in value.items()) or "N/A"
    if isinstance(value, list):
        return ", ".join(_format_value(i) for i in value) or "N/A"
    return str(value).strip()


def _analysis_to_markdown(result: AnalysisResult) -> str:
    """Convert an analysis result to a markdown digest."""
    insights = result.insights
    lines = [
        "# Cross-Platform Engagement Report",
        f"**Generated:** {result.generated_at:%Y-%m-%d %H:%M %Z}\n",
        "## Overview",
        f"- **Users:** {insights.total_users}",
        f"- **Paying Users:** {insights.paying_users}",
        f"- **Conversion Rate:** {_format_value(insights.conversion_rate)}%",
        f"- **Avg Tickets per User:** {_format_value(insights.avg_tickets_per_user)}",
        f"- **Avg Revenue per Paying User:** {_format_value(insights.avg_revenue_per_user)}",
        f"- **High Churn Risk Users:** {insights.churn_risk_users}",
        f"- **Top Support Organisations:** {_format_value(insights.top_support_orgs)}",
        "",
    ]

    if result.failures:
        lines.append("## Source Failures")
        lines.extend(f"- **{f.source}:** {f.error}" for f in result.failures)
        lines.append("")

    if insights.feature_usage:
        lines.extend([
            "## Feature Usage (% of users)",
            "| Feature | Paying | Non-paying |",
            "|---|---|---|",
            *[f"| {f.feature} | {f.paying} | {f.non_paying} |" for f in insights.feature_usage],
            "",
        ])

    if result.recency_rows:
        lines.append("## Organisation Recency (median days since last activity)")
        for row in result.recency_rows[:20]:
            lines.append(f"- **{row.organisation}** ({row.user_count} users): {_format_value(row.medians)}")
        lines.append("")

    if result.cohorts:
        lines.extend([
            "## Cohorts",
            "| Month | Users | Avg Engagement | Retention |",
            "|---|---|---|---|",
            *[
                f"| {c.cohort_month} | {c.user_count} | {c.avg_engagement_score:.1f} | {c.retention_rate:.0%} |"
                for c in result.cohorts
            ],
            "",
        ])

    if result.matrix is not None:
        a, b = result.matrix.surfaces
        lines.extend([
            "## Cross-Product Adoption",
            f"| | {b} inactive | {b} active |",
            "|---|---|---|",
            f"| {a} inactive | {result.matrix.count(**{a: False, b: False})} | {result.matrix.count(**{a: False, b: True})} |",
            f"| {a} active | {result.matrix.count(**{a: True, b: False})} | {result.matrix.count(**{a: True, b: True})} |",
            "",
        ])

    if result.segments is not None:
        s = result.segments
        lines.extend([
            "## Strategic Actions",
            f"- **Churn Risk:** {len(s.churn_risk)}",
            f"- **Conversion Opportunity:** {len(s.conversion_opportunity)}",
            f"- **Success Stories:** {len(s.success_stories)}",
            f"- **Re-engagement:** {len(s.re_engagement)}",
            f"- **Expansion Targets:** {_format_value(s.expansion_targets)}",
            "",
        ])

    for surface, rows in result.at_risk.items():
        if rows:
            lines.append(f"## At-Risk Users: {surface}")
            lines.extend(
                f"- {u.email} ({u.organisation}, {u.customer_type}): {u.days_inactive} days" for u in rows[:20]
            )
            lines.append("")

    return "\n".join(lines)


def build_fetcher(settings: Settings) -> SourceFetcher:
    """Wire up every configured source; unconfigured ones are left as None."""
    ticket_source = crm_source = usage_source = None

    if settings.jira_configured:
        ticket_source = JiraTicketSource(
            settings.jira_domain,
            settings.jira_email,
            settings.jira_api_token,
            client=HttpClient("jira", settings.max_retries, settings.request_timeout),
        )
    if settings.pipedrive_configured:
        crm_source = PipedriveCrmSource(
            settings.pipedrive_api_key,
            settings.pipedrive_domain,
            client=HttpClient("pipedrive", settings.max_retries, settings.request_timeout),
        )
    if settings.usage_csv_path or settings.snapshot_csv_path:
        usage_source = CsvUsageSource(
            settings.usage_csv_path,
            surface=settings.usage_surface,
            snapshot_path=settings.snapshot_csv_path,
            snapshot_surface=settings.snapshot_surface,
        )

    return SourceFetcher(
        ticket_source,
        crm_source,
        usage_source,
        jql=settings.jira_jql,
        max_results=settings.jira_max_results,
    )


async def run_pipeline(settings: Settings | None = None, now: datetime | None = None) -> AnalysisResult:
    """Run the complete pipeline: fetch → fuse → analyse → save."""
    settings = settings or Settings.from_env()
    setup_logger(settings.log_level)
    print("=== Cross-Platform Engagement Analytics ===\n")

    print("Fetching tickets, CRM and usage data...")
    snapshot = await build_fetcher(settings).fetch_all()
    print(
        f"✓ {len(snapshot.tickets)} tickets, {len(snapshot.crm.persons)} CRM persons, "
        f"{len(snapshot.usage_events)} usage events"
    )
    for failure in snapshot.failures:
        print(f"  Warning: {failure.source} unavailable: {failure.error}")

    print("\nAnalysing engagement...")
    analyzer = EngagementAnalyzer(window=settings.activity_window_months)
    result = analyzer.analyze(snapshot, now or datetime.now().astimezone())
    print(f"✓ {len(result.profiles)} profiles, {len(result.organisations)} organisations\n")

    store = DateOrganizedCache(settings.data_dir / "runs")
    run_date = result.generated_at.date()
    json_file = store.save_dated(RESULT_KEY, run_date, result)
    md_file = store.save_text(RESULT_KEY, run_date, _analysis_to_markdown(result))
    log.info(f"Saved analysis to {json_file}")

    print("=" * 60)
    print(f"Users: {result.insights.total_users}  Paying: {result.insights.paying_users}  "
          f"High churn risk: {result.insights.churn_risk_users}")
    print(f"Full report: {md_file}")
    print("=" * 60)
    return result


if __name__ == "__main__":
    asyncio.run(run_pipeline())
