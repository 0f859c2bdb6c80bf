"""Platform insights, timeline and strategic segments."""
from datetime import date

from engagement_analytics.insights import (
    at_risk_users,
    build_timeline,
    feature_label,
    feature_usage,
    inactivity_buckets,
    platform_insights,
    strategic_segments,
)
from engagement_analytics.models import (
    SNAPSHOT_EVENT,
    OrganisationStats,
    RawDeal,
    RawTicketRecord,
    RawUsageEvent,
    UnifiedUserProfile,
)

from conftest import NOW, days_ago, event


def user(email, organisation=None, **kwargs) -> UnifiedUserProfile:
    return UnifiedUserProfile(email=email, organisation=organisation, **kwargs)


# ---------------------------------------------------------------------------
# Platform insights
# ---------------------------------------------------------------------------

class TestPlatformInsights:
    def test_ratios(self):
        profiles = {
            "a@x.io": user("a@x.io", is_paying=True, total_deal_value=900.0, total_tickets=3, churn_risk="high"),
            "b@x.io": user("b@x.io", total_tickets=1),
            "c@x.io": user("c@x.io"),
            "d@x.io": user("d@x.io", is_paying=True, total_deal_value=100.0),
        }
        insights = platform_insights(profiles, {})
        assert insights.total_users == 4
        assert insights.paying_users == 2
        assert insights.conversion_rate == 50.0
        assert insights.avg_tickets_per_user == 1.0
        assert insights.avg_revenue_per_user == 500.0
        assert insights.churn_risk_users == 1

    def test_no_users_no_division_error(self):
        insights = platform_insights({}, {})
        assert insights.conversion_rate == 0.0
        assert insights.avg_tickets_per_user == 0.0
        assert insights.avg_revenue_per_user == 0.0

    def test_top_support_orgs(self):
        orgs = {
            name: OrganisationStats(name=name, total_tickets=tickets)
            for name, tickets in [("A", 1), ("B", 9), ("C", 0), ("D", 4)]
        }
        assert platform_insights({}, orgs).top_support_orgs == ["B", "D", "A"]


class TestFeatureUsage:
    def test_percent_of_each_group(self):
        profiles = [
            user("a@x.io", is_paying=True, features=["search", "export_report"]),
            user("b@x.io", is_paying=True, features=["search"]),
            user("c@x.io", features=["export_report"]),
        ]
        usage = {f.feature: f for f in feature_usage(profiles)}
        assert usage["Search"].paying == 100
        assert usage["Search"].non_paying == 0
        assert usage["Export Report"].paying == 50
        assert usage["Export Report"].non_paying == 100

    def test_label(self):
        assert feature_label("open_site_panel") == "Open Site Panel"


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------

def test_build_timeline():
    end = NOW.date()
    start = date(2024, 6, 13)
    tickets = [
        RawTicketRecord(reporter_email="a@x.io", created_at=days_ago(1), resolved_at=days_ago(0)),
        RawTicketRecord(reporter_email="b@x.io", created_at=days_ago(20)),
    ]
    deals = [RawDeal(id=1, add_time=days_ago(2))]
    events = [event("A@x.io", "open", days_ago(1)), event("c@x.io", "open", days_ago(1))]

    timeline = build_timeline(tickets, deals, events, start=start, end=end)
    assert [d.date for d in timeline] == [date(2024, 6, 13), date(2024, 6, 14), date(2024, 6, 15)]

    by_day = {d.date: d for d in timeline}
    assert by_day[date(2024, 6, 13)].new_deals == 1
    assert by_day[date(2024, 6, 14)].new_tickets == 1
    assert by_day[date(2024, 6, 14)].usage_events == 2
    assert by_day[date(2024, 6, 14)].active_users == 2
    assert by_day[date(2024, 6, 15)].resolved_tickets == 1
    assert sum(d.new_tickets for d in timeline) == 1


# ---------------------------------------------------------------------------
# Strategic segments
# ---------------------------------------------------------------------------

class TestStrategicSegments:
    def profiles(self):
        def seen(landiq=None, giraffe=None):
            out = {}
            if landiq is not None:
                out["landiq"] = days_ago(landiq)
            if giraffe is not None:
                out["giraffe"] = days_ago(giraffe)
            return out

        profiles = {
            "both@x.io": user("both@x.io", "Acme", surface_last_seen=seen(5, 10)),
            "landiq@x.io": user("landiq@x.io", "Acme", surface_last_seen=seen(landiq=3)),
            "stale@x.io": user("stale@x.io", "Acme", surface_last_seen=seen(200, 150)),
            "mid@x.io": user("mid@x.io", "Acme", surface_last_seen=seen(45, 100)),
            "giraffe@x.io": user("giraffe@x.io", surface_last_seen=seen(giraffe=20)),
            "ghost@x.io": user("ghost@x.io", "Acme"),
        }
        for i in range(5):
            email = f"g{i}@globex.io"
            profiles[email] = user(email, "Globex", surface_last_seen=seen(landiq=100))
        return profiles

    def test_quadrants(self):
        segments = strategic_segments(self.profiles(), NOW, "landiq", "giraffe")
        assert segments.quadrants == {
            "both_recent": 1,
            "giraffe_only": 1,
            "landiq_only": 2,
            "neither_recent": 6,
        }

    def test_action_lists(self):
        segments = strategic_segments(self.profiles(), NOW, "landiq", "giraffe")
        assert segments.success_stories == ["both@x.io"]
        assert segments.conversion_opportunity == ["landiq@x.io"]
        assert "stale@x.io" in segments.churn_risk
        assert "mid@x.io" in segments.re_engagement
        assert "ghost@x.io" not in segments.churn_risk

    def test_expansion_targets(self):
        segments = strategic_segments(self.profiles(), NOW, "landiq", "giraffe")
        assert segments.expansion_targets == ["Globex"]


class TestInactivity:
    def profiles(self):
        return {
            f"{d}@x.io": user(f"{d}@x.io", "Acme", surface_last_seen={"giraffe": days_ago(d)})
            for d in (1, 29, 30, 95, 180, 400)
        } | {"never@x.io": user("never@x.io")}

    def test_buckets(self):
        counts = [b.count for b in inactivity_buckets(self.profiles(), "giraffe", NOW)]
        assert counts == [2, 1, 1, 2]

    def test_at_risk_users_longest_first(self):
        rows = at_risk_users(self.profiles(), "giraffe", NOW)
        assert [r.email for r in rows] == ["400@x.io", "180@x.io"]
        assert rows[0].customer_type == "Unknown Customer Type"
        assert rows[1].days_inactive == 180


def test_timeline_counts_snapshot_markers_as_activity_not_events():
    marker = RawUsageEvent(user_email="g@x.io", event_name=SNAPSHOT_EVENT, timestamp=days_ago(1), surface="giraffe")
    (day,) = build_timeline([], [], [marker], start=date(2024, 6, 14), end=date(2024, 6, 14))
    assert day.usage_events == 0
    assert day.active_users == 1
