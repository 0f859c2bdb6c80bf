"""Engagement score and churn-risk tier."""
import pytest

from engagement_analytics.models import UnifiedUserProfile
from engagement_analytics.scoring import classify_churn_risk, derive, score, score_profiles

from conftest import NOW, days_ago


def profile(**overrides) -> UnifiedUserProfile:
    return UnifiedUserProfile(email="u@x.io", **overrides)


class TestScore:
    def test_empty_profile_scores_zero(self):
        assert score(profile()) == 0

    def test_terms_add_up(self):
        p = profile(total_events=100, features=["a", "b", "c"], avg_events_per_day=2.0)
        # 10 + 6 + 10
        assert score(p) == 26

    def test_each_term_capped(self):
        p = profile(total_events=10_000, features=[str(i) for i in range(50)], avg_events_per_day=40.0)
        assert score(p) == 70

    def test_bonuses(self):
        assert score(profile(is_paying=True)) == 20
        assert score(profile(satisfaction=4)) == 10
        assert score(profile(satisfaction=3)) == 0

    def test_maximum_is_100(self):
        p = profile(
            total_events=10_000,
            features=[str(i) for i in range(50)],
            avg_events_per_day=40.0,
            is_paying=True,
            satisfaction=5,
        )
        assert score(p) == 100

    def test_rounds_half_up(self):
        assert score(profile(total_events=25)) == 3
        assert score(profile(total_events=24)) == 2

    @pytest.mark.parametrize("events", [0, 1, 55, 299, 301, 5000])
    def test_always_in_bounds(self, events):
        assert 0 <= score(profile(total_events=events, is_paying=True, satisfaction=5)) <= 100


class TestChurnRisk:
    def test_paying_and_inactive_is_high(self):
        assert classify_churn_risk(profile(is_paying=True, last_active_date=days_ago(31)), NOW) == "high"

    def test_paying_never_active_is_high(self):
        assert classify_churn_risk(profile(is_paying=True), NOW) == "high"

    def test_high_takes_priority_over_satisfaction(self):
        p = profile(is_paying=True, satisfaction=1, last_active_date=days_ago(45))
        assert classify_churn_risk(p, NOW) == "high"

    def test_paying_at_threshold_is_not_high(self):
        p = profile(is_paying=True, last_active_date=days_ago(30))
        assert classify_churn_risk(p, NOW) == "medium"

    def test_inactive_non_paying_is_medium(self):
        assert classify_churn_risk(profile(last_active_date=days_ago(15)), NOW) == "medium"
        assert classify_churn_risk(profile(), NOW) == "medium"

    def test_unhappy_recent_user_is_medium(self):
        assert classify_churn_risk(profile(last_active_date=days_ago(1), satisfaction=2), NOW) == "medium"

    def test_recent_user_is_low(self):
        assert classify_churn_risk(profile(last_active_date=days_ago(14), satisfaction=3), NOW) == "low"


class TestDerive:
    def test_derived_facet_filled_on_a_copy(self):
        original = profile(total_tickets=2, is_paying=True, total_deal_value=300.0, last_active_date=days_ago(2))
        derived = derive(original, NOW)
        assert derived.engagement_score == 20
        assert derived.churn_risk == "low"
        assert derived.support_to_sales_conversion is True
        assert derived.lifetime_value == 300.0
        assert original.engagement_score == 0

    def test_score_profiles_keeps_keys(self):
        profiles = {"a@x.io": UnifiedUserProfile(email="a@x.io"), "b@x.io": UnifiedUserProfile(email="b@x.io")}
        assert list(score_profiles(profiles, NOW)) == ["a@x.io", "b@x.io"]
