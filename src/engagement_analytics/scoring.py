"""Composite engagement score and churn-risk tier."""
import math
from datetime import datetime

from .models import ChurnRisk, UnifiedUserProfile
from .recency import NEVER_ACTIVE_DAYS, days_since

MAX_SCORE = 100

# (cap, weight) per usage term
VOLUME_CAP, VOLUME_DIVISOR = 30, 10
BREADTH_CAP, BREADTH_WEIGHT = 20, 2
INTENSITY_CAP, INTENSITY_WEIGHT = 20, 5
PAYING_BONUS = 20
SATISFACTION_BONUS = 10
SATISFIED_RATING = 4

HIGH_RISK_INACTIVE_DAYS = 30
MEDIUM_RISK_INACTIVE_DAYS = 14
UNHAPPY_RATING = 3


def score(profile: UnifiedUserProfile) -> int:
    """Engagement score in [0, 100]; each term is capped before summing."""
    total = 0.0
    total += min(VOLUME_CAP, profile.total_events / VOLUME_DIVISOR)
    total += min(BREADTH_CAP, len(profile.features) * BREADTH_WEIGHT)
    total += min(INTENSITY_CAP, profile.avg_events_per_day * INTENSITY_WEIGHT)
    if profile.is_paying:
        total += PAYING_BONUS
    if profile.satisfaction is not None and profile.satisfaction >= SATISFIED_RATING:
        total += SATISFACTION_BONUS

    # half-up, not banker's rounding
    return max(0, min(MAX_SCORE, math.floor(total + 0.5)))


def classify_churn_risk(profile: UnifiedUserProfile, now: datetime) -> ChurnRisk:
    """Priority chain: high, then medium, then low."""
    inactive = days_since(profile.last_active_date, now)
    if inactive is None:
        inactive = NEVER_ACTIVE_DAYS

    if profile.is_paying and inactive > HIGH_RISK_INACTIVE_DAYS:
        return "high"
    if inactive > MEDIUM_RISK_INACTIVE_DAYS or (
        profile.satisfaction is not None and profile.satisfaction < UNHAPPY_RATING
    ):
        return "medium"
    return "low"


def derive(profile: UnifiedUserProfile, now: datetime) -> UnifiedUserProfile:
    """Copy of ``profile`` with the derived facet filled in."""
    return profile.model_copy(deep=True, update={
        "engagement_score": score(profile),
        "churn_risk": classify_churn_risk(profile, now),
        "support_to_sales_conversion": profile.total_tickets > 0 and profile.is_paying,
        "lifetime_value": profile.total_deal_value,
    })


def score_profiles(
    profiles: dict[str, UnifiedUserProfile], now: datetime
) -> dict[str, UnifiedUserProfile]:
    return {email: derive(profile, now) for email, profile in profiles.items()}
