"""Ranking scores: trending, popularity, and the daily activity score."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from beacon.core.constants import (
    ACTIVITY_IMPORT_CAP, ACTIVITY_IMPORT_WEIGHT,
    ACTIVITY_USAGE_CAP, ACTIVITY_USAGE_WEIGHT,
    ACTIVITY_USER_CAP, ACTIVITY_USER_WEIGHT,
    POPULARITY_FEATURED_BONUS, POPULARITY_RATING_SCALE,
    POPULARITY_RECENCY_DECAY_DAYS, POPULARITY_WEIGHT_QUALITY,
    POPULARITY_WEIGHT_RATING, POPULARITY_WEIGHT_RECENCY, POPULARITY_WEIGHT_USAGE,
    TRENDING_RISING_ABOVE, TRENDING_STABLE_ABOVE,
    TRENDING_WEIGHT_GROWTH, TRENDING_WEIGHT_MOMENTUM, TRENDING_WEIGHT_VELOCITY,
)
from beacon.core.utils import percent_change, round2


# ============================================================
# Trending
# ============================================================

@dataclass(frozen=True)
class TrendingScore:
    usage_growth: float
    user_growth: float
    usage_velocity: float
    user_velocity: float
    growth_score: float
    velocity_score: float
    momentum_score: float
    score: float

    @property
    def overall_growth(self) -> float:
        return (self.usage_growth + self.user_growth) / 2

    @property
    def direction(self) -> str:
        if self.score > TRENDING_RISING_ABOVE:
            return "rising"
        if self.score > TRENDING_STABLE_ABOVE:
            return "stable"
        return "declining"


def trending_score(
    current_usage: int,
    current_users: int,
    previous_usage: int,
    previous_users: int,
    lifetime_usage: int,
    period_days: int,
) -> TrendingScore:
    """Weighted blend of growth, velocity (geometric mean) and momentum."""
    days = max(1, period_days)
    usage_growth = percent_change(current_usage, previous_usage)
    user_growth = percent_change(current_users, previous_users)
    usage_velocity = current_usage / days
    user_velocity = current_users / days

    growth = max(0.0, (usage_growth + user_growth) / 2)
    velocity = math.sqrt(usage_velocity * user_velocity)
    momentum = current_usage / max(1, lifetime_usage or 0) * 100

    score = (
        growth * TRENDING_WEIGHT_GROWTH
        + velocity * TRENDING_WEIGHT_VELOCITY
        + momentum * TRENDING_WEIGHT_MOMENTUM
    )
    return TrendingScore(
        usage_growth=usage_growth,
        user_growth=user_growth,
        usage_velocity=usage_velocity,
        user_velocity=user_velocity,
        growth_score=growth,
        velocity_score=velocity,
        momentum_score=momentum,
        score=score,
    )


def trending_metrics(
    current_usage: int,
    current_users: int,
    previous_usage: int,
    previous_users: int,
    lifetime_usage: int,
    period_days: int,
) -> dict:
    """JSON shape of a component's trending_metrics block."""
    ts = trending_score(
        current_usage, current_users, previous_usage, previous_users,
        lifetime_usage, period_days,
    )
    days = max(1, period_days)
    return {
        "current_period": {
            "usage": current_usage,
            "unique_users": current_users,
            "days": period_days,
            "daily_average": round(ts.usage_velocity),
        },
        "previous_period": {
            "usage": previous_usage,
            "unique_users": previous_users,
            "days": period_days,
            "daily_average": round(previous_usage / days),
        },
        "growth": {
            "usage_growth": round2(ts.usage_growth),
            "user_growth": round2(ts.user_growth),
            "overall_growth": round2(ts.overall_growth),
        },
        "trending_score": round2(ts.score),
        "trend_direction": ts.direction,
    }


def rank_trending(items: list[dict], min_growth: float, limit: int) -> list[dict]:
    """Filter by overall growth, sort by score descending, truncate."""
    kept = [
        c for c in items
        if c["trending_metrics"]["growth"]["overall_growth"] >= min_growth
    ]
    kept.sort(key=lambda c: c["trending_metrics"]["trending_score"], reverse=True)
    return kept[:limit]


# ============================================================
# Popularity
# ============================================================

def _days_since(value: Any, now: datetime) -> float:
    if value is None:
        return 0.0
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (now - value).total_seconds() / 86400


def popularity_breakdown(component: dict, now: datetime | None = None) -> dict:
    """Individual popularity terms for a component row."""
    now = now or datetime.now(timezone.utc)
    days_since_update = _days_since(component.get("updated_at"), now)
    quality = (component.get("performance_score") or 0) + (component.get("accessibility_score") or 0)

    return {
        "usage_score": (component.get("usage_count") or 0) * POPULARITY_WEIGHT_USAGE,
        "rating_score": (component.get("rating") or 0) * POPULARITY_RATING_SCALE * POPULARITY_WEIGHT_RATING,
        "recency_score": max(0.0, 100 - days_since_update / POPULARITY_RECENCY_DECAY_DAYS) * POPULARITY_WEIGHT_RECENCY,
        "featured_bonus": POPULARITY_FEATURED_BONUS if component.get("is_featured") else 0,
        "quality_bonus": quality / 20 * POPULARITY_WEIGHT_QUALITY,
    }


def popularity_score(component: dict, now: datetime | None = None) -> int:
    return round(sum(popularity_breakdown(component, now).values()))


# ============================================================
# Daily activity score
# ============================================================

def activity_score(total_uses: int, unique_users: int, successful_imports: int) -> float:
    """0-100 score over a recent window; each term saturates at its cap."""
    usage = min(ACTIVITY_USAGE_CAP, total_uses * ACTIVITY_USAGE_WEIGHT)
    users = min(ACTIVITY_USER_CAP, unique_users * ACTIVITY_USER_WEIGHT)
    imports = min(ACTIVITY_IMPORT_CAP, successful_imports * ACTIVITY_IMPORT_WEIGHT)
    return usage + users + imports
