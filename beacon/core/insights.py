"""Trend, growth and consistency insights over a daily usage series."""

from __future__ import annotations

import math

from beacon.core.constants import TREND_THRESHOLD_PCT
from beacon.core.utils import isoformat_or_none, percent_change, round2, sum_field

NO_DATA_INSIGHTS = {
    "trend": "no_data",
    "growth_rate": 0,
    "peak_usage_date": None,
    "average_daily_usage": 0,
    "consistency_score": 0,
}


def classify_trend(growth_rate: float) -> str:
    if growth_rate > TREND_THRESHOLD_PCT:
        return "growing"
    if growth_rate < -TREND_THRESHOLD_PCT:
        return "declining"
    return "stable"


def growth_rate(rows: list[dict]) -> float:
    """Second half vs first half of the series, split at floor(n/2)."""
    mid = len(rows) // 2
    first = sum_field(rows[:mid], "total_uses")
    second = sum_field(rows[mid:], "total_uses")
    return percent_change(second, first)


def consistency_score(values: list[float]) -> float:
    """100 minus the coefficient of variation (as a percentage), floored at 0."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    cv = math.sqrt(variance) / mean if mean > 0 else 0.0
    return max(0.0, 100 - cv * 100)


def calculate_insights(rows: list[dict]) -> dict:
    """Insights for one component's rows, ordered by date ascending."""
    if not rows:
        return dict(NO_DATA_INSIGHTS)

    usage = [r.get("total_uses") or 0 for r in rows]
    total = sum(usage)
    rate = growth_rate(rows)

    peak = rows[0]
    for row in rows[1:]:
        if (row.get("total_uses") or 0) > (peak.get("total_uses") or 0):
            peak = row

    return {
        "trend": classify_trend(rate),
        "growth_rate": round2(rate),
        "peak_usage_date": isoformat_or_none(peak.get("date")),
        "peak_usage_count": peak.get("total_uses") or 0,
        "average_daily_usage": round2(total / len(rows)),
        "consistency_score": round2(consistency_score(usage)),
        "total_usage_period": total,
    }
