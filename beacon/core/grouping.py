"""Bucket daily usage rows by granularity."""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable

from beacon.core.constants import Granularity
from beacon.core.utils import as_date, round2, unique_user_keys


def bucket_key(row_date, granularity: str) -> str:
    """Bucket key for a row date.

    weekly  -> ISO date of the Sunday on or before the date
    monthly -> YYYY-MM
    anything else (daily, hourly, unknown) -> YYYY-MM-DD
    """
    d = as_date(row_date)
    if granularity == Granularity.WEEKLY.value:
        # date.weekday(): Monday=0 .. Sunday=6
        week_start = d - timedelta(days=(d.weekday() + 1) % 7)
        return week_start.isoformat()
    if granularity == Granularity.MONTHLY.value:
        return f"{d.year:04d}-{d.month:02d}"
    return d.isoformat()


def group_by_granularity(rows: Iterable[dict], granularity: str) -> list[dict]:
    """Fold rows into per-bucket aggregates, sorted ascending by bucket key."""
    buckets: dict[str, list[dict]] = {}
    for row in rows:
        buckets.setdefault(bucket_key(row["date"], granularity), []).append(row)

    series = []
    for key in sorted(buckets):
        members = buckets[key]
        successful = sum(r.get("successful_imports") or 0 for r in members)
        failed = sum(r.get("failed_imports") or 0 for r in members)
        ratings = [r["avg_rating"] for r in members if r.get("avg_rating")]
        attempts = successful + failed

        series.append({
            "period": key,
            "total_uses": sum(r.get("total_uses") or 0 for r in members),
            "unique_users": len(unique_user_keys(members)),
            "successful_imports": successful,
            "failed_imports": failed,
            "avg_rating": sum(ratings) / len(ratings) if ratings else None,
            "rating_count": len(ratings),
            "component_count": len(members),
            "success_rate": round2(successful / attempts * 100) if attempts else None,
        })

    return series
