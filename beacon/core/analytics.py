"""Analytics query engine: read-only views over usage stats and components.

Every view is recomputed per request from component_usage_stats and the
components table. Nothing here writes.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from beacon.core.constants import (
    DEFAULT_LIST_LIMIT, DEFAULT_OVERVIEW_LIMIT, DEFAULT_POPULAR_SORT,
    SUMMARY_TOP_N, TOP_COMPONENTS_LIMIT,
)
from beacon.core.effects import run_effect
from beacon.core.grouping import group_by_granularity
from beacon.core.insights import calculate_insights
from beacon.core.periods import Period, resolve_period
from beacon.core.scoring import popularity_score, rank_trending, trending_metrics
from beacon.core.utils import (
    NotFound, count_unique_users, percent_change, round2, sum_field,
)

if TYPE_CHECKING:
    from beacon.core.fetcher import StatFetcher
    from beacon.storage.database import Database

logger = logging.getLogger(__name__)

_COMPONENT_COLUMNS = """
    c.id, c.name, c.description, c.category, c.framework, c.usage_count,
    c.rating, c.is_featured, c.preview_url, c.tags, c.complexity_score,
    c.performance_score, c.accessibility_score, c.created_at, c.updated_at,
    c.author_id, p.full_name AS author_full_name, p.avatar_url AS author_avatar_url
"""

_POPULAR_ORDER = {
    "usage_count": "c.usage_count DESC",
    "rating": "c.rating DESC NULLS LAST",
    "recent": "c.updated_at DESC",
}


def _component_from_row(row: dict) -> dict:
    """Fold the joined author columns into a nested 'author' object."""
    component = dict(row)
    full_name = component.pop("author_full_name", None)
    avatar_url = component.pop("author_avatar_url", None)
    component["author"] = (
        {"full_name": full_name, "avatar_url": avatar_url}
        if full_name is not None or avatar_url is not None else None
    )
    return component


def _rows_by_component(rows: list[dict]) -> dict[str, list[dict]]:
    grouped: dict[str, list[dict]] = defaultdict(list)
    for row in rows:
        grouped[str(row["component_id"])].append(row)
    return grouped


class AnalyticsQueryEngine:
    """Read-only query layer for the analytics endpoints."""

    def __init__(self, db: Database, fetcher: StatFetcher):
        self.db = db
        self.fetcher = fetcher

    # ----------------------------------------------------------
    # Components
    # ----------------------------------------------------------

    def _public_components(
        self,
        *,
        category: str | None = None,
        framework: str | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        where = ["c.is_public = true"]
        params: list[Any] = []
        if category:
            where.append("c.category = %s")
            params.append(category)
        if framework:
            where.append("c.framework = %s")
            params.append(framework)

        query = f"""
            SELECT {_COMPONENT_COLUMNS}
            FROM components c
            LEFT JOIN profiles p ON p.id = c.author_id
            WHERE {" AND ".join(where)}
        """
        if order_by:
            query += f" ORDER BY {order_by}"
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)

        return [_component_from_row(r) for r in self.db.execute(query, tuple(params))]

    # ----------------------------------------------------------
    # Popular
    # ----------------------------------------------------------

    def popular(
        self,
        timeframe: str = "30d",
        category: str | None = None,
        framework: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        sort_by: str = DEFAULT_POPULAR_SORT,
        now: datetime | None = None,
    ) -> dict:
        """Public components ranked by sort_by, with recent usage and popularity score.

        The composite popularity score reorders results only for the default
        usage_count sort.
        """
        now = now or datetime.now(timezone.utc)
        period = resolve_period(timeframe, now=now)

        components = self._public_components(
            category=category,
            framework=framework,
            order_by=_POPULAR_ORDER.get(sort_by, _POPULAR_ORDER[DEFAULT_POPULAR_SORT]),
            limit=limit,
        )

        stats = _rows_by_component(self.fetcher.fetch_many(
            [str(c["id"]) for c in components], period.start_date, period.end_date,
        ))

        for component in components:
            recent = stats.get(str(component["id"]), [])
            total_uses = sum_field(recent, "total_uses")
            component["recent_usage"] = {
                "total_uses": total_uses,
                "unique_users": count_unique_users(recent),
                "period_days": period.days,
                "daily_average": total_uses / period.days,
            }
            component["popularity_score"] = popularity_score(component, now)

        if sort_by == DEFAULT_POPULAR_SORT:
            components.sort(key=lambda c: c["popularity_score"], reverse=True)

        top_rated = sorted(
            (c for c in components if c.get("rating")),
            key=lambda c: c["rating"], reverse=True,
        )[:SUMMARY_TOP_N]
        most_used = sorted(
            components, key=lambda c: c.get("usage_count") or 0, reverse=True,
        )[:SUMMARY_TOP_N]

        return {
            "components": components,
            "summary": {
                "total_components": len(components),
                "timeframe": timeframe,
                "filters": {
                    "category": category,
                    "framework": framework,
                    "sort_by": sort_by,
                },
                "categories": self._active_categories(),
                "frameworks": self._framework_counts(),
                "top_rated": [
                    {"id": c["id"], "name": c["name"], "rating": c["rating"]}
                    for c in top_rated
                ],
                "most_used": [
                    {"id": c["id"], "name": c["name"], "usage_count": c.get("usage_count") or 0}
                    for c in most_used
                ],
            },
        }

    def _active_categories(self) -> list[dict]:
        return self.db.execute(
            """
            SELECT name, component_count
            FROM component_categories
            WHERE is_active = true
            ORDER BY component_count DESC
            LIMIT %s
            """,
            (TOP_COMPONENTS_LIMIT,),
        )

    def _framework_counts(self) -> list[dict]:
        return self.db.execute(
            """
            SELECT framework AS name, COUNT(*) AS count
            FROM components
            WHERE is_public = true
            GROUP BY framework
            ORDER BY count DESC
            """
        )

    # ----------------------------------------------------------
    # Trending
    # ----------------------------------------------------------

    def trending(
        self,
        timeframe: str = "7d",
        category: str | None = None,
        framework: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        min_growth: float = 0,
        now: datetime | None = None,
    ) -> dict:
        """Public components ranked by trending score against the previous period."""
        period = resolve_period(timeframe, now=now)
        previous = period.previous()

        components = self._public_components(category=category, framework=framework)
        ids = [str(c["id"]) for c in components]

        current_stats = _rows_by_component(
            self.fetcher.fetch_many(ids, period.start_date, period.end_date)
        )
        # Previous window stops short of the day the current one starts on.
        previous_stats = _rows_by_component(
            self.fetcher.fetch_many(ids, previous.start_date, period.start_date, end_exclusive=True)
        )

        scored = []
        for component in components:
            cid = str(component["id"])
            current = current_stats.get(cid, [])
            before = previous_stats.get(cid, [])
            component["trending_metrics"] = trending_metrics(
                current_usage=sum_field(current, "total_uses"),
                current_users=count_unique_users(current),
                previous_usage=sum_field(before, "total_uses"),
                previous_users=count_unique_users(before),
                lifetime_usage=component.get("usage_count") or 0,
                period_days=period.days,
            )
            scored.append(component)

        ranked = rank_trending(scored, min_growth, limit)
        growth_rates = [c["trending_metrics"]["growth"]["overall_growth"] for c in scored]

        return {
            "components": ranked,
            "summary": {
                "total_components": len(ranked),
                "timeframe": timeframe,
                "filters": {
                    "category": category,
                    "framework": framework,
                    "min_growth": min_growth,
                },
                "metrics": {
                    "average_growth": round2(sum(growth_rates) / len(growth_rates)) if growth_rates else 0,
                    "top_growth_rate": round2(max(growth_rates + [0])),
                    "rising_trends": sum(
                        1 for c in ranked if c["trending_metrics"]["trend_direction"] == "rising"
                    ),
                    "stable_trends": sum(
                        1 for c in ranked if c["trending_metrics"]["trend_direction"] == "stable"
                    ),
                },
                "trending_categories": self._trending_categories(scored),
            },
        }

    @staticmethod
    def _trending_categories(components: list[dict]) -> list[dict]:
        """Per-category average score and growth over all scored components, top 5."""
        buckets: dict[Any, dict] = {}
        for c in components:
            metrics = c["trending_metrics"]
            bucket = buckets.setdefault(c.get("category"), {
                "name": c.get("category"),
                "count": 0,
                "score_sum": 0.0,
                "growth_sum": 0.0,
            })
            bucket["count"] += 1
            bucket["score_sum"] += metrics["trending_score"]
            bucket["growth_sum"] += metrics["growth"]["overall_growth"]

        categories = [
            {
                "name": b["name"],
                "count": b["count"],
                "avg_trending_score": round2(b["score_sum"] / b["count"]),
                "avg_growth": round2(b["growth_sum"] / b["count"]),
            }
            for b in buckets.values()
        ]
        categories.sort(key=lambda b: b["avg_trending_score"], reverse=True)
        return categories[:SUMMARY_TOP_N]

    # ----------------------------------------------------------
    # Usage
    # ----------------------------------------------------------

    def usage(
        self,
        component_id: str | None = None,
        timeframe: str = "30d",
        granularity: str = "daily",
        include_details: bool = True,
        now: datetime | None = None,
    ) -> dict:
        """Usage series for one component, or aggregated across all of them."""
        period = resolve_period(timeframe, now=now)

        if component_id:
            data = self.component_usage(component_id, period, granularity)
        else:
            data = self.aggregate_usage(period, granularity, include_details)

        data.update({
            "timeframe": timeframe,
            "granularity": granularity,
            "period": {
                "start_date": period.start_date.isoformat(),
                "end_date": period.end_date.isoformat(),
                "total_days": period.days,
            },
        })
        return data

    def component_usage(self, component_id: str, period: Period, granularity: str) -> dict:
        component = self.db.execute_one(
            "SELECT id, name, category, framework, created_at FROM components WHERE id = %s",
            (component_id,),
        )
        if not component:
            raise NotFound("Component not found")

        rows = self.fetcher.fetch(component_id, period.start_date, period.end_date)
        comparison = run_effect(
            "comparison", self.previous_comparison,
            component_id, period, sum_field(rows, "total_uses"),
        )

        return {
            "component": component,
            "usage_data": group_by_granularity(rows, granularity),
            "insights": calculate_insights(rows),
            "comparison": comparison.value if comparison.ok else None,
        }

    def previous_comparison(self, component_id: str, period: Period, current_usage: int) -> dict:
        """Total usage in the equal-length window before period, and the change."""
        previous = period.previous()
        rows = self.fetcher.fetch(component_id, previous.start_date, previous.end_date)
        previous_usage = sum_field(rows, "total_uses")

        return {
            "previous_period": {
                "start_date": previous.start_date.isoformat(),
                "end_date": previous.end_date.isoformat(),
                "total_usage": previous_usage,
            },
            "current_period": {
                "start_date": period.start_date.isoformat(),
                "end_date": period.end_date.isoformat(),
                "total_usage": current_usage,
            },
            "change": {
                "absolute": current_usage - previous_usage,
                "percentage": round2(percent_change(current_usage, previous_usage)),
            },
        }

    def aggregate_usage(self, period: Period, granularity: str, include_details: bool) -> dict:
        rows = self.fetcher.fetch_with_components(period.start_date, period.end_date)

        top_components: list[dict] = []
        if include_details:
            top_components = self.db.execute(
                """
                SELECT id, name, category, framework, usage_count, rating, is_featured
                FROM components
                WHERE is_public = true
                ORDER BY usage_count DESC
                LIMIT %s
                """,
                (TOP_COMPONENTS_LIMIT,),
            )

        return {
            "usage_data": group_by_granularity(rows, granularity),
            "top_components": top_components,
            "breakdowns": {
                "categories": _breakdown(rows, "category"),
                "frameworks": _breakdown(rows, "framework"),
            },
        }

    # ----------------------------------------------------------
    # Overview
    # ----------------------------------------------------------

    def overview(
        self,
        timeframe: str = "30d",
        categories: list[str] | None = None,
        frameworks: list[str] | None = None,
        limit: int = DEFAULT_OVERVIEW_LIMIT,
        now: datetime | None = None,
    ) -> dict:
        """Component totals plus trending, popular and usage sections.

        A failing section comes back as None; the totals query is required.
        """
        now = now or datetime.now(timezone.utc)
        period = resolve_period(timeframe, now=now)

        totals = self._totals()
        sections = [
            run_effect("trending", self._overview_trending, period, limit),
            run_effect("popular", self._overview_popular, categories, frameworks, limit),
            run_effect("usage", self._overview_usage, period),
        ]

        result = {"overview": totals}
        for section in sections:
            result[section.name] = section.value if section.ok else None
        result["generated_at"] = now.isoformat()
        return result

    def _totals(self) -> dict:
        row = self.db.execute_one(
            """
            SELECT
                COUNT(*) AS total_components,
                COUNT(*) FILTER (WHERE is_public) AS public_components,
                COUNT(*) FILTER (WHERE is_featured) AS featured_components,
                COALESCE(SUM(usage_count), 0) AS total_usage,
                AVG(rating) AS average_rating
            FROM components
            """
        )
        row = row or {}
        avg_rating = row.get("average_rating")
        return {
            "total_components": row.get("total_components", 0),
            "public_components": row.get("public_components", 0),
            "featured_components": row.get("featured_components", 0),
            "total_usage": row.get("total_usage", 0),
            "average_rating": round2(float(avg_rating)) if avg_rating is not None else None,
        }

    def _overview_trending(self, period: Period, limit: int) -> list[dict]:
        """Public components by their best daily activity score in the period."""
        rows = self.db.execute(
            """
            SELECT * FROM (
                SELECT DISTINCT ON (c.id)
                    c.id, c.name, c.category, c.framework, c.usage_count,
                    c.rating, c.is_featured, c.preview_url,
                    s.trending_score, s.total_uses, s.unique_users
                FROM components c
                JOIN component_usage_stats s ON s.component_id = c.id
                WHERE c.is_public = true AND s.date >= %s
                ORDER BY c.id, s.trending_score DESC
            ) best
            ORDER BY trending_score DESC
            LIMIT %s
            """,
            (period.start_date, limit),
        )
        return [
            {
                "id": r["id"],
                "name": r["name"],
                "category": r["category"],
                "framework": r["framework"],
                "usage_count": r["usage_count"],
                "rating": r["rating"],
                "is_featured": r["is_featured"],
                "preview_url": r["preview_url"],
                "trending_score": r["trending_score"] or 0,
                "recent_usage": r["total_uses"] or 0,
                "unique_users": r["unique_users"] or 0,
            }
            for r in rows
        ]

    def _overview_popular(
        self, categories: list[str] | None, frameworks: list[str] | None, limit: int,
    ) -> list[dict]:
        where = ["is_public = true"]
        params: list[Any] = []
        if categories:
            where.append("category = ANY(%s)")
            params.append(categories)
        if frameworks:
            where.append("framework = ANY(%s)")
            params.append(frameworks)
        params.append(limit)

        return self.db.execute(
            f"""
            SELECT id, name, category, framework, usage_count, rating,
                   is_featured, preview_url, description, tags
            FROM components
            WHERE {" AND ".join(where)}
            ORDER BY usage_count DESC
            LIMIT %s
            """,
            tuple(params),
        )

    def _overview_usage(self, period: Period) -> dict:
        rows = self.fetcher.fetch_with_components(period.start_date, period.end_date)
        daily = group_by_granularity(rows, "daily")

        per_component: dict[str, dict] = {}
        ratings: dict[str, list[float]] = defaultdict(list)
        for row in rows:
            cid = row["component_id"]
            info = row.get("component") or {}
            entry = per_component.setdefault(cid, {
                "id": cid,
                "name": info.get("name", ""),
                "category": info.get("category", ""),
                "framework": info.get("framework", ""),
                "total_uses": 0,
                "unique_users": 0,
            })
            entry["total_uses"] += row.get("total_uses") or 0
            entry["unique_users"] += row.get("unique_users") or 0
            if row.get("avg_rating"):
                ratings[cid].append(row["avg_rating"])

        for cid, entry in per_component.items():
            values = ratings.get(cid)
            entry["avg_rating"] = sum(values) / len(values) if values else 0

        total_usage = sum_field(rows, "total_uses")
        return {
            "daily_trends": daily,
            "component_breakdown": list(per_component.values()),
            "summary": {
                "period_days": period.days,
                "total_usage": total_usage,
                "total_unique_users": sum_field(rows, "unique_users"),
                "average_daily_usage": round2(total_usage / period.days),
            },
        }


def _breakdown(rows: list[dict], attribute: str) -> list[dict]:
    """Usage totals and distinct component counts per component attribute."""
    buckets: dict[Any, dict] = {}
    for row in rows:
        component = row.get("component")
        if not component:
            continue
        key = component.get(attribute)
        bucket = buckets.setdefault(key, {"name": key, "total_usage": 0, "components": set()})
        bucket["total_usage"] += row.get("total_uses") or 0
        bucket["components"].add(component["id"])

    return [
        {"name": b["name"], "total_usage": b["total_usage"], "unique_components": len(b["components"])}
        for b in buckets.values()
    ]
