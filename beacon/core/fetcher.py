"""Read-side access to component_usage_stats rows."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from beacon.storage.database import Database

logger = logging.getLogger(__name__)

_STAT_COLUMNS = """
    s.component_id, s.date, s.total_uses, s.unique_users,
    s.successful_imports, s.failed_imports, s.avg_rating, s.trending_score
"""


@dataclass
class UsageStat:
    """One component's counters for one day."""
    component_id: str
    date: date
    total_uses: int = 0
    unique_users: int = 0
    successful_imports: int = 0
    failed_imports: int = 0
    avg_rating: float | None = None
    trending_score: float = 0.0
    component: dict | None = field(default=None, repr=False)

    @classmethod
    def from_row(cls, row: dict) -> UsageStat:
        component = None
        if row.get("component_name") is not None:
            component = {
                "id": str(row["component_id"]),
                "name": row["component_name"],
                "category": row.get("component_category"),
                "framework": row.get("component_framework"),
                "is_featured": row.get("component_is_featured", False),
            }
        return cls(
            component_id=str(row["component_id"]),
            date=row["date"],
            total_uses=row.get("total_uses") or 0,
            unique_users=row.get("unique_users") or 0,
            successful_imports=row.get("successful_imports") or 0,
            failed_imports=row.get("failed_imports") or 0,
            avg_rating=row.get("avg_rating"),
            trending_score=row.get("trending_score") or 0.0,
            component=component,
        )

    def to_dict(self) -> dict:
        d = {
            "component_id": self.component_id,
            "date": self.date,
            "total_uses": self.total_uses,
            "unique_users": self.unique_users,
            "successful_imports": self.successful_imports,
            "failed_imports": self.failed_imports,
            "avg_rating": self.avg_rating,
            "trending_score": self.trending_score,
        }
        if self.component is not None:
            d["component"] = self.component
        return d


class StatFetcher:
    """Fetches usage rows within a date range, capped at max_rows.

    Store errors propagate to the caller.
    """

    def __init__(self, db: Database, *, max_rows: int = 10_000):
        self.db = db
        self.max_rows = max_rows

    def fetch(
        self,
        component_id: str | None,
        start_date: date,
        end_date: date,
        *,
        descending: bool = False,
    ) -> list[dict]:
        """Rows with start_date <= date <= end_date for one component, or all if None."""
        where = ["s.date >= %s", "s.date <= %s"]
        params: list = [start_date, end_date]
        if component_id is not None:
            where.append("s.component_id = %s")
            params.append(component_id)

        order = "DESC" if descending else "ASC"
        return self._run(
            f"""
            SELECT {_STAT_COLUMNS}
            FROM component_usage_stats s
            WHERE {" AND ".join(where)}
            ORDER BY s.date {order}
            LIMIT %s
            """,
            params,
        )

    def fetch_many(
        self,
        component_ids: list[str],
        start_date: date,
        end_date: date,
        *,
        end_exclusive: bool = False,
    ) -> list[dict]:
        """Rows for a set of components. end_exclusive drops end_date itself."""
        if not component_ids:
            return []
        upper = "<" if end_exclusive else "<="
        return self._run(
            f"""
            SELECT {_STAT_COLUMNS}
            FROM component_usage_stats s
            WHERE s.component_id = ANY(%s::uuid[])
              AND s.date >= %s AND s.date {upper} %s
            ORDER BY s.date ASC
            LIMIT %s
            """,
            [list(component_ids), start_date, end_date],
        )

    def fetch_with_components(self, start_date: date, end_date: date) -> list[dict]:
        """All rows in range with the owning component's descriptive columns."""
        return self._run(
            f"""
            SELECT {_STAT_COLUMNS},
                   c.name AS component_name,
                   c.category AS component_category,
                   c.framework AS component_framework,
                   c.is_featured AS component_is_featured
            FROM component_usage_stats s
            LEFT JOIN components c ON c.id = s.component_id
            WHERE s.date >= %s AND s.date <= %s
            ORDER BY s.date ASC
            LIMIT %s
            """,
            [start_date, end_date],
        )

    def _run(self, query: str, params: list) -> list[dict]:
        rows = self.db.execute(query, tuple(params + [self.max_rows]))
        if len(rows) >= self.max_rows:
            logger.warning(
                "Stat fetch hit the %d row cap; results are truncated", self.max_rows,
            )
        return [UsageStat.from_row(r).to_dict() for r in rows]
