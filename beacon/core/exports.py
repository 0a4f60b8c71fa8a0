"""Usage exports: raw component_usage_stats rows as JSON or CSV.

Exports are per-user quota'd through injected rate limiters and honour
component visibility (public, or owned by the caller).
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from beacon.core.constants import RATE_LIMIT_RETRY_AFTER, VALID_EXPORT_FORMATS
from beacon.core.periods import resolve_period
from beacon.core.tracking import can_access
from beacon.core.utils import (
    AccessDenied, AuthenticationRequired, NotFound, RateLimitExceeded,
    ValidationError, isoformat_or_none,
)

if TYPE_CHECKING:
    from beacon.core.fetcher import StatFetcher
    from beacon.core.ratelimit import RateLimiter
    from beacon.storage.database import Database

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "component_id", "component_name", "date", "total_uses", "unique_users",
    "successful_imports", "failed_imports", "avg_rating", "trending_score",
]


@dataclass
class ExportResult:
    """Rendered export. payload is a dict for json, text for csv."""
    format: str
    payload: dict | str
    filename: str

    @property
    def media_type(self) -> str:
        return "text/csv" if self.format == "csv" else "application/json"


def render_csv(rows: list[dict]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({
            **row,
            "date": isoformat_or_none(row.get("date")),
            "avg_rating": "" if row.get("avg_rating") is None else row["avg_rating"],
        })
    return buf.getvalue()


def _quota_key(user_id: str) -> str:
    return f"user:{user_id}"


class ExportService:
    """Single and bulk usage exports with per-user quotas."""

    def __init__(
        self,
        db: Database,
        fetcher: StatFetcher,
        *,
        limiter: RateLimiter,
        bulk_limiter: RateLimiter,
    ):
        self.db = db
        self.fetcher = fetcher
        self.limiter = limiter
        self.bulk_limiter = bulk_limiter

    def _admit(self, limiter: RateLimiter, user_id: str | None, what: str) -> str:
        if not user_id:
            raise AuthenticationRequired(f"Authentication required for {what}")
        if not limiter.allow(_quota_key(user_id)):
            logger.info("%s quota exhausted for user %s", what.capitalize(), user_id)
            raise RateLimitExceeded(
                f"{what.capitalize()} rate limit exceeded. Please try again later.",
                retry_after=RATE_LIMIT_RETRY_AFTER,
            )
        return user_id

    @staticmethod
    def _check_format(fmt: str) -> None:
        if fmt not in VALID_EXPORT_FORMATS:
            raise ValidationError(
                f"invalid format: {fmt}. Must be one of: {', '.join(VALID_EXPORT_FORMATS)}"
            )

    def export_component(
        self,
        component_id: str,
        user_id: str | None,
        timeframe: str = "30d",
        fmt: str = "json",
    ) -> ExportResult:
        """Export one component's usage rows. Counts against the single-export quota."""
        user_id = self._admit(self.limiter, user_id, "exports")
        self._check_format(fmt)

        component = self.db.execute_one(
            "SELECT id, name, is_public, author_id FROM components WHERE id = %s",
            (component_id,),
        )
        if not component:
            raise NotFound("Component not found")
        if not can_access(component, user_id):
            raise AccessDenied("Access denied to component")

        period = resolve_period(timeframe)
        rows = self.fetcher.fetch(component_id, period.start_date, period.end_date)
        for row in rows:
            row["component_name"] = component["name"]

        if fmt == "csv":
            return ExportResult("csv", render_csv(rows), f"usage-{component_id}.csv")

        return ExportResult(
            "json",
            {
                "component": {"id": str(component["id"]), "name": component["name"]},
                "timeframe": timeframe,
                "period": period.to_dict(),
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "row_count": len(rows),
                "rows": rows,
            },
            f"usage-{component_id}.json",
        )

    def export_bulk(
        self,
        component_ids: list[str],
        user_id: str | None,
        timeframe: str = "30d",
        fmt: str = "json",
    ) -> ExportResult:
        """Export usage rows for every visible component in component_ids.

        Components the caller cannot see are reported as missing. Raises
        NotFound when none are visible.
        """
        user_id = self._admit(self.bulk_limiter, user_id, "bulk exports")
        self._check_format(fmt)

        visible = self.db.execute(
            """
            SELECT id, name FROM components
            WHERE id = ANY(%s::uuid[])
              AND (is_public = true OR author_id = %s)
            ORDER BY name
            """,
            (list(component_ids), user_id),
        )
        if not visible:
            raise NotFound("No components found for export")

        names = {str(c["id"]): c["name"] for c in visible}
        period = resolve_period(timeframe)
        rows = self.fetcher.fetch_many(list(names), period.start_date, period.end_date)
        for row in rows:
            row["component_name"] = names.get(row["component_id"])

        if fmt == "csv":
            return ExportResult("csv", render_csv(rows), "usage-bulk.csv")

        per_component: dict[str, list[dict]] = {cid: [] for cid in names}
        for row in rows:
            per_component.setdefault(row["component_id"], []).append(row)

        return ExportResult(
            "json",
            {
                "components": [
                    {"id": cid, "name": names[cid], "rows": per_component[cid]}
                    for cid in names
                ],
                "missing": [cid for cid in component_ids if str(cid) not in names],
                "timeframe": timeframe,
                "period": period.to_dict(),
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "row_count": len(rows),
            },
            "usage-bulk.json",
        )
