"""Usage tracking: record user actions against components."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from beacon.core.constants import (
    DETAILED_EVENT_ACTIONS, TIMEFRAME_DAYS, TRACK_TIMEFRAMES,
    USAGE_COUNT_ACTIONS, USE_ACTIONS, VALID_ACTIONS,
)
from beacon.core.effects import EffectResult, TrackingEvent, run_effect
from beacon.core.periods import resolve_period
from beacon.core.scoring import activity_score
from beacon.core.utils import (
    AccessDenied, NotFound, ValidationError, count_unique_users, sum_field,
)

if TYPE_CHECKING:
    from beacon.core.effects import EventWriter
    from beacon.core.fetcher import StatFetcher
    from beacon.storage.database import Database

logger = logging.getLogger(__name__)

# Timeframes accepted by the per-component summary.
_TRACK_SUMMARY_DAYS = {t: TIMEFRAME_DAYS[t] for t in TRACK_TIMEFRAMES}


def can_access(component: dict, user_id: str | None) -> bool:
    """Public components are visible to everyone, private ones to their author."""
    if component.get("is_public"):
        return True
    author = component.get("author_id")
    if user_id is None or author is None:
        return False
    return str(author).lower() == str(user_id).lower()


class UsageTracking:
    """Validates and records tracked actions; serves per-component summaries."""

    def __init__(
        self,
        db: Database,
        fetcher: StatFetcher,
        *,
        event_writer: EventWriter | None = None,
        activity_window_days: int = 7,
    ):
        self.db = db
        self.fetcher = fetcher
        self.event_writer = event_writer
        self.activity_window_days = activity_window_days

    def get_component(self, component_id: str) -> dict | None:
        return self.db.execute_one(
            "SELECT id, name, is_public, author_id FROM components WHERE id = %s",
            (component_id,),
        )

    def track(
        self,
        component_id: str,
        action: str,
        user_id: str | None = None,
        metadata: dict | None = None,
    ) -> dict:
        """Record one action.

        The daily counter upsert is the primary write and propagates errors.
        Event logging, usage_count increment and the activity score refresh
        are best effort; their outcomes are reported under 'side_effects'.
        """
        if action not in VALID_ACTIONS:
            raise ValidationError(f"invalid action: {action}. Must be one of: {', '.join(VALID_ACTIONS)}")

        component = self.get_component(component_id)
        if not component:
            raise NotFound("Component not found")
        if not can_access(component, user_id):
            raise AccessDenied("Component access denied")

        now = datetime.now(timezone.utc)
        today = now.date()

        try:
            self._upsert_daily_stats(component_id, action, user_id, today)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        effects: list[EffectResult] = []
        if action in DETAILED_EVENT_ACTIONS and self.event_writer is not None:
            event = TrackingEvent(
                component_id=component_id,
                action=action,
                user_id=user_id,
                metadata={**(metadata or {}), "timestamp": now.isoformat()},
                created_at=now,
            )
            effects.append(run_effect("event_log", self._record_event, event))
        effects.append(run_effect("activity_score", self.refresh_activity_score, component_id, today))
        if action in USAGE_COUNT_ACTIONS:
            effects.append(run_effect("usage_count", self.increment_usage, component_id))

        logger.debug("Tracked %s on %s (user=%s)", action, component_id, user_id)
        return {
            "tracked": True,
            "component_id": component_id,
            "action": action,
            "timestamp": now.isoformat(),
            "tracking_id": f"track_{component_id}_{action}_{int(time.time() * 1000)}",
            "side_effects": {e.name: e.to_dict() for e in effects},
        }

    def _upsert_daily_stats(self, component_id: str, action: str, user_id: str | None, day) -> None:
        uses = 1 if action in USE_ACTIONS else 0
        imports = 1 if action == "import" else 0
        self.db.execute(
            """
            INSERT INTO component_usage_stats
                (component_id, date, total_uses, unique_users,
                 successful_imports, failed_imports, trending_score, metadata)
            VALUES (%s, %s, %s, %s, %s, 0, 0, '{}'::jsonb)
            ON CONFLICT (component_id, date) DO UPDATE SET
                total_uses = component_usage_stats.total_uses + EXCLUDED.total_uses,
                successful_imports = component_usage_stats.successful_imports + EXCLUDED.successful_imports,
                updated_at = NOW()
            """,
            (component_id, day, uses, 1 if user_id else 0, imports),
        )

    def _record_event(self, event: TrackingEvent) -> bool:
        if not self.event_writer.record(event):
            raise RuntimeError("event queue full")
        return True

    def increment_usage(self, component_id: str) -> None:
        try:
            self.db.execute(
                "UPDATE components SET usage_count = usage_count + 1 WHERE id = %s",
                (component_id,),
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def refresh_activity_score(self, component_id: str, day) -> float | None:
        """Recompute the recent-activity score and store it on the day's row."""
        start = day - timedelta(days=self.activity_window_days)
        rows = self.fetcher.fetch(component_id, start, day, descending=True)
        if not rows:
            return None

        score = activity_score(
            sum_field(rows, "total_uses"),
            sum_field(rows, "unique_users"),
            sum_field(rows, "successful_imports"),
        )
        try:
            self.db.execute(
                """
                UPDATE component_usage_stats SET trending_score = %s
                WHERE component_id = %s AND date = %s
                """,
                (score, component_id, day),
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return score

    def summary(self, component_id: str, timeframe: str = "30d") -> dict:
        """Totals for one component over a timeframe."""
        period = resolve_period(timeframe, _TRACK_SUMMARY_DAYS)
        days = period.days

        rows = self.fetcher.fetch(component_id, period.start_date, period.end_date, descending=True)
        total_uses = sum_field(rows, "total_uses")

        return {
            "component_id": component_id,
            "timeframe": timeframe,
            "period": period.to_dict(),
            "total_views": total_uses,
            "total_unique_users": count_unique_users(rows),
            "total_imports": sum_field(rows, "successful_imports"),
            "daily_average": total_uses / days if rows else 0,
            "trending_score": rows[0]["trending_score"] if rows else 0,
        }
