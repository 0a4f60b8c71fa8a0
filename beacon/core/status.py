"""Service health and runtime statistics."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from beacon import __version__
from beacon.config import config_to_flat

if TYPE_CHECKING:
    from beacon.core.services import Services

logger = logging.getLogger(__name__)


def get_status(svc: Services) -> dict:
    """Aggregate health: database reachability, tracking queue, quotas, config."""
    db = svc.db

    database = {"connected": db.connected}
    try:
        row = db.execute_one(
            """
            SELECT
                (SELECT COUNT(*) FROM components) AS components,
                (SELECT COUNT(*) FROM component_usage_stats) AS usage_stat_rows,
                (SELECT MAX(date) FROM component_usage_stats) AS latest_stat_date,
                (SELECT COUNT(*) FROM component_usage_events) AS tracking_events
            """
        )
        if row:
            database.update({
                "components": row["components"],
                "usage_stat_rows": row["usage_stat_rows"],
                "latest_stat_date": row["latest_stat_date"].isoformat() if row["latest_stat_date"] else None,
                "tracking_events": row["tracking_events"],
            })
    except Exception as exc:
        # tables may not exist yet (pre-migration)
        logger.debug("Status counts unavailable", exc_info=True)
        database["error"] = str(exc)
        db.rollback()

    writer = svc.event_writer
    analytics = {
        "tracking_enabled": svc.config.analytics.tracking_enabled,
        "max_stat_rows": svc.config.analytics.max_stat_rows,
        "event_queue_pending": writer.pending if writer else 0,
        "events_dropped": writer.dropped if writer else 0,
    }

    return {
        "version": __version__,
        "status": "healthy" if "error" not in database else "degraded",
        "database": database,
        "analytics": analytics,
        "rate_limits": {
            "export": svc.export_limiter.describe(),
            "bulk_export": svc.bulk_export_limiter.describe(),
        },
        "config": config_to_flat(svc.config),
    }
