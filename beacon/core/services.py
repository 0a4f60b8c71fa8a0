"""Service container and factory. Centralizes component initialization."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from beacon.config import Config, load_config
from beacon.core.analytics import AnalyticsQueryEngine
from beacon.core.effects import EventWriter
from beacon.core.exports import ExportService
from beacon.core.fetcher import StatFetcher
from beacon.core.ratelimit import RateLimiter, build_rate_limiter
from beacon.core.tracking import UsageTracking
from beacon.storage.database import Database

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Holds all initialized Beacon components."""

    config: Config
    db: Database
    fetcher: StatFetcher
    event_writer: EventWriter | None
    tracking: UsageTracking
    analytics_engine: AnalyticsQueryEngine
    export_limiter: RateLimiter
    bulk_export_limiter: RateLimiter
    exports: ExportService


def create_services(config: Config | None = None, db: Database | None = None) -> Services:
    """Build all Beacon services from config.

    Args:
        config: Configuration to use. Loads from env if None.
        db: Pre-connected database. Creates new one if None.
    """
    if config is None:
        config = load_config()

    if db is None:
        db = Database(config.db)

    fetcher = StatFetcher(db, max_rows=config.analytics.max_stat_rows)

    # Detailed event log (optional, fire-and-forget)
    event_writer = None
    if config.analytics.tracking_enabled:
        event_writer = EventWriter(
            db,
            queue_max=config.analytics.event_queue_max,
            flush_interval=config.analytics.event_flush_interval,
        )
        logger.info("Tracking event log enabled (queue=%d)", config.analytics.event_queue_max)
    else:
        logger.info("Tracking event log disabled by config")

    tracking = UsageTracking(
        db, fetcher,
        event_writer=event_writer,
        activity_window_days=config.analytics.trending_window_days,
    )
    analytics_engine = AnalyticsQueryEngine(db, fetcher)

    export_limiter = build_rate_limiter(
        config.rate_limit, "export", config.rate_limit.export_max_requests, db=db,
    )
    bulk_export_limiter = build_rate_limiter(
        config.rate_limit, "bulk_export", config.rate_limit.bulk_export_max_requests, db=db,
    )
    exports = ExportService(
        db, fetcher, limiter=export_limiter, bulk_limiter=bulk_export_limiter,
    )

    return Services(
        config=config,
        db=db,
        fetcher=fetcher,
        event_writer=event_writer,
        tracking=tracking,
        analytics_engine=analytics_engine,
        export_limiter=export_limiter,
        bulk_export_limiter=bulk_export_limiter,
        exports=exports,
    )
