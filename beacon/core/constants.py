"""Centralized constants and enums for Beacon core modules."""

from __future__ import annotations

from enum import Enum
from typing import Literal, get_args


# ============================================================
# Timeframes
# ============================================================

TIMEFRAME_DAYS: dict[str, int] = {
    "24h": 1,
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "1y": 365,
}

# Unknown timeframe tokens resolve to this many days.
DEFAULT_PERIOD_DAYS = 30

TrackTimeframe = Literal["7d", "30d", "90d"]
PeriodTimeframe = Literal["7d", "30d", "90d", "1y"]   # popular, usage, overview, export
TrendingTimeframe = Literal["24h", "7d", "30d"]

TRACK_TIMEFRAMES = list(get_args(TrackTimeframe))


# ============================================================
# Granularity
# ============================================================

class Granularity(str, Enum):
    HOURLY = "hourly"    # no hour-level data; buckets like daily
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# ============================================================
# Tracking
# ============================================================

class TrackAction(str, Enum):
    VIEW = "view"
    IMPORT = "import"
    COPY = "copy"
    DOWNLOAD = "download"
    FAVORITE = "favorite"
    SHARE = "share"


VALID_ACTIONS = [a.value for a in TrackAction]

# Actions that count as a use of the component on the day they happen.
USE_ACTIONS = frozenset({"view", "import", "copy", "download"})

# Actions that bump the component's lifetime usage_count.
USAGE_COUNT_ACTIONS = frozenset({"import", "copy", "download"})

# Actions persisted to the detailed event log.
DETAILED_EVENT_ACTIONS = frozenset({"import", "download", "share"})


# ============================================================
# Insights
# ============================================================

TREND_THRESHOLD_PCT = 5.0


# ============================================================
# Trending score
# ============================================================

TRENDING_WEIGHT_GROWTH = 0.4
TRENDING_WEIGHT_VELOCITY = 0.3
TRENDING_WEIGHT_MOMENTUM = 0.3

TRENDING_RISING_ABOVE = 50
TRENDING_STABLE_ABOVE = 20

# Daily activity score (written to component_usage_stats.trending_score)
ACTIVITY_USAGE_CAP = 50
ACTIVITY_USAGE_WEIGHT = 0.1
ACTIVITY_USER_CAP = 30
ACTIVITY_USER_WEIGHT = 0.5
ACTIVITY_IMPORT_CAP = 20
ACTIVITY_IMPORT_WEIGHT = 2


# ============================================================
# Popularity score
# ============================================================

POPULARITY_WEIGHT_USAGE = 0.4
POPULARITY_WEIGHT_RATING = 0.3
POPULARITY_RATING_SCALE = 20      # 0-5 stars -> 0-100
POPULARITY_WEIGHT_RECENCY = 0.2
POPULARITY_RECENCY_DECAY_DAYS = 30
POPULARITY_FEATURED_BONUS = 10
POPULARITY_WEIGHT_QUALITY = 0.1

PopularSort = Literal["usage_count", "rating", "recent"]
DEFAULT_POPULAR_SORT = "usage_count"


# ============================================================
# Limits
# ============================================================

MAX_LIMIT = 100
DEFAULT_LIST_LIMIT = 20
DEFAULT_OVERVIEW_LIMIT = 10
TOP_COMPONENTS_LIMIT = 10
SUMMARY_TOP_N = 5
MAX_BULK_EXPORT_IDS = 50
MAX_ERROR_MESSAGE = 512
RATE_LIMIT_RETRY_AFTER = 60

ExportFormat = Literal["json", "csv"]
VALID_EXPORT_FORMATS = list(get_args(ExportFormat))
