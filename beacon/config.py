"""Beacon settings, read from BEACON_* environment variables with working defaults."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatabaseConfig:
    host: str = "localhost"
    port: int = 5432
    name: str = "beacon"
    user: str = "beacon"
    password: str = "beacon-dev-password"
    pool_min_size: int = 2
    pool_max_size: int = 10

    @property
    def dsn(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


@dataclass(frozen=True)
class AuthConfig:
    enabled: bool = False
    api_key: str | None = None  # Static API key (checked via X-API-Key header)
    header_name: str = "X-API-Key"  # Header to check for auth token
    user_header: str = "X-User-Id"  # Header carrying the caller's user id


@dataclass(frozen=True)
class AnalyticsConfig:
    tracking_enabled: bool = True
    max_stat_rows: int = 10_000        # hard cap per stat fetch
    event_queue_max: int = 10_000      # pending tracking events before drops
    event_flush_interval: float = 5.0  # seconds between event writer flushes
    trending_window_days: int = 7      # lookback for the daily activity score


@dataclass(frozen=True)
class RateLimitConfig:
    backend: str = "memory"  # "memory" (single instance) or "postgres" (shared)
    window_seconds: int = 60
    export_max_requests: int = 5
    bulk_export_max_requests: int = 2


@dataclass(frozen=True)
class Config:
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    http_host: str = "0.0.0.0"
    http_port: int = 8000
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"


_BOOL_TRUTHY = {"true", "1", "yes"}

_VALID_RATE_LIMIT_BACKENDS = {"memory", "postgres"}

# Settings never echoed back by the status endpoint.
SECRET_SETTINGS: set[str] = {"db.password", "auth.api_key"}


def _parse_cors_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins. '*' means allow all."""
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in _BOOL_TRUTHY


def config_to_flat(config: Config, mask_secrets: bool = True) -> dict[str, Any]:
    """Serialize config to a flat dict with dot-notation keys."""
    result: dict[str, Any] = {}

    for f in fields(config):
        val = getattr(config, f.name)
        if hasattr(val, "__dataclass_fields__"):
            for sf in fields(val):
                result[f"{f.name}.{sf.name}"] = getattr(val, sf.name)
        else:
            # Skip list fields (cors_origins), not useful in flat form
            if isinstance(val, list):
                continue
            result[f.name] = val

    if mask_secrets:
        for key in SECRET_SETTINGS:
            if result.get(key):
                result[key] = "••••••••"

    return result


def load_config() -> Config:
    """Load configuration from environment variables."""
    rate_limit_backend = os.getenv("BEACON_RATE_LIMIT_BACKEND", "memory").lower().strip()
    if rate_limit_backend not in _VALID_RATE_LIMIT_BACKENDS:
        logger.warning(
            "Unknown BEACON_RATE_LIMIT_BACKEND '%s' (valid: %s), using memory",
            rate_limit_backend, ", ".join(sorted(_VALID_RATE_LIMIT_BACKENDS)),
        )
        rate_limit_backend = "memory"

    return Config(
        db=DatabaseConfig(
            host=os.getenv("BEACON_DB_HOST", "localhost"),
            port=int(os.getenv("BEACON_DB_PORT", "5432")),
            name=os.getenv("BEACON_DB_NAME", "beacon"),
            user=os.getenv("BEACON_DB_USER", "beacon"),
            password=os.getenv("BEACON_DB_PASS", "beacon-dev-password"),
            pool_min_size=int(os.getenv("BEACON_DB_POOL_MIN", "2")),
            pool_max_size=int(os.getenv("BEACON_DB_POOL_MAX", "10")),
        ),
        auth=AuthConfig(
            enabled=_env_bool("BEACON_AUTH_ENABLED", "false"),
            api_key=os.getenv("BEACON_API_KEY") or None,
            header_name=os.getenv("BEACON_AUTH_HEADER", "X-API-Key"),
            user_header=os.getenv("BEACON_USER_HEADER", "X-User-Id"),
        ),
        analytics=AnalyticsConfig(
            tracking_enabled=_env_bool("BEACON_TRACKING_ENABLED", "true"),
            max_stat_rows=int(os.getenv("BEACON_MAX_STAT_ROWS", "10000")),
            event_queue_max=int(os.getenv("BEACON_EVENT_QUEUE_MAX", "10000")),
            event_flush_interval=float(os.getenv("BEACON_EVENT_FLUSH_INTERVAL", "5.0")),
            trending_window_days=int(os.getenv("BEACON_TRENDING_WINDOW_DAYS", "7")),
        ),
        rate_limit=RateLimitConfig(
            backend=rate_limit_backend,
            window_seconds=int(os.getenv("BEACON_RATE_LIMIT_WINDOW", "60")),
            export_max_requests=int(os.getenv("BEACON_EXPORT_MAX_REQUESTS", "5")),
            bulk_export_max_requests=int(os.getenv("BEACON_BULK_EXPORT_MAX_REQUESTS", "2")),
        ),
        http_host=os.getenv("BEACON_HTTP_HOST", "0.0.0.0"),
        http_port=int(os.getenv("BEACON_HTTP_PORT", "8000")),
        cors_origins=_parse_cors_origins(os.getenv("BEACON_CORS_ORIGINS", "*")),
        log_level=os.getenv("BEACON_LOG_LEVEL", "INFO").upper(),
    )
