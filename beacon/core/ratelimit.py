"""Fixed-window rate limiting behind a small interface.

Callers hold a RateLimiter and ask allow(key). The in-memory backend suits a
single process; the Postgres backend shares windows across instances.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from beacon.config import RateLimitConfig
    from beacon.storage.database import Database

logger = logging.getLogger(__name__)


class RateLimiter(ABC):
    """Abstract base for rate limiter backends."""

    max_requests: int
    window_seconds: float

    @abstractmethod
    def allow(self, key: str) -> bool:
        """Count one request for key. Returns False once the window's quota is spent."""

    def describe(self) -> dict:
        return {
            "backend": type(self).__name__,
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
        }


@dataclass
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimiter(RateLimiter):
    """Process-local fixed windows keyed by caller."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, _Window] = {}

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                self._prune(now)
                return True
            if window.count >= self.max_requests:
                return False
            window.count += 1
            return True

    def _prune(self, now: float) -> None:
        """Drop expired windows so idle keys don't accumulate. Caller holds the lock."""
        expired = [k for k, w in self._windows.items() if now > w.reset_at]
        for k in expired:
            del self._windows[k]


class PostgresRateLimiter(RateLimiter):
    """Fixed windows stored in rate_limit_windows, shared by all instances.

    A single upsert either starts a fresh window or increments the current
    one, so concurrent requests serialize on the row lock.
    """

    def __init__(self, db: Database, scope: str, max_requests: int, window_seconds: float):
        self.db = db
        self.scope = scope
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def allow(self, key: str) -> bool:
        now = datetime.now(timezone.utc)
        expired_before = now - timedelta(seconds=self.window_seconds)
        try:
            row = self.db.execute_one(
                """
                INSERT INTO rate_limit_windows (key, scope, window_start, count)
                VALUES (%s, %s, %s, 1)
                ON CONFLICT (key, scope) DO UPDATE SET
                    window_start = CASE
                        WHEN rate_limit_windows.window_start <= %s THEN EXCLUDED.window_start
                        ELSE rate_limit_windows.window_start
                    END,
                    count = CASE
                        WHEN rate_limit_windows.window_start <= %s THEN 1
                        ELSE rate_limit_windows.count + 1
                    END
                RETURNING count
                """,
                (key, self.scope, now, expired_before, expired_before),
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return bool(row) and row["count"] <= self.max_requests

    def describe(self) -> dict:
        d = super().describe()
        d["scope"] = self.scope
        return d


def build_rate_limiter(
    config: RateLimitConfig,
    scope: str,
    max_requests: int,
    db: Database | None = None,
) -> RateLimiter:
    """Construct the configured backend for one quota scope."""
    if config.backend == "postgres":
        if db is None:
            raise ValueError("postgres rate limiter requires a database")
        logger.info("Rate limiter '%s': postgres (%d per %ds)", scope, max_requests, config.window_seconds)
        return PostgresRateLimiter(db, scope, max_requests, config.window_seconds)
    logger.info("Rate limiter '%s': memory (%d per %ds)", scope, max_requests, config.window_seconds)
    return InMemoryRateLimiter(max_requests, config.window_seconds)
