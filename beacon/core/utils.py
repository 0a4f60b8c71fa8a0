"""Shared utilities for Beacon core modules. Errors and small numeric helpers."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable

from beacon.core.constants import RATE_LIMIT_RETRY_AFTER


class BeaconError(Exception):
    """Base for errors that map onto an HTTP status."""
    status_code = 500


class ValidationError(BeaconError):
    """Raised when request input fails validation."""
    status_code = 400


class AuthenticationRequired(BeaconError):
    status_code = 401


class AccessDenied(BeaconError):
    status_code = 403


class NotFound(BeaconError):
    status_code = 404


class RateLimitExceeded(BeaconError):
    status_code = 429

    def __init__(self, message: str, retry_after: int = RATE_LIMIT_RETRY_AFTER):
        super().__init__(message)
        self.retry_after = retry_after


def round2(value: float) -> float:
    return round(value * 100) / 100


def percent_change(current: float, previous: float) -> float:
    """Percentage change from previous to current.

    A zero baseline counts as 100% growth when anything happened since,
    and as no change otherwise.
    """
    if previous > 0:
        return (current - previous) / previous * 100
    return 100.0 if current > 0 else 0.0


def unique_user_keys(rows: Iterable[dict]) -> set:
    """Union unique_users across rows.

    Rows may carry a list of user ids or a scalar count. A positive scalar
    contributes a sentinel unique to that row.
    """
    users: set = set()
    for idx, row in enumerate(rows):
        value = row.get("unique_users")
        if isinstance(value, (list, tuple, set)):
            users.update(value)
        elif isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            users.add(("row", idx, row.get("component_id"), _date_key(row.get("date"))))
    return users


def count_unique_users(rows: Iterable[dict]) -> int:
    return len(unique_user_keys(rows))


def sum_field(rows: Iterable[dict], name: str) -> int:
    return sum(row.get(name) or 0 for row in rows)


def _date_key(value: Any) -> str | None:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def as_date(value: Any) -> date:
    """Coerce a row's date column (date, datetime or ISO string) to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def isoformat_or_none(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)
