"""Timeframe tokens to concrete date windows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from beacon.core.constants import DEFAULT_PERIOD_DAYS, TIMEFRAME_DAYS


@dataclass(frozen=True)
class Period:
    """An inclusive window of calendar days ending today."""
    timeframe: str
    days: int
    start_date: date
    end_date: date

    def previous(self) -> Period:
        """Equal-length window immediately before start_date.

        The day start_date itself belongs to this period, so the previous
        window ends the day before it.
        """
        end = self.start_date - timedelta(days=1)
        start = self.start_date - timedelta(days=self.days)
        return Period(timeframe=self.timeframe, days=self.days, start_date=start, end_date=end)

    def to_dict(self) -> dict:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "days": self.days,
        }


def timeframe_days(timeframe: str | None, table: dict[str, int] | None = None) -> int:
    """Day count for a timeframe token. Unknown tokens fall back silently."""
    lookup = table if table is not None else TIMEFRAME_DAYS
    return lookup.get(timeframe or "", DEFAULT_PERIOD_DAYS)


def resolve_period(
    timeframe: str | None,
    table: dict[str, int] | None = None,
    now: datetime | None = None,
) -> Period:
    """Resolve a timeframe token against the current UTC time."""
    now = now or datetime.now(timezone.utc)
    days = timeframe_days(timeframe, table)
    start = (now - timedelta(days=days)).date()
    return Period(
        timeframe=timeframe or "",
        days=days,
        start_date=start,
        end_date=now.date(),
    )
