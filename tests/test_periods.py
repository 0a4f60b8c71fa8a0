"""Tests for beacon.core.periods: timeframe resolution and previous windows."""

from datetime import date, datetime, timezone

from beacon.core.periods import Period, resolve_period, timeframe_days

NOW = datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)


class TestTimeframeDays:
    def test_known_tokens(self):
        assert timeframe_days("24h") == 1
        assert timeframe_days("7d") == 7
        assert timeframe_days("30d") == 30
        assert timeframe_days("90d") == 90
        assert timeframe_days("1y") == 365

    def test_unknown_token_falls_back(self):
        assert timeframe_days("2w") == 30
        assert timeframe_days("") == 30
        assert timeframe_days(None) == 30

    def test_custom_table(self):
        assert timeframe_days("7d", {"7d": 7}) == 7
        assert timeframe_days("1y", {"7d": 7}) == 30


class TestResolvePeriod:
    def test_seven_days(self):
        period = resolve_period("7d", now=NOW)
        assert period.days == 7
        assert period.start_date == date(2024, 3, 8)
        assert period.end_date == date(2024, 3, 15)
        assert period.timeframe == "7d"

    def test_24h(self):
        period = resolve_period("24h", now=NOW)
        assert period.days == 1
        assert period.start_date == date(2024, 3, 14)

    def test_unknown_is_thirty_days(self):
        period = resolve_period("forever", now=NOW)
        assert period.days == 30
        assert period.start_date == date(2024, 2, 14)

    def test_to_dict(self):
        assert resolve_period("7d", now=NOW).to_dict() == {
            "start_date": "2024-03-08",
            "end_date": "2024-03-15",
            "days": 7,
        }


class TestPreviousPeriod:
    def test_previous_excludes_current_start(self):
        period = resolve_period("7d", now=NOW)
        prev = period.previous()
        assert prev.end_date == date(2024, 3, 7)
        assert prev.start_date == date(2024, 3, 1)
        assert prev.end_date < period.start_date

    def test_previous_keeps_length(self):
        period = Period("30d", 30, date(2024, 2, 14), date(2024, 3, 15))
        prev = period.previous()
        assert prev.days == 30
        assert (period.start_date - prev.start_date).days == 30
