"""Tests for autospine.scheduling.schedules - interval and cron parsing."""

from datetime import UTC, datetime, timedelta

import pytest

from autospine.core.errors import InvalidScheduleError, RegistrationError
from autospine.scheduling.schedules import (
    CronSchedule,
    IntervalSchedule,
    parse_duration,
    parse_schedule,
)

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class TestParseDuration:
    @pytest.mark.parametrize(
        ("text", "seconds"),
        [
            ("30s", 30),
            ("5m", 300),
            ("1h", 3600),
            ("2d", 172800),
            ("1w", 604800),
            ("1h30m", 5400),
            ("1h 30m", 5400),
            ("250ms", 0.25),
            ("1.5s", 1.5),
        ],
    )
    def test_valid(self, text, seconds):
        assert parse_duration(text) == timedelta(seconds=seconds)

    @pytest.mark.parametrize("text", ["", "5", "5x", "m5", "0s", "-5m"])
    def test_invalid(self, text):
        with pytest.raises(InvalidScheduleError):
            parse_duration(text)


class TestParseSchedule:
    def test_timedelta(self):
        assert parse_schedule(timedelta(minutes=5)) == IntervalSchedule(timedelta(minutes=5))

    @pytest.mark.parametrize("value", [5, 2.5])
    def test_numbers_are_seconds(self, value):
        assert parse_schedule(value).seconds == value

    @pytest.mark.parametrize("spec", ["5m", "every 5m", "@every 5m", "EVERY 5M", " 5m "])
    def test_interval_strings(self, spec):
        assert parse_schedule(spec) == IntervalSchedule(timedelta(minutes=5))

    def test_cron(self):
        schedule = parse_schedule("*/15 * * * *")
        assert isinstance(schedule, CronSchedule)
        assert schedule.expression == "*/15 * * * *"

    @pytest.mark.parametrize(
        ("alias", "expression"),
        [("@hourly", "0 * * * *"), ("@daily", "0 0 * * *"), ("@weekly", "0 0 * * 0"), ("@yearly", "0 0 1 1 *")],
    )
    def test_cron_aliases(self, alias, expression):
        assert parse_schedule(alias).expression == expression

    def test_schedule_passthrough(self):
        schedule = IntervalSchedule(timedelta(seconds=1))
        assert parse_schedule(schedule) is schedule

    @pytest.mark.parametrize(
        "spec",
        ["", "   ", "soon", "every", "every banana", "61 * * * *", "* * *", 0, -5, True, None, [1]],
    )
    def test_rejected_synchronously(self, spec):
        with pytest.raises(RegistrationError):
            parse_schedule(spec)

    def test_bad_timezone(self):
        with pytest.raises(InvalidScheduleError):
            parse_schedule("0 9 * * *", timezone="Mars/Olympus")

    def test_zero_interval(self):
        with pytest.raises(InvalidScheduleError):
            IntervalSchedule(timedelta(0))


class TestIntervalSchedule:
    def test_due_times_from_previous_due(self):
        schedule = IntervalSchedule(timedelta(seconds=5))
        first = schedule.first_after(T0)
        assert first == T0 + timedelta(seconds=5)
        assert schedule.next_after(first) == T0 + timedelta(seconds=10)

    def test_upcoming(self):
        schedule = IntervalSchedule(timedelta(seconds=5))
        assert schedule.upcoming(T0, 3) == [T0 + timedelta(seconds=s) for s in (5, 10, 15)]

    def test_following_on_time(self):
        schedule = IntervalSchedule(timedelta(seconds=5))
        due = T0 + timedelta(seconds=5)
        assert schedule.following(due, due) == (T0 + timedelta(seconds=10), 0)

    def test_following_coalesces_missed(self):
        schedule = IntervalSchedule(timedelta(seconds=5))
        due = T0 + timedelta(seconds=5)
        now = T0 + timedelta(seconds=23)
        nxt, missed = schedule.following(due, now)
        assert nxt == T0 + timedelta(seconds=25)
        assert missed == 3

    def test_following_exact_boundary(self):
        schedule = IntervalSchedule(timedelta(seconds=5))
        due = T0 + timedelta(seconds=5)
        nxt, missed = schedule.following(due, T0 + timedelta(seconds=10))
        assert nxt == T0 + timedelta(seconds=15)
        assert missed == 1

    def test_naive_datetimes_are_utc(self):
        schedule = IntervalSchedule(timedelta(seconds=5))
        assert schedule.first_after(datetime(2024, 1, 1)).tzinfo is not None

    def test_describe(self):
        assert IntervalSchedule(timedelta(minutes=5)).describe() == "every 5m"
        assert IntervalSchedule(timedelta(seconds=90)).describe() == "every 90s"
        assert IntervalSchedule(timedelta(hours=2)).describe() == "every 2h"


class TestCronSchedule:
    def test_next_after(self):
        schedule = CronSchedule("*/15 * * * *")
        assert schedule.first_after(T0) == T0 + timedelta(minutes=15)
        assert schedule.first_after(T0 + timedelta(minutes=1)) == T0 + timedelta(minutes=15)

    def test_results_are_utc(self):
        nxt = CronSchedule("0 9 * * *").first_after(T0)
        assert nxt.tzinfo is not None
        assert nxt.utcoffset() == timedelta(0)
        assert nxt == datetime(2024, 1, 2, 9, 0, tzinfo=UTC)

    def test_timezone(self):
        schedule = CronSchedule("0 9 * * *", timezone="America/New_York")
        # 09:00 EST == 14:00 UTC in January
        assert schedule.first_after(T0) == datetime(2024, 1, 1, 14, 0, tzinfo=UTC)
        assert "America/New_York" in schedule.describe()

    def test_following_coalesces(self):
        schedule = CronSchedule("*/15 * * * *")
        due = T0 + timedelta(minutes=15)
        nxt, missed = schedule.following(due, T0 + timedelta(minutes=50))
        assert nxt == T0 + timedelta(minutes=60)
        assert missed == 2

    def test_upcoming(self):
        times = CronSchedule("0 * * * *").upcoming(T0, 3)
        assert times == [T0 + timedelta(hours=h) for h in (1, 2, 3)]
