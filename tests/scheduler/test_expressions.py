"""Tests for scheduling expression utilities.

Tests cover:
- 5 and 6 field cron parsing and field validation
- Aliases and @every intervals
- Human-readable descriptions
- APScheduler trigger construction and upcoming run times
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from recipe_automation.automation.exceptions import SchedulingError
from recipe_automation.scheduler.expressions import (
    CronExpressionParser,
    next_fire_times,
    parse_duration,
    validate_timezone,
)

# Sunday noon
AFTER = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

# ==============================================================================
# Parsing Tests
# ==============================================================================


class TestCronExpressionParser:
    """Tests for CronExpressionParser.parse and validate."""

    def test_five_fields(self):
        result = CronExpressionParser.parse("0 9 * * 1-5")

        assert result.valid is True
        assert result.kind == "cron"
        assert (result.second, result.minute, result.hour) == ("0", "0", "9")
        assert result.day_of_week == "1-5"
        assert result.description == "At 09:00 on day of week 1-5"

    def test_six_fields_with_seconds(self):
        result = CronExpressionParser.parse("30 0 9 * * *")

        assert result.valid is True
        assert result.second == "30"
        assert result.to_dict()["second"] == "30"

    def test_names_and_lists(self):
        assert CronExpressionParser.validate("0 0 1,15 jan-mar mon,fri") == (True, None)

    def test_alias(self):
        result = CronExpressionParser.parse("@daily")

        assert result.valid is True
        assert result.expression == "@daily"
        assert (result.minute, result.hour) == ("0", "0")

    def test_every_interval(self):
        result = CronExpressionParser.parse("@every 1h30m")

        assert result.valid is True
        assert result.kind == "interval"
        assert result.interval_seconds == 5400
        assert result.to_dict() == {"interval_seconds": 5400}
        assert result.description == "Every 1:30:00"

    @pytest.mark.parametrize(
        ("expression", "error"),
        [
            ("", "Empty expression"),
            ("* * *", "Expected 5 or 6 fields, got 3"),
            ("60 * * * *", "Invalid minute: Invalid value: 60"),
            ("*/0 * * * *", "Invalid minute: Invalid step: 0"),
            ("5-1 * * * *", "Invalid minute: Invalid range: 5-1"),
            ("0 0 * * 8", "Invalid day_of_week: Invalid value: 8"),
            ("0 0 * foo *", "Invalid month: Invalid value: foo"),
            ("@fortnightly", "Unknown alias: @fortnightly"),
            ("@every 0s", "Interval must be positive"),
        ],
    )
    def test_invalid(self, expression, error):
        assert CronExpressionParser.validate(expression) == (False, error)

    @pytest.mark.parametrize(
        ("expression", "description"),
        [
            ("* * * * *", "Every minute"),
            ("0 * * * *", "Every hour"),
            ("15 * * * *", "At minute 15 of every hour"),
            ("30 14 1 * *", "At 14:30 on day 1"),
            ("0 8 * 6 *", "At 08:00 in month 6"),
        ],
    )
    def test_describe(self, expression, description):
        assert CronExpressionParser.describe(expression) == description

    def test_describe_invalid(self):
        assert CronExpressionParser.describe("* *") == "Invalid cron expression"


# ==============================================================================
# Day of week Tests
# ==============================================================================


class TestDayOfWeek:
    """Tests for crontab to APScheduler day-of-week translation."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("*", "*"),
            ("1-5", "mon,tue,wed,thu,fri"),
            ("0", "sun"),
            ("7", "sun"),
            ("5-7", "fri,sat,sun"),
            ("*/2", "tue,thu,sat,sun"),
            ("0-6", "*"),
            ("sat,sun", "sat,sun"),
        ],
    )
    def test_expand(self, value, expected):
        assert CronExpressionParser._expand_day_of_week(value) == expected


# ==============================================================================
# Trigger Tests
# ==============================================================================


class TestBuildTrigger:
    """Tests for build_trigger and run time helpers."""

    def test_cron_trigger(self):
        trigger = CronExpressionParser.build_trigger("0 9 * * 1-5")

        assert isinstance(trigger, CronTrigger)
        assert next_fire_times(trigger, 2, AFTER) == [
            datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc),
        ]

    def test_sunday_as_zero(self):
        trigger = CronExpressionParser.build_trigger("0 18 * * 0")

        assert next_fire_times(trigger, 1, AFTER) == [
            datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)
        ]

    def test_timezone(self):
        trigger = CronExpressionParser.build_trigger("0 9 * * *", timezone="Europe/Berlin")

        # 09:00 CET is 08:00 UTC
        assert next_fire_times(trigger, 1, AFTER)[0] == datetime(
            2026, 3, 2, 8, 0, tzinfo=timezone.utc
        )

    def test_interval_trigger(self):
        trigger = CronExpressionParser.build_trigger("@every 90s")

        assert isinstance(trigger, IntervalTrigger)
        assert trigger.interval == timedelta(seconds=90)

    def test_invalid_expression(self):
        with pytest.raises(SchedulingError) as exc_info:
            CronExpressionParser.build_trigger("61 * * * *")

        assert exc_info.value.errors == ["Invalid minute: Invalid value: 61"]

    def test_invalid_timezone(self):
        with pytest.raises(SchedulingError, match="Invalid timezone: Mars/Olympus"):
            CronExpressionParser.build_trigger("0 9 * * *", timezone="Mars/Olympus")

    def test_invalid_window(self):
        start = datetime(2026, 3, 2, tzinfo=timezone.utc)

        with pytest.raises(SchedulingError, match="Start date must be before end date"):
            CronExpressionParser.build_trigger("@hourly", start_date=start, end_date=start)

    def test_end_date_limits_runs(self):
        trigger = CronExpressionParser.build_trigger(
            "@hourly",
            start_date=AFTER,
            end_date=AFTER + timedelta(hours=2, minutes=30),
        )

        assert len(next_fire_times(trigger, 10, AFTER)) == 3

    def test_get_next_n_runs(self):
        runs = CronExpressionParser.get_next_n_runs("@every 1h", n=3, after=AFTER)

        assert len(runs) == 3
        assert runs[1] - runs[0] == timedelta(hours=1)

    def test_get_next_n_runs_invalid(self):
        assert CronExpressionParser.get_next_n_runs("nonsense") == []


# ==============================================================================
# Helper Tests
# ==============================================================================


class TestHelpers:
    """Tests for parse_duration and validate_timezone."""

    def test_parse_duration(self):
        assert parse_duration("1d2h3m4s") == 93784

    def test_validate_timezone(self):
        assert str(validate_timezone("Asia/Tokyo")) == "Asia/Tokyo"

    def test_validate_timezone_unknown(self):
        with pytest.raises(SchedulingError):
            validate_timezone("Nowhere/Special")
