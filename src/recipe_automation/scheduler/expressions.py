"""Scheduling expression utilities.

Accepted forms:

- 5-field cron: ``minute hour day month day_of_week``
- 6-field cron with leading seconds: ``second minute hour day month day_of_week``
- aliases: ``@yearly``, ``@annually``, ``@monthly``, ``@weekly``, ``@daily``,
  ``@midnight``, ``@hourly``
- fixed intervals: ``@every 1h30m`` (units ``d``, ``h``, ``m``, ``s``)

Day-of-week numbers follow crontab (``0`` and ``7`` are Sunday) and are translated
to names before being handed to APScheduler, which counts from Monday.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..automation.exceptions import SchedulingError
from ..core.logger import get_logger

logger = get_logger("scheduler.expressions")


@dataclass
class CronField:
    name: str
    min_value: int
    max_value: int
    aliases: dict[str, int] = field(default_factory=dict)


SECOND_FIELD = CronField("second", 0, 59)

CRON_FIELDS = [
    CronField("minute", 0, 59),
    CronField("hour", 0, 23),
    CronField("day", 1, 31),
    CronField(
        "month",
        1,
        12,
        {
            "jan": 1,
            "feb": 2,
            "mar": 3,
            "apr": 4,
            "may": 5,
            "jun": 6,
            "jul": 7,
            "aug": 8,
            "sep": 9,
            "oct": 10,
            "nov": 11,
            "dec": 12,
        },
    ),
    CronField(
        "day_of_week",
        0,
        7,
        {"sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6},
    ),
]

ALIASES = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

_EVERY = re.compile(r"^@every\s+((?:\d+[dhms])+)$", re.IGNORECASE)
_DURATION_PART = re.compile(r"(\d+)([dhms])", re.IGNORECASE)
_UNIT_SECONDS = {"d": 86400, "h": 3600, "m": 60, "s": 1}
_DOW_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]
# APScheduler order, Monday first
_DOW_ORDER = [1, 2, 3, 4, 5, 6, 0]


@dataclass
class CronParseResult:
    valid: bool
    expression: str = ""
    kind: str = "cron"
    second: str = "0"
    minute: str = "*"
    hour: str = "*"
    day: str = "*"
    month: str = "*"
    day_of_week: str = "*"
    interval_seconds: int | None = None
    error: str | None = None
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        if self.kind == "interval":
            return {"interval_seconds": self.interval_seconds}
        return {
            "second": self.second,
            "minute": self.minute,
            "hour": self.hour,
            "day": self.day,
            "month": self.month,
            "day_of_week": self.day_of_week,
        }


def parse_duration(text: str) -> int:
    """Convert ``1h30m`` style text to seconds."""
    return sum(int(n) * _UNIT_SECONDS[unit.lower()] for n, unit in _DURATION_PART.findall(text))


def validate_timezone(name: str) -> ZoneInfo:
    """Return the zone for an IANA name.

    Raises:
        SchedulingError: If the timezone is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise SchedulingError(f"Invalid timezone: {name}") from exc


class CronExpressionParser:
    @classmethod
    def parse(cls, expression: str) -> CronParseResult:
        text = (expression or "").strip()
        if not text:
            return CronParseResult(valid=False, expression=text, error="Empty expression")

        lowered = text.lower()
        every = _EVERY.match(text)
        if every:
            seconds = parse_duration(every.group(1))
            if seconds <= 0:
                return CronParseResult(
                    valid=False, expression=text, error="Interval must be positive"
                )
            return CronParseResult(
                valid=True,
                expression=text,
                kind="interval",
                interval_seconds=seconds,
                description=f"Every {timedelta(seconds=seconds)}",
            )
        if lowered.startswith("@"):
            if lowered not in ALIASES:
                return CronParseResult(
                    valid=False, expression=text, error=f"Unknown alias: {text}"
                )
            result = cls.parse(ALIASES[lowered])
            result.expression = text
            return result

        parts = text.split()
        if len(parts) not in (5, 6):
            return CronParseResult(
                valid=False, expression=text, error=f"Expected 5 or 6 fields, got {len(parts)}"
            )

        result = CronParseResult(valid=True, expression=text)
        fields = list(CRON_FIELDS)
        if len(parts) == 6:
            fields.insert(0, SECOND_FIELD)
        for part, field_def in zip(parts, fields, strict=True):
            valid, error = cls._validate_field(part, field_def)
            if not valid:
                return CronParseResult(
                    valid=False, expression=text, error=f"Invalid {field_def.name}: {error}"
                )
            setattr(result, field_def.name, part)
        result.description = cls.describe(text)
        return result

    @classmethod
    def _validate_field(cls, value: str, field_def: CronField) -> tuple[bool, str | None]:
        if value == "*":
            return True, None
        if value.lower() in field_def.aliases:
            return True, None
        if "," in value:
            for part in value.split(","):
                valid, error = cls._validate_field(part.strip(), field_def)
                if not valid:
                    return False, error
            return True, None
        if "/" in value:
            base, step = value.split("/", 1)
            if not step.isdigit() or int(step) < 1:
                return False, f"Invalid step: {step}"
            if base == "*":
                return True, None
            value = base
        if "-" in value and not value.startswith("-"):
            start, end = value.split("-", 1)
            start_val = cls._field_value(start, field_def)
            end_val = cls._field_value(end, field_def)
            if start_val is None:
                return False, f"Start {start} out of range"
            if end_val is None:
                return False, f"End {end} out of range"
            if start_val > end_val:
                return False, f"Invalid range: {value}"
            return True, None
        if cls._field_value(value, field_def) is None:
            return False, f"Invalid value: {value}"
        return True, None

    @staticmethod
    def _field_value(token: str, field_def: CronField) -> int | None:
        token = token.strip().lower()
        if token in field_def.aliases:
            return field_def.aliases[token]
        if not token.isdigit():
            return None
        number = int(token)
        if not (field_def.min_value <= number <= field_def.max_value):
            return None
        return number

    @classmethod
    def _expand_day_of_week(cls, value: str) -> str:
        """Translate a crontab day-of-week field to APScheduler day names."""
        if value == "*":
            return "*"
        dow = CRON_FIELDS[4]
        days: set[int] = set()
        for part in value.split(","):
            step = 1
            if "/" in part:
                part, step_text = part.split("/", 1)
                step = int(step_text)
            if part == "*":
                start, end = 0, 6
            elif "-" in part:
                first, last = part.split("-", 1)
                start, end = cls._field_value(first, dow), cls._field_value(last, dow)
            else:
                start = end = cls._field_value(part, dow)
            days.update(d % 7 for d in range(start, end + 1, step))  # type: ignore[arg-type]
        if len(days) == 7:
            return "*"
        return ",".join(_DOW_NAMES[d] for d in _DOW_ORDER if d in days)

    @classmethod
    def validate(cls, expression: str) -> tuple[bool, str | None]:
        result = cls.parse(expression)
        return result.valid, result.error

    @classmethod
    def describe(cls, expression: str) -> str:
        parts = expression.strip().split()
        if len(parts) == 6:
            parts = parts[1:]
        if len(parts) != 5:
            return "Invalid cron expression"
        minute, hour, day, month, dow = parts
        desc = []
        if minute == "*" and hour == "*":
            desc.append("Every minute")
        elif minute == "0" and hour == "*":
            desc.append("Every hour")
        elif hour == "*":
            desc.append(f"At minute {minute} of every hour")
        else:
            desc.append(f"At {hour.zfill(2)}:{minute.zfill(2)}")
        if day != "*":
            desc.append(f"on day {day}")
        if month != "*":
            desc.append(f"in month {month}")
        if dow != "*":
            desc.append(f"on day of week {dow}")
        return " ".join(desc)

    @classmethod
    def build_trigger(
        cls,
        expression: str,
        timezone: str = "UTC",
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> BaseTrigger:
        """Build an APScheduler trigger for an expression.

        Args:
            expression: Cron expression, alias or ``@every`` interval
            timezone: IANA timezone the expression is evaluated in
            start_date: Earliest fire time
            end_date: Latest fire time

        Returns:
            CronTrigger or IntervalTrigger

        Raises:
            SchedulingError: If the expression or timezone is invalid
        """
        result = cls.parse(expression)
        if not result.valid:
            raise SchedulingError(f"Invalid cron expression '{expression}'", [result.error or ""])
        zone = validate_timezone(timezone)
        if start_date and end_date and start_date >= end_date:
            raise SchedulingError("Start date must be before end date")

        if result.kind == "interval":
            return IntervalTrigger(
                seconds=result.interval_seconds,
                start_date=start_date,
                end_date=end_date,
                timezone=zone,
            )
        return CronTrigger(
            second=result.second,
            minute=result.minute,
            hour=result.hour,
            day=result.day,
            month=result.month,
            day_of_week=cls._expand_day_of_week(result.day_of_week),
            start_date=start_date,
            end_date=end_date,
            timezone=zone,
        )

    @classmethod
    def get_next_n_runs(
        cls,
        expression: str,
        n: int = 5,
        timezone: str = "UTC",
        after: datetime | None = None,
    ) -> list[datetime]:
        """Upcoming fire times, or an empty list for an invalid expression."""
        try:
            trigger = cls.build_trigger(expression, timezone)
        except SchedulingError as e:
            logger.error("Failed to calculate next runs: %s", e)
            return []
        return next_fire_times(trigger, n, after)


def next_fire_times(
    trigger: BaseTrigger, n: int = 5, after: datetime | None = None
) -> list[datetime]:
    """Walk a trigger forward ``n`` times starting at ``after`` (default: now)."""
    tz = getattr(trigger, "timezone", None)
    current = after or datetime.now(tz)
    previous: datetime | None = None
    run_times: list[datetime] = []
    for _ in range(n):
        next_time = trigger.get_next_fire_time(previous, current)
        if not next_time:
            break
        run_times.append(next_time)
        previous = next_time
        current = next_time + timedelta(seconds=1)
    return run_times


__all__ = [
    "ALIASES",
    "CRON_FIELDS",
    "CronExpressionParser",
    "CronField",
    "CronParseResult",
    "next_fire_times",
    "parse_duration",
    "validate_timezone",
]
