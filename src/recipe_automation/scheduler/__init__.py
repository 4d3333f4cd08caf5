"""Time-based scheduling for recipes.

This package provides:
- Cron expression parsing and validation on APScheduler triggers
- The cron job manager for recurring and one-time recipe jobs
"""

from .cron import (
    ONE_TIME_JOBS,
    SCHEDULED_JOBS,
    CronJobManager,
    JobExecutionResult,
    OneTimeJob,
    ScheduledJob,
)
from .expressions import (
    ALIASES,
    CRON_FIELDS,
    CronExpressionParser,
    CronField,
    CronParseResult,
    next_fire_times,
    parse_duration,
    validate_timezone,
)

__all__ = [
    # Cron job manager
    "CronJobManager",
    "JobExecutionResult",
    "OneTimeJob",
    "ScheduledJob",
    "ONE_TIME_JOBS",
    "SCHEDULED_JOBS",
    # Expressions
    "ALIASES",
    "CRON_FIELDS",
    "CronExpressionParser",
    "CronField",
    "CronParseResult",
    "next_fire_times",
    "parse_duration",
    "validate_timezone",
]
