"""Cron job manager.

Owns recurring and one-time schedules bound to recipes. APScheduler computes fire
times and calls back on its worker threads; on every fire the manager emits an
``executeJob`` event instead of running anything itself. Every schedule mutation is
written to the record store immediately so a restart rebuilds the same state.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.date import DateTrigger

from ..automation.exceptions import JobNotFoundError, SchedulingError
from ..automation.models import generate_id
from ..core.config import SchedulerConfig
from ..core.events import EventBus
from ..core.logger import get_logger
from ..core.persistence import MemoryRecordStore, RecordStore
from .expressions import CronExpressionParser, next_fire_times, validate_timezone

logger = get_logger("scheduler.cron")

SCHEDULED_JOBS = "scheduled_jobs"
ONE_TIME_JOBS = "one_time_jobs"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ScheduledJob:
    """A recurring schedule bound to a recipe."""

    id: str
    recipe_id: str
    name: str
    cron_expression: str
    timezone: str = "UTC"
    enabled: bool = True
    next_run: datetime | None = None
    last_run: datetime | None = None
    run_count: int = 0
    max_runs: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    created_by: str = "system"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recipe_id": self.recipe_id,
            "name": self.name,
            "cron_expression": self.cron_expression,
            "timezone": self.timezone,
            "enabled": self.enabled,
            "next_run": _iso(self.next_run),
            "last_run": _iso(self.last_run),
            "run_count": self.run_count,
            "max_runs": self.max_runs,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScheduledJob:
        return cls(
            id=data["id"],
            recipe_id=data["recipe_id"],
            name=data["name"],
            cron_expression=data["cron_expression"],
            timezone=data.get("timezone") or "UTC",
            enabled=data.get("enabled", True),
            next_run=_parse(data.get("next_run")),
            last_run=_parse(data.get("last_run")),
            run_count=data.get("run_count", 0),
            max_runs=data.get("max_runs"),
            start_date=_parse(data.get("start_date")),
            end_date=_parse(data.get("end_date")),
            created_at=_parse(data.get("created_at")) or _utcnow(),
            updated_at=_parse(data.get("updated_at")) or _utcnow(),
            created_by=data.get("created_by", "system"),
        )


@dataclass
class OneTimeJob:
    """A single run at a fixed instant."""

    id: str
    recipe_id: str
    name: str
    execute_at: datetime
    timezone: str = "UTC"
    executed: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    created_by: str = "system"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recipe_id": self.recipe_id,
            "name": self.name,
            "execute_at": self.execute_at.isoformat(),
            "timezone": self.timezone,
            "executed": self.executed,
            "created_at": self.created_at.isoformat(),
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OneTimeJob:
        return cls(
            id=data["id"],
            recipe_id=data["recipe_id"],
            name=data["name"],
            execute_at=datetime.fromisoformat(data["execute_at"]),
            timezone=data.get("timezone") or "UTC",
            executed=data.get("executed", False),
            created_at=_parse(data.get("created_at")) or _utcnow(),
            created_by=data.get("created_by", "system"),
        )


@dataclass
class JobExecutionResult:
    """Outcome of one job fire."""

    job_id: str
    recipe_id: str
    executed_at: datetime
    success: bool
    duration: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "recipe_id": self.recipe_id,
            "executed_at": self.executed_at.isoformat(),
            "success": self.success,
            "duration": self.duration,
            "error": self.error,
        }


class CronJobManager:
    """Recurring and one-time schedules on top of APScheduler.

    Example:
        ```python
        manager = CronJobManager(SchedulerConfig(), store, events)
        events.subscribe("executeJob", lambda _, payload: print(payload["recipe_id"]))
        manager.initialize()
        manager.schedule_recurring_job("recipe_1", "Morning digest", "0 9 * * 1-5")
        ```
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        store: RecordStore | None = None,
        events: EventBus | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            config: Scheduler configuration
            store: Record store used to persist job state
            events: Event bus receiving lifecycle and ``executeJob`` events
        """
        self.config = config or SchedulerConfig()
        self.store = store or MemoryRecordStore()
        self.events = events or EventBus()
        self._scheduled: dict[str, ScheduledJob] = {}
        self._one_time: dict[str, OneTimeJob] = {}
        self._triggers: dict[str, BaseTrigger] = {}
        self._history: deque[JobExecutionResult] = deque(maxlen=self.config.max_history)
        self._lock = threading.RLock()
        self._initialized = False
        self._shutting_down = False
        self._scheduler = self._setup_scheduler()

    def _setup_scheduler(self) -> BackgroundScheduler:
        scheduler = BackgroundScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": ThreadPoolExecutor(max_workers=10)},
            job_defaults={
                "coalesce": self.config.job_coalesce,
                "max_instances": self.config.max_instances,
                "misfire_grace_time": self.config.misfire_grace_time,
            },
            timezone=validate_timezone(self.config.timezone),
        )
        logger.debug("Cron scheduler configured with timezone: %s", self.config.timezone)
        return scheduler

    @property
    def running(self) -> bool:
        return self._scheduler.running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(self) -> None:
        """Load persisted jobs, start the scheduler and re-arm every job.

        Recurring jobs whose window has closed are disabled. One-time jobs whose
        instant has passed fire immediately.
        """
        if self._initialized:
            return
        self._shutting_down = False
        self._load_persisted_jobs()

        if self.config.enabled:
            self._scheduler.start()
            logger.info("Cron job manager started")
        else:
            logger.info("Cron job manager disabled; schedules are tracked but not fired")

        with self._lock:
            scheduled = [job for job in self._scheduled.values() if job.enabled]
            one_time = [job for job in self._one_time.values() if not job.executed]
        for job in scheduled:
            self._start_scheduled_job(job)
            self._persist(job)
        for one_time_job in one_time:
            self._start_one_time_job(one_time_job)

        self._initialized = True
        self.events.emit(
            "initialized", {"scheduled": len(self._scheduled), "one_time": len(self._one_time)}
        )

    def shutdown(self) -> None:
        """Stop firing jobs and persist the current state."""
        self._shutting_down = True
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        with self._lock:
            jobs: list[ScheduledJob | OneTimeJob] = [
                *self._scheduled.values(),
                *self._one_time.values(),
            ]
        for job in jobs:
            self._persist(job)
        self._initialized = False
        logger.info("Cron job manager stopped")
        self.events.emit("shutdown", {})

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def schedule_recurring_job(
        self,
        recipe_id: str,
        name: str,
        cron_expression: str,
        timezone: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        max_runs: int | None = None,
        enabled: bool = True,
        job_id: str | None = None,
    ) -> str:
        """Create a recurring job.

        Args:
            recipe_id: Recipe fired by the job
            name: Display name
            cron_expression: Cron expression, alias or ``@every`` interval
            timezone: IANA timezone, defaults to the configured one
            start_date: Earliest fire time
            end_date: Latest fire time
            max_runs: Disable the job after this many fires
            enabled: Whether the job starts armed
            job_id: Explicit id, generated when omitted

        Returns:
            The job id

        Raises:
            SchedulingError: If the expression, timezone or date window is invalid
        """
        tz_name = timezone or self.config.timezone
        zone = validate_timezone(tz_name)
        self._validate_expression(cron_expression)
        start_date = self._localize(start_date, zone)
        end_date = self._localize(end_date, zone)
        self._validate_window(start_date, end_date, max_runs)

        job = ScheduledJob(
            id=job_id or generate_id("job"),
            recipe_id=recipe_id,
            name=name,
            cron_expression=cron_expression,
            timezone=tz_name,
            enabled=enabled,
            max_runs=max_runs,
            start_date=start_date,
            end_date=end_date,
        )
        with self._lock:
            self._unschedule(job.id)
            self._scheduled[job.id] = job

        if job.enabled:
            self._start_scheduled_job(job)
        self._persist(job)
        logger.info("Scheduled job %s for recipe %s (%s)", job.id, recipe_id, cron_expression)
        self.events.emit("jobScheduled", job.to_dict())
        return job.id

    def schedule_one_time_job(
        self,
        recipe_id: str,
        name: str,
        execute_at: datetime,
        timezone: str | None = None,
        job_id: str | None = None,
    ) -> str:
        """Create a job that fires once at ``execute_at``.

        Raises:
            SchedulingError: If the instant is not in the future or the timezone is invalid
        """
        tz_name = timezone or self.config.timezone
        zone = validate_timezone(tz_name)
        execute_at = self._localize(execute_at, zone)
        if execute_at <= _utcnow():
            raise SchedulingError("Execution time must be in the future")

        job = OneTimeJob(
            id=job_id or generate_id("job"),
            recipe_id=recipe_id,
            name=name,
            execute_at=execute_at,
            timezone=tz_name,
        )
        with self._lock:
            self._unschedule(job.id)
            self._one_time[job.id] = job

        self._start_one_time_job(job)
        self._persist(job)
        logger.info("Scheduled one-time job %s for recipe %s at %s", job.id, recipe_id, execute_at)
        self.events.emit("oneTimeJobScheduled", job.to_dict())
        return job.id

    def update_job(
        self,
        job_id: str,
        name: str | None = None,
        cron_expression: str | None = None,
        timezone: str | None = None,
        enabled: bool | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        max_runs: int | None = None,
    ) -> ScheduledJob:
        """Change a recurring job and re-arm it.

        Everything is validated before anything is changed.

        Raises:
            JobNotFoundError: If no recurring job has this id
            SchedulingError: If the new values are invalid
        """
        with self._lock:
            job = self._scheduled.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        tz_name = timezone or job.timezone
        zone = validate_timezone(tz_name)
        if cron_expression is not None:
            self._validate_expression(cron_expression)
        new_start = self._localize(start_date, zone) if start_date else job.start_date
        new_end = self._localize(end_date, zone) if end_date else job.end_date
        new_max = max_runs if max_runs is not None else job.max_runs
        self._validate_window(new_start, new_end, new_max)

        with self._lock:
            if name is not None:
                job.name = name
            if cron_expression is not None:
                job.cron_expression = cron_expression
            if enabled is not None:
                job.enabled = enabled
            job.timezone = tz_name
            job.start_date, job.end_date, job.max_runs = new_start, new_end, new_max
            job.updated_at = _utcnow()
            self._unschedule(job_id)
            if not job.enabled:
                job.next_run = None

        if job.enabled:
            self._start_scheduled_job(job)
        self._persist(job)
        self.events.emit("jobUpdated", job.to_dict())
        return job

    def enable_job(self, job_id: str) -> ScheduledJob:
        return self.update_job(job_id, enabled=True)

    def disable_job(self, job_id: str) -> ScheduledJob:
        return self.update_job(job_id, enabled=False)

    def delete_job(self, job_id: str) -> None:
        """Remove a recurring or one-time job.

        Raises:
            JobNotFoundError: If the id is unknown
        """
        with self._lock:
            scheduled = self._scheduled.pop(job_id, None)
            one_time = self._one_time.pop(job_id, None) if scheduled is None else None
            if scheduled is None and one_time is None:
                raise JobNotFoundError(job_id)
            self._unschedule(job_id)

        if scheduled is not None:
            self.store.delete(SCHEDULED_JOBS, job_id)
            self.events.emit("jobDeleted", scheduled.to_dict())
        elif one_time is not None:
            self.store.delete(ONE_TIME_JOBS, job_id)
            self.events.emit("oneTimeJobDeleted", one_time.to_dict())
        logger.info("Deleted job %s", job_id)

    def remove_jobs_for_recipe(self, recipe_id: str) -> int:
        """Delete every job bound to a recipe. Returns how many were removed."""
        jobs = self.get_jobs_for_recipe(recipe_id)
        for job in jobs:
            self.delete_job(job.id)
        return len(jobs)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_job(self, job_id: str) -> ScheduledJob | OneTimeJob | None:
        with self._lock:
            return self._scheduled.get(job_id) or self._one_time.get(job_id)

    def get_jobs_for_recipe(self, recipe_id: str) -> list[ScheduledJob | OneTimeJob]:
        with self._lock:
            return [
                job
                for job in [*self._scheduled.values(), *self._one_time.values()]
                if job.recipe_id == recipe_id
            ]

    def get_all_jobs(self) -> dict[str, list[Any]]:
        with self._lock:
            return {
                "scheduled": list(self._scheduled.values()),
                "one_time": list(self._one_time.values()),
            }

    def get_next_run_times(self, job_id: str, count: int = 5) -> list[datetime]:
        """Upcoming fire times of a job (empty for a disabled or finished one)."""
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if isinstance(job, OneTimeJob):
            return [] if job.executed else [job.execute_at]
        if not job.enabled:
            return []
        trigger = self._triggers.get(job_id) or self._build_trigger(job)
        return next_fire_times(trigger, count)

    def get_execution_stats(self) -> dict[str, Any]:
        with self._lock:
            history = list(self._history)
        successful = sum(1 for r in history if r.success)
        timed = [r.duration for r in history if r.duration > 0]
        return {
            "total_executions": len(history),
            "successful_executions": successful,
            "failed_executions": len(history) - successful,
            "average_execution_time": sum(timed) / len(timed) if timed else 0.0,
            "recent_executions": [r.to_dict() for r in history[:100]],
        }

    def execute_job_manually(self, job_id: str) -> JobExecutionResult:
        """Emit ``executeJob`` for a job right now without touching its counters."""
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return self._execute_job(job)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _build_trigger(self, job: ScheduledJob) -> BaseTrigger:
        return CronExpressionParser.build_trigger(
            job.cron_expression, job.timezone, job.start_date, job.end_date
        )

    def _start_scheduled_job(self, job: ScheduledJob) -> None:
        if self._shutting_down:
            return
        now = _utcnow()
        if job.end_date and now > job.end_date:
            self._finish_job(job, "jobExpired")
            return
        if job.max_runs is not None and job.run_count >= job.max_runs:
            self._finish_job(job, "jobMaxRunsReached")
            return

        trigger = self._build_trigger(job)
        next_run = trigger.get_next_fire_time(None, now)
        if next_run is None:
            self._finish_job(job, "jobExpired")
            return

        with self._lock:
            self._triggers[job.id] = trigger
            job.next_run = next_run
            if self.config.enabled:
                self._scheduler.add_job(
                    self._fire_scheduled_job,
                    trigger=trigger,
                    args=[job.id],
                    id=job.id,
                    name=job.name,
                    replace_existing=True,
                )
        logger.debug("Job %s armed, next run at %s", job.id, next_run)

    def _start_one_time_job(self, job: OneTimeJob) -> None:
        if self._shutting_down or job.executed or not self.config.enabled:
            return
        if job.execute_at <= _utcnow():
            logger.info("One-time job %s is overdue, firing now", job.id)
            self._fire_one_time_job(job.id)
            return
        with self._lock:
            self._scheduler.add_job(
                self._fire_one_time_job,
                trigger=DateTrigger(run_date=job.execute_at),
                args=[job.id],
                id=job.id,
                name=job.name,
                replace_existing=True,
            )

    def _fire_scheduled_job(self, job_id: str) -> None:
        with self._lock:
            job = self._scheduled.get(job_id)
        if job is None or not job.enabled:
            return
        try:
            self._execute_job(job)
            now = _utcnow()
            trigger = self._triggers.get(job_id)
            with self._lock:
                job.run_count += 1
                job.last_run = now
                job.next_run = (
                    trigger.get_next_fire_time(None, now + timedelta(seconds=1))
                    if trigger
                    else None
                )
            if job.max_runs is not None and job.run_count >= job.max_runs:
                self._finish_job(job, "jobMaxRunsReached")
            elif job.next_run is None:
                self._finish_job(job, "jobExpired")
            else:
                self._persist(job)
        except Exception as exc:
            logger.error("Scheduled job %s failed: %s", job_id, exc, exc_info=True)
            self.events.emit("jobExecutionError", {"job": job.to_dict(), "error": str(exc)})

    def _fire_one_time_job(self, job_id: str) -> None:
        with self._lock:
            job = self._one_time.get(job_id)
            if job is None or job.executed:
                return
            job.executed = True
        try:
            result = self._execute_job(job)
            self._persist(job)
            self.events.emit(
                "oneTimeJobExecuted", {"job": job.to_dict(), "result": result.to_dict()}
            )
        except Exception as exc:
            logger.error("One-time job %s failed: %s", job_id, exc, exc_info=True)
            self.events.emit("jobExecutionError", {"job": job.to_dict(), "error": str(exc)})

    def _execute_job(self, job: ScheduledJob | OneTimeJob) -> JobExecutionResult:
        started = time.monotonic()
        result = JobExecutionResult(
            job_id=job.id, recipe_id=job.recipe_id, executed_at=_utcnow(), success=False
        )
        try:
            self.events.emit(
                "executeJob",
                {
                    "job_id": job.id,
                    "recipe_id": job.recipe_id,
                    "job_name": job.name,
                    "execution_time": result.executed_at,
                },
            )
            result.success = True
        except Exception as exc:
            result.error = str(exc)
            raise
        finally:
            result.duration = time.monotonic() - started
            with self._lock:
                self._history.appendleft(result)
        return result

    def _finish_job(self, job: ScheduledJob, event: str) -> None:
        with self._lock:
            job.enabled = False
            job.next_run = None
            job.updated_at = _utcnow()
            self._unschedule(job.id)
        self._persist(job)
        logger.info("Job %s disabled (%s)", job.id, event)
        self.events.emit(event, job.to_dict())

    def _unschedule(self, job_id: str) -> None:
        self._triggers.pop(job_id, None)
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            pass

    def _persist(self, job: ScheduledJob | OneTimeJob) -> None:
        kind = SCHEDULED_JOBS if isinstance(job, ScheduledJob) else ONE_TIME_JOBS
        self.store.save(kind, job.id, job.to_dict())

    def _load_persisted_jobs(self) -> None:
        with self._lock:
            for record in self.store.list_all(SCHEDULED_JOBS):
                try:
                    job = ScheduledJob.from_dict(record)
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning(
                        "Skipping unreadable scheduled job %s: %s", record.get("id"), exc
                    )
                    continue
                self._scheduled[job.id] = job
            for record in self.store.list_all(ONE_TIME_JOBS):
                try:
                    one_time = OneTimeJob.from_dict(record)
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning("Skipping unreadable one-time job %s: %s", record.get("id"), exc)
                    continue
                self._one_time[one_time.id] = one_time
        logger.debug(
            "Loaded %d scheduled and %d one-time jobs", len(self._scheduled), len(self._one_time)
        )

    @staticmethod
    def _validate_expression(expression: str) -> None:
        valid, error = CronExpressionParser.validate(expression)
        if not valid:
            raise SchedulingError(f"Invalid cron expression '{expression}'", [error or ""])

    @staticmethod
    def _validate_window(
        start_date: datetime | None, end_date: datetime | None, max_runs: int | None
    ) -> None:
        if start_date and end_date and start_date >= end_date:
            raise SchedulingError("Start date must be before end date")
        if max_runs is not None and max_runs < 1:
            raise SchedulingError("max_runs must be at least 1")

    @staticmethod
    def _localize(value: datetime | None, zone: Any) -> datetime | None:
        if value is None or value.tzinfo is not None:
            return value
        return value.replace(tzinfo=zone)


__all__ = [
    "ONE_TIME_JOBS",
    "SCHEDULED_JOBS",
    "CronJobManager",
    "JobExecutionResult",
    "OneTimeJob",
    "ScheduledJob",
]
