"""Runtime records for recipe executions."""

from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .exceptions import ValidationError, VariableNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class ExecutionStatus(str, Enum):
    """Execution state machine."""

    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


CANCELLABLE_STATUSES = frozenset(
    {ExecutionStatus.QUEUED, ExecutionStatus.RUNNING, ExecutionStatus.PAUSED}
)


class ActionStatus(str, Enum):
    """Status of a single action within an execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RetryRecord:
    """One failed attempt of an action."""

    attempt: int
    timestamp: datetime
    error: str
    delay: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt": self.attempt,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
            "delay": self.delay,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RetryRecord:
        return cls(
            attempt=data["attempt"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            error=data["error"],
            delay=data.get("delay", 0.0),
        )


@dataclass
class ActionExecution:
    """Result trail of one action inside an execution."""

    action_id: str
    type: str
    status: ActionStatus = ActionStatus.PENDING
    input: dict[str, Any] = field(default_factory=dict)
    output: Any = None
    retries: list[RetryRecord] = field(default_factory=list)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration: float | None = None
    error: str | None = None
    skipped: bool = False

    def finish(self, status: ActionStatus, error: str | None = None) -> None:
        self.status = status
        self.error = error
        self.ended_at = utcnow()
        if self.started_at:
            self.duration = (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_id": self.action_id,
            "type": self.type,
            "status": self.status.value,
            "input": self.input,
            "output": self.output,
            "retries": [r.to_dict() for r in self.retries],
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "duration": self.duration,
            "error": self.error,
            "skipped": self.skipped,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ActionExecution:
        return cls(
            action_id=data["action_id"],
            type=data["type"],
            status=ActionStatus(data.get("status", "pending")),
            input=dict(data.get("input") or {}),
            output=data.get("output"),
            retries=[RetryRecord.from_dict(r) for r in data.get("retries", [])],
            started_at=_parse(data.get("started_at")),
            ended_at=_parse(data.get("ended_at")),
            duration=data.get("duration"),
            error=data.get("error"),
            skipped=data.get("skipped", False),
        )


@dataclass
class ExecutionTrigger:
    """What started an execution."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data, "timestamp": self.timestamp.isoformat()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExecutionTrigger:
        return cls(
            type=data["type"],
            data=dict(data.get("data") or {}),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class Execution:
    """One run of a recipe."""

    id: str
    recipe_id: str
    trigger: ExecutionTrigger
    status: ExecutionStatus = ExecutionStatus.QUEUED
    context: dict[str, Any] = field(default_factory=dict)
    actions: list[ActionExecution] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration: float | None = None
    error: str | None = None

    def finalize(self, status: ExecutionStatus, error: str | None = None) -> None:
        """Stamp the terminal status and timing."""
        self.status = status
        if error is not None:
            self.error = error
        self.ended_at = utcnow()
        self.duration = (self.ended_at - (self.started_at or self.created_at)).total_seconds()

    def summary(self) -> dict[str, Any]:
        return {
            "execution_id": self.id,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "duration": self.duration,
            "error": self.error,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recipe_id": self.recipe_id,
            "trigger": self.trigger.to_dict(),
            "status": self.status.value,
            "context": self.context,
            "actions": [a.to_dict() for a in self.actions],
            "created_at": self.created_at.isoformat(),
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "duration": self.duration,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Execution:
        return cls(
            id=data["id"],
            recipe_id=data["recipe_id"],
            trigger=ExecutionTrigger.from_dict(data["trigger"]),
            status=ExecutionStatus(data["status"]),
            context=dict(data.get("context") or {}),
            actions=[ActionExecution.from_dict(a) for a in data.get("actions", [])],
            created_at=datetime.fromisoformat(data["created_at"]),
            started_at=_parse(data.get("started_at")),
            ended_at=_parse(data.get("ended_at")),
            duration=data.get("duration"),
            error=data.get("error"),
        )


SCOPES = ("global", "recipe", "execution", "step", "computed")


@dataclass
class VariableContext:
    """Scoped variables visible to one execution.

    ``global``, ``recipe``, ``execution``, ``step`` and ``computed`` are the
    addressable scopes. ``trigger`` is shorthand for the trigger data stored in the
    execution scope and ``metadata`` holds free-form annotations.
    """

    global_scope: dict[str, Any] = field(default_factory=dict)
    recipe: dict[str, Any] = field(default_factory=dict)
    execution: dict[str, Any] = field(default_factory=dict)
    step: dict[str, Any] = field(default_factory=dict)
    computed: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def trigger(self) -> dict[str, Any]:
        return self.execution.get("trigger") or {}

    @property
    def execution_id(self) -> str | None:
        return self.execution.get("execution_id")

    def get_scope(self, name: str) -> Mapping[str, Any]:
        """Return the mapping behind a scope name.

        Raises:
            VariableNotFoundError: If the scope name is unknown
        """
        scopes: dict[str, Mapping[str, Any]] = {
            "global": self.global_scope,
            "recipe": self.recipe,
            "execution": self.execution,
            "step": self.step,
            "computed": self.computed,
            "trigger": self.trigger,
            "metadata": self.metadata,
        }
        if name not in scopes:
            raise VariableNotFoundError(f"${name}", f"unknown scope '{name}'")
        return scopes[name]

    def define(self, scope: str, key: str, value: Any) -> None:
        """Set a variable. Keys are write-once in every scope but ``step``."""
        if scope not in SCOPES:
            raise ValidationError(f"Unknown variable scope: {scope}")
        target = self.get_scope(scope)
        if scope != "step" and key in target:
            raise ValidationError(f"Variable ${scope}.{key} is already defined")
        target[key] = value  # type: ignore[index]

    def record_step_result(self, index: int, output: Any) -> None:
        self.step[f"action_{index}_result"] = output

    def to_dict(self) -> dict[str, Any]:
        return {
            "global": self.global_scope,
            "recipe": self.recipe,
            "execution": self.execution,
            "step": self.step,
            "computed": self.computed,
        }


class CancellationToken:
    """Cooperative cancellation with an optional deadline.

    Checked by the engine between actions. Setting it never interrupts an action
    that is already running.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self.reason: str | None = None
        self.deadline = time.monotonic() + timeout if timeout else None

    def cancel(self, reason: str = "Execution cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


@dataclass
class ActionContext:
    """Per-invocation context handed to action executors."""

    execution_id: str
    recipe_id: str
    action_id: str
    trigger: dict[str, Any]
    variables: VariableContext
    user: dict[str, Any] = field(default_factory=dict)
    environment: str | None = None
    token: CancellationToken = field(default_factory=CancellationToken)


__all__ = [
    "CANCELLABLE_STATUSES",
    "SCOPES",
    "ActionContext",
    "ActionExecution",
    "ActionStatus",
    "CancellationToken",
    "Execution",
    "ExecutionStatus",
    "ExecutionTrigger",
    "RetryRecord",
    "VariableContext",
    "utcnow",
]
