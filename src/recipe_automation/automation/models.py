"""Recipe definition models.

Recipes, their triggers, conditions and actions are declarative documents. They are
validated with Pydantic and persisted as ``model_dump(mode="json")`` output, which
``model_validate`` turns back into an equal model.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


def generate_id(prefix: str) -> str:
    """Build an id of the form ``<prefix>_<epoch ms>_<random>``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class Condition(BaseModel):
    """A leaf comparison or a group of nested conditions.

    A leaf carries ``field``/``operator``/``value``. A group carries ``conditions``
    and combines them with ``logic``.
    """

    field: str | None = Field(default=None, description="Field, $scope.path reference or call")
    operator: str | None = Field(default=None, description="Comparison operator")
    value: Any = Field(default=None, description="Right-hand side of the comparison")
    conditions: list[Condition] | None = Field(
        default=None, description="Nested conditions evaluated as a group"
    )
    logic: Literal["AND", "OR"] = Field(default="AND", description="Group combinator")

    @field_validator("logic", mode="before")
    @classmethod
    def normalise_logic(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @model_validator(mode="after")
    def ensure_shape(self) -> Condition:
        if self.conditions is None and (not self.field or not self.operator):
            raise ValueError("condition needs 'field' and 'operator', or nested 'conditions'")
        return self

    @property
    def is_group(self) -> bool:
        return self.conditions is not None


class RetryPolicy(BaseModel):
    """Retry behaviour for a single action."""

    max_attempts: int = Field(default=1, ge=1, description="Attempts including the first")
    delay_seconds: float = Field(default=1.0, ge=0.0, description="Delay before the 2nd attempt")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Delay growth factor")
    max_delay_seconds: float = Field(default=60.0, ge=0.0, description="Delay ceiling")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.delay_seconds * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay_seconds)


class Action(BaseModel):
    """One step of a recipe."""

    id: str = Field(default_factory=lambda: f"action_{uuid.uuid4().hex[:8]}")
    type: str = Field(..., min_length=1, description="Registered action type")
    name: str | None = Field(default=None, description="Optional display name")
    config: dict[str, Any] = Field(default_factory=dict, description="Action configuration")
    conditions: list[Condition] = Field(
        default_factory=list, description="Conditions gating this action (AND)"
    )
    continue_on_error: bool = Field(
        default=False, description="Keep running later actions when this one fails"
    )
    retry: RetryPolicy | None = Field(default=None, description="Retry policy")


class RecipeTrigger(BaseModel):
    """The event gate of a recipe."""

    type: str = Field(..., min_length=1, description="Registered trigger type")
    config: dict[str, Any] = Field(default_factory=dict, description="Trigger filters")
    conditions: list[Condition] = Field(
        default_factory=list, description="Conditions evaluated against event data (AND)"
    )


class VariableDefinition(BaseModel):
    """Declared input variable for manual executions."""

    name: str = Field(..., min_length=1)
    type: (
        Literal["string", "number", "boolean", "array", "object", "date", "email", "url"] | None
    ) = None
    required: bool = False
    default: Any = None
    description: str | None = None
    min: float | None = Field(default=None, description="Minimum value or length")
    max: float | None = Field(default=None, description="Maximum value or length")
    pattern: str | None = Field(default=None, description="Regular expression for strings")
    enum: list[Any] | None = Field(default=None, description="Allowed values")
    validator: str | None = Field(default=None, description="Named validator")


class RecipeSettings(BaseModel):
    """Execution settings of a recipe."""

    timeout_seconds: float | None = Field(
        default=None, gt=0.0, description="Cooperative deadline for a whole execution"
    )
    max_concurrent_executions: int | None = Field(
        default=None, ge=1, description="Running executions allowed for this recipe"
    )
    max_executions_per_hour: int | None = Field(
        default=None, ge=1, description="Throttle gate for event-driven executions"
    )
    priority: Literal["low", "normal", "high", "urgent"] = "normal"
    environment: str | None = Field(
        default=None, description="Environment override exposed to executions"
    )
    variables: dict[str, Any] = Field(
        default_factory=dict, description="Default values for the recipe scope"
    )
    variable_definitions: list[VariableDefinition] = Field(
        default_factory=list, description="Declared variables for manual executions"
    )


class RecipeStats(BaseModel):
    """Counters maintained by the engine after every execution."""

    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    avg_execution_time: float = 0.0
    success_rate: float = 0.0
    last_executed_at: datetime | None = None
    recent_executions: list[dict[str, Any]] = Field(default_factory=list)


class Recipe(BaseModel):
    """A named automation: trigger, ordered actions and settings."""

    id: str = ""
    name: str = Field(..., min_length=1)
    description: str = ""
    owner_id: str = "system"
    enabled: bool = True
    trigger: RecipeTrigger
    actions: list[Action]
    settings: RecipeSettings = Field(default_factory=RecipeSettings)
    stats: RecipeStats = Field(default_factory=RecipeStats)
    tags: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def ensure_actions(self) -> Recipe:
        if not self.actions:
            raise ValueError("recipe must contain at least one action")
        ids = [action.id for action in self.actions]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate action ids: {', '.join(duplicates)}")
        return self

    def get_action(self, action_id: str) -> Action | None:
        return next((a for a in self.actions if a.id == action_id), None)


__all__ = [
    "Action",
    "Condition",
    "Recipe",
    "RecipeSettings",
    "RecipeStats",
    "RecipeTrigger",
    "RetryPolicy",
    "VariableDefinition",
    "generate_id",
]
