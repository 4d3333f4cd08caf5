"""Automation engine.

This module provides the AutomationEngine class that coordinates:
- Recipe lifecycle (create, update, delete) with validation and persistence
- Event intake: trigger matching, trigger conditions and the throttle gate
- The execution loop: a periodic tick that starts queued executions under a
  global and a per-recipe concurrency cap
- Sequential action execution with variable resolution, retries and backoff
- Recipe statistics, execution history and retention
- Schedule-driven recipes through the cron job manager
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..core.config import AutomationConfig
from ..core.events import EventBus
from ..core.logger import get_logger, log_exception
from ..core.persistence import RecordStore, create_record_store
from ..scheduler.cron import CronJobManager, ScheduledJob
from .actions import ActionRegistry
from .conditions import ConditionalLogicEngine
from .exceptions import (
    ExecutionAbortedError,
    ExecutionNotFoundError,
    InvalidExecutionStateError,
    RecipeNotFoundError,
    SchedulingError,
    ValidationError,
)
from .execution import (
    CANCELLABLE_STATUSES,
    ActionContext,
    ActionExecution,
    ActionStatus,
    CancellationToken,
    Execution,
    ExecutionStatus,
    ExecutionTrigger,
    RetryRecord,
    VariableContext,
    utcnow,
)
from .expression import parse_datetime
from .models import Action, Recipe, RecipeStats, RetryPolicy, generate_id
from .triggers import SCHEDULED_TRIGGER_TYPES, TriggerRegistry, TriggerType
from .variables import VariableResolver

logger = get_logger("automation.engine")

RECIPES = "recipes"
EXECUTIONS = "executions"
RECENT_EXECUTIONS_LIMIT = 100

SleepFunc = Callable[[float], Awaitable[Any]]

_FINAL_EVENTS = {
    ExecutionStatus.COMPLETED: "executionCompleted",
    ExecutionStatus.FAILED: "executionFailed",
    ExecutionStatus.CANCELLED: "executionCancelled",
}


def _pydantic_errors(exc: PydanticValidationError) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in error['loc']) or 'recipe'}: {error['msg']}"
        for error in exc.errors()
    ]


def schedule_job_id(recipe_id: str) -> str:
    """Cron job id used for a schedule-driven recipe."""
    return f"recipe.{recipe_id}"


class AutomationEngine:
    """Owns recipes and executions and runs the execution loop.

    Example:
        ```python
        engine = AutomationEngine(AutomationConfig(), services={"notifications": notifier})
        await engine.initialize()
        engine.create_recipe({...})
        engine.handle_trigger_event("email_received", {"subject": "URGENT: server down"})
        ...
        await engine.shutdown()
        ```
    """

    def __init__(
        self,
        config: AutomationConfig | None = None,
        store: RecordStore | None = None,
        events: EventBus | None = None,
        services: Mapping[str, Any] | None = None,
        trigger_registry: TriggerRegistry | None = None,
        action_registry: ActionRegistry | None = None,
        condition_engine: ConditionalLogicEngine | None = None,
        variable_resolver: VariableResolver | None = None,
        cron_manager: CronJobManager | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Engine configuration
            store: Record store; built from ``config.persistence`` when omitted
            events: Event bus for lifecycle events
            services: Collaborators used by the built-in actions
            trigger_registry: Trigger catalog
            action_registry: Action catalog
            condition_engine: Conditional logic engine
            variable_resolver: Variable resolver
            cron_manager: Cron job manager for schedule-driven recipes
            sleep: Coroutine used for retry backoff
        """
        self.config = config or AutomationConfig()
        self.events = events or EventBus()
        self._owns_store = store is None
        self.store = store or create_record_store(self.config.persistence)
        self.condition_engine = condition_engine or ConditionalLogicEngine()
        self.variable_resolver = variable_resolver or VariableResolver(self.config.variables)
        self.trigger_registry = trigger_registry or TriggerRegistry(self.events)
        self.action_registry = action_registry or ActionRegistry(
            events=self.events,
            services=services,
            http_config=self.config.http,
            condition_engine=self.condition_engine,
            variable_resolver=self.variable_resolver,
            sleep=sleep,
        )
        self.cron_manager = cron_manager or CronJobManager(
            self.config.scheduler, self.store, self.events
        )
        self._sleep = sleep

        self._recipes: dict[str, Recipe] = {}
        self._executions: dict[str, Execution] = {}
        self._queue: deque[str] = deque()
        self._active: dict[str, asyncio.Task] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.RLock()

        self._loop_task: asyncio.Task | None = None
        self._unsubscribe_jobs: Callable[[], None] | None = None
        self._accepting = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def initialize(self) -> None:
        """Register built-ins, restore state, start the cron manager and the loop."""
        if self.running:
            return

        self.trigger_registry.register_builtin_triggers()
        self.action_registry.register_builtin_actions()
        self._load_persisted_state()

        self._accepting = True
        self._unsubscribe_jobs = self.events.subscribe("executeJob", self._on_execute_job)
        self.cron_manager.initialize()
        self._restore_schedules()

        self._loop_task = asyncio.create_task(self._run_loop())
        self._prune_history()
        logger.info(
            "Automation engine started with %d recipes (max %d concurrent executions)",
            len(self._recipes),
            self.config.engine.max_concurrent_executions,
        )

    async def shutdown(self, timeout: float | None = None) -> None:
        """Stop the engine.

        Queued executions are cancelled, running ones get up to ``timeout`` seconds
        to finish before they are cancelled too. State is persisted afterwards.
        """
        if timeout is None:
            timeout = self.config.engine.shutdown_timeout_seconds
        self._accepting = False

        with self._lock:
            queued = [self._executions[i] for i in self._queue if i in self._executions]
            self._queue.clear()
        for execution in queued:
            self._finalize(execution, ExecutionStatus.CANCELLED, "Engine shutting down")

        deadline = time.monotonic() + timeout
        while self._active_count() and time.monotonic() < deadline:
            await asyncio.sleep(min(self.config.engine.tick_interval_seconds, 0.05))

        with self._lock:
            leftovers = list(self._active.items())
        if leftovers:
            logger.warning("Cancelling %d executions still running at shutdown", len(leftovers))
            for execution_id, task in leftovers:
                token = self._tokens.get(execution_id)
                if token:
                    token.cancel("Engine shutting down")
                task.cancel()
            await asyncio.gather(*(task for _, task in leftovers), return_exceptions=True)

        if self._loop_task:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        self._persist_all()
        if self._unsubscribe_jobs:
            self._unsubscribe_jobs()
            self._unsubscribe_jobs = None
        self.cron_manager.shutdown()
        self.variable_resolver.clear_cache()
        if self._owns_store:
            self.store.close()
        logger.info("Automation engine stopped")

    # ------------------------------------------------------------------
    # Recipe management
    # ------------------------------------------------------------------
    def validate_recipe(self, recipe: Recipe) -> list[str]:
        """Collect every problem with a recipe's trigger, conditions and actions."""
        errors: list[str] = []
        trigger = recipe.trigger
        if not self.trigger_registry.is_valid_trigger(trigger.type):
            errors.append(f"Unknown trigger type: {trigger.type}")
        else:
            errors.extend(
                f"trigger: {problem}"
                for problem in self.trigger_registry.get_config_errors(trigger.type, trigger.config)
            )
        for index, condition in enumerate(trigger.conditions):
            errors.extend(
                self.condition_engine.validate_condition(condition, f"trigger.conditions[{index}]")
            )

        for index, action in enumerate(recipe.actions):
            label = f"actions[{index}] ({action.id})"
            if not self.action_registry.is_valid_action(action.type):
                errors.append(f"{label}: Unknown action type: {action.type}")
                continue
            errors.extend(
                f"{label}: {problem}"
                for problem in self.action_registry.get_config_errors(action.type, action.config)
            )
            for c_index, condition in enumerate(action.conditions):
                errors.extend(
                    self.condition_engine.validate_condition(
                        condition, f"{label}.conditions[{c_index}]"
                    )
                )
        return errors

    def create_recipe(self, data: Recipe | Mapping[str, Any]) -> Recipe:
        """Validate, store and (for time-based triggers) schedule a recipe.

        Args:
            data: Recipe model or mapping

        Returns:
            A copy of the stored recipe, with its id and timestamps set

        Raises:
            ValidationError: If the recipe is invalid; nothing is stored
        """
        recipe = self._coerce_recipe(data)
        errors = self.validate_recipe(recipe)
        if errors:
            raise ValidationError("Invalid recipe", errors)

        now = utcnow()
        recipe.id = recipe.id or generate_id("recipe")
        recipe.created_at = now
        recipe.updated_at = now
        recipe.stats = RecipeStats()

        with self._lock:
            if recipe.id in self._recipes:
                raise ValidationError(f"Recipe already exists: {recipe.id}")
            self._recipes[recipe.id] = recipe
        try:
            self._sync_schedule(recipe)
        except SchedulingError:
            with self._lock:
                self._recipes.pop(recipe.id, None)
            raise

        self._persist_recipe(recipe)
        logger.info("Created recipe %s (%s)", recipe.id, recipe.name)
        self.events.emit("recipeCreated", {"recipe_id": recipe.id, "name": recipe.name})
        return recipe.model_copy(deep=True)

    def update_recipe(self, recipe_id: str, updates: Mapping[str, Any]) -> Recipe:
        """Apply a partial update to a recipe.

        ``id``, ``created_at`` and ``stats`` cannot be changed.

        Raises:
            RecipeNotFoundError: If the recipe does not exist
            ValidationError: If the updated recipe is invalid; nothing is changed
        """
        with self._lock:
            current = self._recipes.get(recipe_id)
            if current is None:
                raise RecipeNotFoundError(recipe_id)
            merged = current.model_dump(mode="json")

        protected = {"id", "created_at", "updated_at", "stats"}
        merged.update({k: v for k, v in updates.items() if k not in protected})
        candidate = self._coerce_recipe(merged)
        errors = self.validate_recipe(candidate)
        if errors:
            raise ValidationError("Invalid recipe", errors)

        candidate.id = recipe_id
        candidate.created_at = current.created_at
        candidate.updated_at = utcnow()
        with self._lock:
            candidate.stats = self._recipes[recipe_id].stats
            self._recipes[recipe_id] = candidate
        try:
            self._sync_schedule(candidate, previous=current)
        except SchedulingError:
            with self._lock:
                self._recipes[recipe_id] = current
            raise

        self._persist_recipe(candidate)
        logger.info("Updated recipe %s", recipe_id)
        self.events.emit("recipeUpdated", {"recipe_id": recipe_id, "name": candidate.name})
        return candidate.model_copy(deep=True)

    def delete_recipe(self, recipe_id: str) -> None:
        """Delete a recipe, cancel its pending executions and drop its schedule.

        Raises:
            RecipeNotFoundError: If the recipe does not exist
        """
        with self._lock:
            recipe = self._recipes.pop(recipe_id, None)
            if recipe is None:
                raise RecipeNotFoundError(recipe_id)
            pending = [
                e
                for e in self._executions.values()
                if e.recipe_id == recipe_id and e.status in CANCELLABLE_STATUSES
            ]

        for execution in pending:
            self._cancel(execution, "Recipe deleted")
        self.cron_manager.remove_jobs_for_recipe(recipe_id)
        self.store.delete(RECIPES, recipe_id)
        logger.info("Deleted recipe %s", recipe_id)
        self.events.emit("recipeDeleted", {"recipe_id": recipe_id, "name": recipe.name})

    def get_recipe(self, recipe_id: str) -> Recipe | None:
        with self._lock:
            recipe = self._recipes.get(recipe_id)
            return recipe.model_copy(deep=True) if recipe else None

    def get_recipes(self, owner_id: str | None = None) -> list[Recipe]:
        with self._lock:
            return [
                r.model_copy(deep=True)
                for r in self._recipes.values()
                if owner_id is None or r.owner_id == owner_id
            ]

    def get_available_triggers(self) -> list[dict[str, Any]]:
        return self.trigger_registry.get_all_triggers()

    def get_available_actions(self) -> list[dict[str, Any]]:
        return self.action_registry.get_all_actions()

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------
    def handle_trigger_event(
        self,
        event_type: str,
        data: Mapping[str, Any],
        timestamp: datetime | None = None,
    ) -> list[str]:
        """Queue an execution for every enabled recipe the event matches.

        Args:
            event_type: Event type, e.g. ``email_received``
            data: Event payload
            timestamp: When the event happened, defaults to now

        Returns:
            Ids of the queued executions
        """
        if not self._accepting:
            logger.debug("Ignoring %s event: engine is not running", event_type)
            return []

        timestamp = timestamp or utcnow()
        data = dict(data or {})
        context = {"event": {"type": event_type, "data": data}, "now": timestamp}
        scopes = {"global": self.config.engine.global_variables}

        with self._lock:
            candidates = [
                r
                for r in self._recipes.values()
                if r.enabled and r.trigger.type not in SCHEDULED_TRIGGER_TYPES
            ]

        queued: list[str] = []
        for recipe in candidates:
            try:
                if not self.trigger_registry.execute_trigger(
                    recipe.trigger.type, recipe.trigger.config, context
                ):
                    continue
                if not self.condition_engine.evaluate_conditions(
                    recipe.trigger.conditions, data, scopes
                ):
                    continue
            except Exception as exc:
                logger.error("Failed to match recipe %s against %s: %s", recipe.id, event_type, exc)
                continue

            trigger = ExecutionTrigger(type=event_type, data=data, timestamp=timestamp)
            execution = self._enqueue(recipe, trigger, self._base_context(recipe, data), True)
            if execution:
                queued.append(execution.id)
        return queued

    def execute_recipe(
        self,
        recipe_id: str,
        context: Mapping[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> Execution:
        """Queue a manual execution.

        Args:
            recipe_id: Recipe to run
            context: Optional ``trigger`` data, ``variables`` and ``user``
            timestamp: Trigger time, defaults to now

        Returns:
            The queued execution

        Raises:
            RecipeNotFoundError: If the recipe does not exist
            ValidationError: If the recipe is disabled or the variables are invalid
            RuntimeError: If the engine is not running
        """
        with self._lock:
            recipe = self._recipes.get(recipe_id)
        if recipe is None:
            raise RecipeNotFoundError(recipe_id)
        if not recipe.enabled:
            raise ValidationError(f"Recipe is disabled: {recipe_id}")

        context = dict(context or {})
        definitions = recipe.settings.variable_definitions
        variables = dict(context.get("variables") or {})
        errors = self.variable_resolver.validate_variables(variables, definitions)
        if errors:
            raise ValidationError("Invalid variables", errors)

        trigger_data = dict(context.get("trigger") or {})
        execution_context = self._base_context(recipe, trigger_data)
        execution_context["variables"] = self.variable_resolver.apply_defaults(
            variables, definitions
        )
        execution_context["user"] = dict(context.get("user") or {})

        trigger = ExecutionTrigger(
            type=TriggerType.MANUAL.value, data=trigger_data, timestamp=timestamp or utcnow()
        )
        execution = self._enqueue(recipe, trigger, execution_context, False)
        if execution is None:
            raise RuntimeError("Automation engine is not running")
        return execution

    def _on_execute_job(self, event: str, payload: Mapping[str, Any]) -> None:
        recipe_id = payload.get("recipe_id")
        with self._lock:
            recipe = self._recipes.get(recipe_id) if recipe_id else None
        if recipe is None or not recipe.enabled:
            logger.debug("Ignoring scheduled fire for unavailable recipe %s", recipe_id)
            return

        fired_at = payload.get("execution_time") or utcnow()
        data = {
            "job_id": payload.get("job_id"),
            "job_name": payload.get("job_name"),
            "scheduled_time": fired_at.isoformat(),
        }
        trigger = ExecutionTrigger(type=recipe.trigger.type, data=data, timestamp=fired_at)
        self._enqueue(recipe, trigger, self._base_context(recipe, data), True)

    def _base_context(self, recipe: Recipe, trigger_data: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "trigger": dict(trigger_data),
            "user": {},
            "variables": {},
            "environment": recipe.settings.environment or self.config.environment,
        }

    def _is_throttled(self, recipe: Recipe) -> bool:
        limit = recipe.settings.max_executions_per_hour
        if limit is None:
            return False
        cutoff = utcnow() - timedelta(hours=1)
        recent = sum(
            1
            for e in self._executions.values()
            if e.recipe_id == recipe.id and e.created_at >= cutoff
        )
        return recent >= limit

    def _enqueue(
        self,
        recipe: Recipe,
        trigger: ExecutionTrigger,
        context: dict[str, Any],
        throttle: bool,
    ) -> Execution | None:
        with self._lock:
            if not self._accepting:
                return None
            if throttle and self._is_throttled(recipe):
                throttled = True
                execution = None
            else:
                throttled = False
                execution = Execution(
                    id=generate_id("exec"),
                    recipe_id=recipe.id,
                    trigger=trigger,
                    context=context,
                )
                self._executions[execution.id] = execution
                self._queue.append(execution.id)

        if throttled:
            logger.info(
                "Recipe %s throttled (max %s executions per hour)",
                recipe.id,
                recipe.settings.max_executions_per_hour,
            )
            self.events.emit(
                "executionThrottled",
                {"recipe_id": recipe.id, "limit": recipe.settings.max_executions_per_hour},
            )
            return None
        if execution is None:
            return None

        self._persist_execution(execution)
        logger.debug("Queued execution %s for recipe %s", execution.id, recipe.id)
        self.events.emit("executionQueued", {"recipe_id": recipe.id, **execution.summary()})
        return execution

    # ------------------------------------------------------------------
    # Execution loop
    # ------------------------------------------------------------------
    async def _run_loop(self) -> None:
        interval = self.config.engine.tick_interval_seconds
        while True:
            try:
                self._tick()
            except Exception as exc:
                logger.error("Execution loop tick failed: %s", exc, exc_info=True)
            await asyncio.sleep(interval)

    def _tick(self) -> None:
        """Start at most one queued execution if capacity allows."""
        with self._lock:
            if len(self._active) >= self.config.engine.max_concurrent_executions:
                return
            execution = self._dequeue()
            if execution is None:
                return
            recipe = self._recipes[execution.recipe_id]
            token = CancellationToken(recipe.settings.timeout_seconds)
            execution.status = ExecutionStatus.RUNNING
            execution.started_at = utcnow()
            self._tokens[execution.id] = token
            self._active[execution.id] = asyncio.create_task(
                self._run_execution(execution, recipe, token)
            )

    def _dequeue(self) -> Execution | None:
        """Pop the first queued execution whose recipe is below its own cap."""
        running_per_recipe: dict[str, int] = {}
        for execution_id in self._active:
            active = self._executions.get(execution_id)
            if active is not None:
                count = running_per_recipe.get(active.recipe_id, 0)
                running_per_recipe[active.recipe_id] = count + 1

        for execution_id in list(self._queue):
            execution = self._executions.get(execution_id)
            recipe = self._recipes.get(execution.recipe_id) if execution else None
            if execution is None or recipe is None or execution.status.is_terminal:
                self._queue.remove(execution_id)
                continue
            cap = recipe.settings.max_concurrent_executions
            if cap is not None and running_per_recipe.get(recipe.id, 0) >= cap:
                continue
            self._queue.remove(execution_id)
            return execution
        return None

    async def _run_execution(
        self, execution: Execution, recipe: Recipe, token: CancellationToken
    ) -> None:
        logger.info("Execution %s of recipe %s started", execution.id, recipe.id)
        self.events.emit("executionStarted", {"recipe_id": recipe.id, **execution.summary()})
        try:
            variables = self._build_variable_context(recipe, execution)
            status = await self._execute_actions(recipe, execution, variables, token)
            self._finalize(execution, status)
        except ExecutionAbortedError as exc:
            self._finalize(execution, ExecutionStatus.FAILED, str(exc))
        except asyncio.CancelledError:
            self._finalize(execution, ExecutionStatus.CANCELLED, token.reason or "Cancelled")
            raise
        except Exception as exc:
            log_exception(logger, exc, f"Execution {execution.id} crashed")
            self._finalize(execution, ExecutionStatus.FAILED, str(exc))
        finally:
            with self._lock:
                self._active.pop(execution.id, None)
                self._tokens.pop(execution.id, None)
            self.variable_resolver.clear_cache(execution.id)
            self._prune_history()

    def _build_variable_context(self, recipe: Recipe, execution: Execution) -> VariableContext:
        recipe_scope = dict(recipe.settings.variables)
        recipe_scope.update(execution.context.get("variables") or {})
        return VariableContext(
            global_scope=dict(self.config.engine.global_variables),
            recipe=recipe_scope,
            execution={
                "trigger": execution.trigger.data,
                "trigger_type": execution.trigger.type,
                "timestamp": execution.trigger.timestamp,
                "execution_id": execution.id,
                "recipe_id": recipe.id,
                "environment": execution.context.get("environment"),
                "user": execution.context.get("user") or {},
            },
            metadata={"recipe_name": recipe.name, "priority": recipe.settings.priority},
        )

    async def _execute_actions(
        self,
        recipe: Recipe,
        execution: Execution,
        variables: VariableContext,
        token: CancellationToken,
    ) -> ExecutionStatus:
        for index, action in enumerate(recipe.actions):
            if token.cancelled:
                return ExecutionStatus.CANCELLED
            if token.expired:
                raise ExecutionAbortedError(
                    f"Execution timed out after {recipe.settings.timeout_seconds}s"
                )
            record = await self._execute_action(execution, action, index, variables, token)
            if record.status is ActionStatus.FAILED and not action.continue_on_error:
                raise ExecutionAbortedError(
                    f"Action {action.id} ({action.type}) failed: {record.error}", action.id
                )
        return ExecutionStatus.COMPLETED

    async def _execute_action(
        self,
        execution: Execution,
        action: Action,
        index: int,
        variables: VariableContext,
        token: CancellationToken,
    ) -> ActionExecution:
        record = ActionExecution(action_id=action.id, type=action.type, started_at=utcnow())
        with self._lock:
            execution.actions.append(record)

        context = ActionContext(
            execution_id=execution.id,
            recipe_id=execution.recipe_id,
            action_id=action.id,
            trigger=execution.trigger.data,
            variables=variables,
            user=execution.context.get("user") or {},
            environment=execution.context.get("environment"),
            token=token,
        )

        if action.conditions:
            try:
                passed = self.condition_engine.evaluate_conditions(
                    action.conditions, execution.trigger.data, variables
                )
            except Exception as exc:
                record.finish(ActionStatus.FAILED, f"Condition evaluation failed: {exc}")
                return record
            if not passed:
                record.skipped = True
                record.output = {"skipped": True, "reason": "Conditions not met"}
                record.finish(ActionStatus.COMPLETED)
                variables.record_step_result(index, record.output)
                return record

        policy = action.retry or RetryPolicy()
        record.status = ActionStatus.RUNNING
        for attempt in range(1, policy.max_attempts + 1):
            try:
                resolved = self.action_registry.resolve_config(
                    action.type, action.config, context, self.variable_resolver
                )
                record.input = resolved
                output = await self.action_registry.execute_action(action.type, resolved, context)
            except Exception as exc:
                error = str(exc)
                last_attempt = attempt >= policy.max_attempts
                delay = 0.0 if last_attempt else policy.delay_for(attempt)
                record.retries.append(RetryRecord(attempt, utcnow(), error, delay))
                if last_attempt:
                    logger.warning(
                        "Action %s of execution %s failed after %d attempt(s): %s",
                        action.id,
                        execution.id,
                        attempt,
                        error,
                    )
                    record.finish(ActionStatus.FAILED, error)
                    return record
                logger.warning(
                    "Action %s of execution %s failed (attempt %d/%d), retrying in %.2fs: %s",
                    action.id,
                    execution.id,
                    attempt,
                    policy.max_attempts,
                    delay,
                    error,
                )
                self.events.emit(
                    "actionRetry",
                    {
                        "execution_id": execution.id,
                        "action_id": action.id,
                        "attempt": attempt,
                        "delay": delay,
                        "error": error,
                    },
                )
                await self._sleep(delay)
            else:
                record.output = output
                record.finish(ActionStatus.COMPLETED)
                variables.record_step_result(index, output)
                return record
        return record

    def _finalize(
        self, execution: Execution, status: ExecutionStatus, error: str | None = None
    ) -> None:
        with self._lock:
            if execution.status.is_terminal:
                return
            execution.finalize(status, error)
            recipe = self._recipes.get(execution.recipe_id)
            if recipe is not None:
                self._update_stats(recipe, execution)

        self._persist_execution(execution)
        if recipe is not None:
            self._persist_recipe(recipe)

        if status is ExecutionStatus.FAILED:
            logger.error("Execution %s failed: %s", execution.id, execution.error)
        else:
            logger.info("Execution %s %s", execution.id, status.value)
        self.events.emit(
            _FINAL_EVENTS[status], {"recipe_id": execution.recipe_id, **execution.summary()}
        )
        self._prune_history()

    def _update_stats(self, recipe: Recipe, execution: Execution) -> None:
        stats = recipe.stats
        stats.total_executions += 1
        if execution.status is ExecutionStatus.COMPLETED:
            stats.successful_executions += 1
        elif execution.status is ExecutionStatus.FAILED:
            stats.failed_executions += 1

        n = stats.total_executions
        duration = execution.duration or 0.0
        stats.avg_execution_time = (stats.avg_execution_time * (n - 1) + duration) / n
        stats.success_rate = stats.successful_executions / n
        stats.last_executed_at = execution.started_at or execution.created_at
        stats.recent_executions.insert(0, execution.summary())
        del stats.recent_executions[RECENT_EXECUTIONS_LIMIT:]

    # ------------------------------------------------------------------
    # Cancellation and queries
    # ------------------------------------------------------------------
    def cancel_execution(self, execution_id: str) -> Execution:
        """Cancel a queued, running or paused execution.

        A running action is not interrupted; the execution stops before its next
        action.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
            InvalidExecutionStateError: If the execution already finished
        """
        with self._lock:
            execution = self._executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        if execution.status not in CANCELLABLE_STATUSES:
            raise InvalidExecutionStateError(execution_id, execution.status.value)
        self._cancel(execution, "Execution cancelled")
        return execution

    def _cancel(self, execution: Execution, reason: str) -> None:
        with self._lock:
            if execution.id in self._queue:
                self._queue.remove(execution.id)
            token = self._tokens.get(execution.id)
        if token:
            token.cancel(reason)
        self._finalize(execution, ExecutionStatus.CANCELLED, reason)

    def get_execution(self, execution_id: str) -> Execution | None:
        with self._lock:
            return self._executions.get(execution_id)

    def get_executions(self, recipe_id: str | None = None, limit: int = 100) -> list[Execution]:
        """Executions, newest first."""
        with self._lock:
            executions = [
                e
                for e in self._executions.values()
                if recipe_id is None or e.recipe_id == recipe_id
            ]
        executions.sort(key=lambda e: e.created_at, reverse=True)
        return executions[:limit]

    async def wait_for_execution(
        self, execution_id: str, timeout: float | None = None
    ) -> Execution:
        """Poll until an execution reaches a terminal status.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
            TimeoutError: If it is still not finished after ``timeout`` seconds
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            execution = self.get_execution(execution_id)
            if execution is None:
                raise ExecutionNotFoundError(execution_id)
            if execution.status.is_terminal:
                return execution
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError(f"Execution {execution_id} did not finish in {timeout}s")
            await asyncio.sleep(self.config.engine.tick_interval_seconds)

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            recipes = list(self._recipes.values())
            executions = list(self._executions.values())
            queued = len(self._queue)
            active = len(self._active)

        successful = sum(1 for e in executions if e.status is ExecutionStatus.COMPLETED)
        failed = sum(1 for e in executions if e.status is ExecutionStatus.FAILED)
        durations = [
            e.duration
            for e in executions
            if e.status in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)
            and e.duration is not None
        ]
        return {
            "total_recipes": len(recipes),
            "active_recipes": sum(1 for r in recipes if r.enabled),
            "total_executions": len(executions),
            "successful_executions": successful,
            "failed_executions": failed,
            "avg_execution_time": sum(durations) / len(durations) if durations else 0.0,
            "success_rate": successful / (successful + failed) if successful + failed else 0.0,
            "queued_executions": queued,
            "active_executions": active,
        }

    def _active_count(self) -> int:
        with self._lock:
            return len(self._active)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def _sync_schedule(self, recipe: Recipe, previous: Recipe | None = None) -> None:
        job_id = schedule_job_id(recipe.id)
        existing = self.cron_manager.get_job(job_id)

        if recipe.trigger.type not in SCHEDULED_TRIGGER_TYPES:
            if existing is not None:
                self.cron_manager.delete_job(job_id)
            return

        if existing is None or previous is None or previous.trigger != recipe.trigger:
            if existing is not None:
                self.cron_manager.delete_job(job_id)
            self._schedule_recipe(recipe)
        elif previous.enabled != recipe.enabled and isinstance(existing, ScheduledJob):
            if recipe.enabled:
                self.cron_manager.enable_job(job_id)
            else:
                self.cron_manager.disable_job(job_id)

    def _schedule_recipe(self, recipe: Recipe) -> None:
        config = recipe.trigger.config
        job_id = schedule_job_id(recipe.id)
        start_date = config.get("start_date")
        end_date = config.get("end_date")
        if recipe.trigger.type == TriggerType.SCHEDULE.value:
            self.cron_manager.schedule_recurring_job(
                recipe_id=recipe.id,
                name=recipe.name,
                cron_expression=config["cron"],
                timezone=config.get("timezone"),
                start_date=parse_datetime(start_date) if start_date else None,
                end_date=parse_datetime(end_date) if end_date else None,
                max_runs=config.get("max_runs"),
                enabled=recipe.enabled,
                job_id=job_id,
            )
        else:
            self.cron_manager.schedule_one_time_job(
                recipe_id=recipe.id,
                name=recipe.name,
                execute_at=parse_datetime(config["date_time"]),
                timezone=config.get("timezone"),
                job_id=job_id,
            )

    def _restore_schedules(self) -> None:
        with self._lock:
            recipes = [
                r for r in self._recipes.values() if r.trigger.type in SCHEDULED_TRIGGER_TYPES
            ]
        for recipe in recipes:
            if self.cron_manager.get_job(schedule_job_id(recipe.id)) is not None:
                continue
            try:
                self._schedule_recipe(recipe)
            except SchedulingError as exc:
                logger.warning("Could not restore schedule for recipe %s: %s", recipe.id, exc)

    # ------------------------------------------------------------------
    # Persistence and retention
    # ------------------------------------------------------------------
    def _coerce_recipe(self, data: Recipe | Mapping[str, Any]) -> Recipe:
        if isinstance(data, Recipe):
            return data.model_copy(deep=True)
        try:
            return Recipe.model_validate(dict(data))
        except PydanticValidationError as exc:
            raise ValidationError("Invalid recipe", _pydantic_errors(exc)) from exc

    def _persist_recipe(self, recipe: Recipe) -> None:
        self.store.save(RECIPES, recipe.id, recipe.model_dump(mode="json"))

    def _persist_execution(self, execution: Execution) -> None:
        with self._lock:
            record = execution.to_dict()
        self.store.save(EXECUTIONS, execution.id, record)

    def _persist_all(self) -> None:
        with self._lock:
            recipes = list(self._recipes.values())
            executions = list(self._executions.values())
        for recipe in recipes:
            self._persist_recipe(recipe)
        for execution in executions:
            self._persist_execution(execution)

    def _load_persisted_state(self) -> None:
        loaded_recipes = 0
        for record in self.store.list_all(RECIPES):
            try:
                recipe = Recipe.model_validate(record)
            except PydanticValidationError as exc:
                logger.warning("Skipping unreadable recipe %s: %s", record.get("id"), exc)
                continue
            with self._lock:
                self._recipes[recipe.id] = recipe
            loaded_recipes += 1

        interrupted = []
        for record in self.store.list_all(EXECUTIONS):
            try:
                execution = Execution.from_dict(record)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable execution %s: %s", record.get("id"), exc)
                continue
            if not execution.status.is_terminal:
                execution.finalize(ExecutionStatus.CANCELLED, "Interrupted by restart")
                interrupted.append(execution)
            with self._lock:
                self._executions[execution.id] = execution
        for execution in interrupted:
            self._persist_execution(execution)
        logger.debug(
            "Loaded %d recipes and %d executions", loaded_recipes, len(self._executions)
        )

    def _prune_history(self) -> None:
        """Drop finished executions beyond the history cap or the retention window."""
        cutoff = utcnow() - timedelta(days=self.config.engine.execution_retention_days)
        with self._lock:
            finished = sorted(
                (
                    e
                    for e in self._executions.values()
                    if e.status.is_terminal and e.id not in self._active
                ),
                key=lambda e: e.created_at,
            )
            excess = len(self._executions) - self.config.engine.max_execution_history
            removed = []
            for execution in finished:
                if excess <= 0 and execution.created_at >= cutoff:
                    break
                removed.append(execution.id)
                excess -= 1
            for execution_id in removed:
                del self._executions[execution_id]
        for execution_id in removed:
            self.store.delete(EXECUTIONS, execution_id)
        if removed:
            logger.debug("Pruned %d executions from history", len(removed))


__all__ = [
    "EXECUTIONS",
    "RECIPES",
    "AutomationEngine",
    "schedule_job_id",
]
