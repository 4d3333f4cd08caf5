"""Action registry and built-in action kinds.

An action kind validates its configuration and performs one unit of work against
an already-resolved config. Integrations (mail, calendar, tasks, notifications,
messaging, search) are injected as plain service objects whose methods may be
sync or async. HTTP actions use ``httpx``.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx

from ..core.config import HTTPClientConfig
from ..core.events import EventBus
from ..core.logger import get_logger
from .exceptions import ActionError, UnknownActionTypeError
from .execution import ActionContext, utcnow

if TYPE_CHECKING:
    from .conditions import ConditionalLogicEngine
    from .variables import VariableResolver

logger = get_logger("automation.actions")
recipe_logger = get_logger("automation.recipes")

SleepFunc = Callable[[float], Awaitable[Any]]

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")


class ActionType(str, Enum):
    """Built-in action kinds."""

    SEND_EMAIL = "send_email"
    REPLY_EMAIL = "reply_email"
    ARCHIVE_EMAIL = "archive_email"
    CREATE_EVENT = "create_event"
    UPDATE_EVENT = "update_event"
    CREATE_TASK = "create_task"
    SEND_NOTIFICATION = "send_notification"
    SEND_MESSAGE = "send_message"
    PERFORM_SEARCH = "perform_search"
    API_REQUEST = "api_request"
    WEBHOOK_CALL = "webhook_call"
    WAIT = "wait"
    LOG_EVENT = "log_event"
    SET_VARIABLE = "set_variable"
    CONDITIONAL = "conditional"


def _timestamp() -> str:
    return utcnow().isoformat()


def _is_reference(value: Any) -> bool:
    """Values that only become concrete after variable resolution."""
    return isinstance(value, str) and (value.startswith("$") or "{{" in value)


def _field(result: Any, name: str) -> Any:
    if isinstance(result, Mapping):
        return result.get(name)
    return getattr(result, name, None)


async def _invoke(func: Callable[..., Any], *args: Any) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


# ----------------------------------------------------------------------
# Action definitions
# ----------------------------------------------------------------------


class ActionDefinition(ABC):
    """One action kind: config validator plus async executor."""

    type: str
    name: str
    description: str = ""
    schema: dict[str, Any] = {"type": "object", "properties": {}}
    required_keys: tuple[str, ...] = ()
    # Config keys passed to execute() exactly as written in the recipe.
    raw_config_keys: frozenset[str] = frozenset()

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        """Describe what is wrong with ``config``. Empty when valid."""
        return [
            f"'{key}' is required"
            for key in self.required_keys
            if config.get(key) in (None, "")
        ]

    def validate(self, config: Mapping[str, Any]) -> bool:
        return not self.get_config_errors(config)

    @abstractmethod
    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        """Run the action.

        Raises:
            ActionError: If the action fails
        """

    def describe(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "schema": self.schema,
        }


class ServiceAction(ActionDefinition):
    """Adapter onto an injected collaborator service."""

    service: str

    def __init__(self, services: Mapping[str, Any]) -> None:
        self.services = services

    def get_service(self) -> Any:
        service = self.services.get(self.service)
        if service is None:
            raise ActionError(f"No '{self.service}' service configured", self.type)
        return service

    async def call(self, method: str, *args: Any) -> Any:
        func = getattr(self.get_service(), method, None)
        if func is None:
            raise ActionError(f"Service '{self.service}' does not support {method}", self.type)
        return await _invoke(func, *args)


class SendEmailAction(ServiceAction):
    type = ActionType.SEND_EMAIL.value
    name = "Send Email"
    description = "Send an email from a connected account"
    service = "email"
    required_keys = ("to", "subject")
    schema = {
        "type": "object",
        "properties": {
            "account_id": {"type": "string"},
            "to": {"type": "array", "items": {"type": "string"}},
            "cc": {"type": "array", "items": {"type": "string"}},
            "bcc": {"type": "array", "items": {"type": "string"}},
            "subject": {"type": "string"},
            "body": {"type": "string"},
            "attachments": {"type": "array"},
        },
        "required": ["to", "subject"],
    }

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        to = config["to"]
        result = await self.call(
            "send_email",
            {
                "account_id": config.get("account_id"),
                "to": to if isinstance(to, list) else [to],
                "cc": config.get("cc") or [],
                "bcc": config.get("bcc") or [],
                "subject": config["subject"],
                "body": config.get("body") or "",
                "attachments": config.get("attachments") or [],
            },
        )
        return {
            "success": True,
            "message_id": _field(result, "message_id"),
            "timestamp": _timestamp(),
        }


class ReplyEmailAction(ServiceAction):
    type = ActionType.REPLY_EMAIL.value
    name = "Reply to Email"
    description = "Reply to an existing email"
    service = "email"
    required_keys = ("email_id", "body")

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        result = await self.call(
            "reply_to_email",
            {
                "email_id": config["email_id"],
                "body": config["body"],
                "reply_all": bool(config.get("reply_all", False)),
            },
        )
        return {
            "success": True,
            "message_id": _field(result, "message_id"),
            "timestamp": _timestamp(),
        }


class ArchiveEmailAction(ServiceAction):
    type = ActionType.ARCHIVE_EMAIL.value
    name = "Archive Email"
    description = "Move an email to the archive"
    service = "email"
    required_keys = ("email_id",)

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        await self.call("archive_email", config["email_id"])
        return {"success": True, "email_id": config["email_id"], "timestamp": _timestamp()}


class CreateEventAction(ServiceAction):
    type = ActionType.CREATE_EVENT.value
    name = "Create Calendar Event"
    description = "Create an event in a connected calendar"
    service = "calendar"
    required_keys = ("title", "start_time", "end_time")

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        event = await self.call(
            "create_event",
            {
                "calendar_id": config.get("calendar_id"),
                "title": config["title"],
                "description": config.get("description"),
                "start_time": config["start_time"],
                "end_time": config["end_time"],
                "location": config.get("location"),
                "attendees": config.get("attendees") or [],
            },
        )
        return {
            "success": True,
            "event_id": _field(event, "id"),
            "title": config["title"],
            "start_time": config["start_time"],
            "end_time": config["end_time"],
        }


class UpdateEventAction(ServiceAction):
    type = ActionType.UPDATE_EVENT.value
    name = "Update Calendar Event"
    description = "Update fields of an existing calendar event"
    service = "calendar"
    required_keys = ("event_id",)
    updatable = ("title", "description", "start_time", "end_time", "location", "attendees")

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        changes = {key: config[key] for key in self.updatable if config.get(key) is not None}
        event = await self.call("update_event", config["event_id"], changes)
        return {
            "success": True,
            "event_id": _field(event, "id") or config["event_id"],
            "updated": True,
            "timestamp": _timestamp(),
        }


class CreateTaskAction(ServiceAction):
    type = ActionType.CREATE_TASK.value
    name = "Create Task"
    description = "Create a task in a task management service"
    service = "tasks"
    required_keys = ("title",)

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        task = await self.call(
            "create_task",
            {
                "service": config.get("service"),
                "project_id": config.get("project_id"),
                "title": config["title"],
                "description": config.get("description"),
                "assignee": config.get("assignee"),
                "due_date": config.get("due_date"),
                "priority": config.get("priority"),
                "labels": config.get("labels") or [],
            },
        )
        return {
            "success": True,
            "service": config.get("service"),
            "task_id": _field(task, "id"),
            "url": _field(task, "url"),
            "timestamp": _timestamp(),
        }


class SendNotificationAction(ServiceAction):
    type = ActionType.SEND_NOTIFICATION.value
    name = "Send Notification"
    description = "Show a desktop notification"
    service = "notifications"
    required_keys = ("title", "body")

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        priority = config.get("priority", "normal")
        kind = {"urgent": "error", "high": "warning"}.get(priority, "info")
        await self.call(
            "show",
            {
                "title": config["title"],
                "body": config["body"],
                "type": kind,
                "persistent": float(config.get("timeout", 5000)) > 10000,
                "actions": config.get("actions") or [],
            },
        )
        return {"success": True, "title": config["title"], "timestamp": _timestamp()}


class SendMessageAction(ServiceAction):
    type = ActionType.SEND_MESSAGE.value
    name = "Send Message"
    description = "Post a message to a chat platform"
    service = "messaging"
    required_keys = ("platform", "channel", "message")

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        result = await self.call(
            "send_message",
            {
                "platform": config["platform"],
                "channel": config["channel"],
                "message": config["message"],
                "mentions": config.get("mentions") or [],
            },
        )
        return {
            "success": True,
            "platform": config["platform"],
            "channel": config["channel"],
            "message_id": _field(result, "message_id"),
            "timestamp": _timestamp(),
        }


class PerformSearchAction(ServiceAction):
    type = ActionType.PERFORM_SEARCH.value
    name = "Perform Search"
    description = "Search across connected providers"
    service = "search"
    required_keys = ("query",)

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        results = await self.call(
            "search",
            {
                "query": config["query"],
                "providers": config.get("providers"),
                "max_results": int(config.get("limit") or 10),
            },
        )
        results = list(results or [])
        return {
            "success": True,
            "query": config["query"],
            "result_count": len(results),
            "results": [
                {key: _field(r, key) for key in ("id", "title", "description", "url", "provider")}
                for r in results
            ],
            "timestamp": _timestamp(),
        }


class HTTPAction(ActionDefinition):
    """Shared request loop for the HTTP action kinds."""

    default_timeout: float | None = None

    def __init__(self, http_config: HTTPClientConfig, sleep: SleepFunc = asyncio.sleep) -> None:
        self.http_config = http_config
        self.sleep = sleep

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        errors = super().get_config_errors(config)
        method = config.get("method")
        if method and not _is_reference(method) and str(method).upper() not in HTTP_METHODS:
            errors.append(f"Unsupported HTTP method: {method}")
        return errors

    async def send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        retry = self.http_config.retry
        timeout = kwargs.pop("timeout", None) or self.default_timeout or self.http_config.timeout

        attempt = 0
        delay = retry.backoff_seconds
        while True:
            attempt += 1
            try:
                logger.debug("Action HTTP request %s %s (attempt %s)", method, url, attempt)
                async with httpx.AsyncClient(timeout=timeout) as client:
                    return await client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                if attempt >= retry.max_attempts:
                    raise ActionError(f"{self.name} failed: {exc}", self.type, exc) from exc
                logger.warning(
                    "Action HTTP request retry (%s/%s) after error: %s",
                    attempt,
                    retry.max_attempts,
                    exc,
                )
                await self.sleep(min(delay, retry.max_backoff_seconds))
                delay = max(delay * retry.backoff_multiplier, retry.backoff_seconds)

    @staticmethod
    def response_body(response: httpx.Response) -> Any:
        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return response.text


class ApiRequestAction(HTTPAction):
    type = ActionType.API_REQUEST.value
    name = "API Request"
    description = "Call an HTTP API"
    required_keys = ("method", "url")
    schema = {
        "type": "object",
        "properties": {
            "method": {"type": "string", "enum": list(HTTP_METHODS)},
            "url": {"type": "string", "format": "uri"},
            "headers": {"type": "object"},
            "params": {"type": "object"},
            "body": {},
            "timeout": {"type": "number"},
            "auth": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": ["none", "basic", "bearer"]},
                    "credentials": {"type": "object"},
                },
            },
        },
        "required": ["method", "url"],
    }

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        method = str(config["method"]).upper()
        headers = dict(config.get("headers") or {})
        kwargs: dict[str, Any] = {"headers": headers, "params": config.get("params")}

        body = config.get("body")
        if body is not None and method not in ("GET", "HEAD"):
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                kwargs["content"] = str(body)

        auth = config.get("auth") or {}
        credentials = auth.get("credentials") or {}
        if auth.get("type") == "basic":
            kwargs["auth"] = (credentials.get("username", ""), credentials.get("password", ""))
        elif auth.get("type") == "bearer":
            headers["Authorization"] = f"Bearer {credentials.get('token', '')}"

        if config.get("timeout"):
            kwargs["timeout"] = float(config["timeout"])

        response = await self.send(method, str(config["url"]), **kwargs)
        if response.is_error:
            raise ActionError(
                f"API request failed: {response.status_code} {response.reason_phrase}",
                self.type,
            )
        return {
            "success": True,
            "status": response.status_code,
            "status_text": response.reason_phrase,
            "headers": dict(response.headers),
            "data": self.response_body(response),
            "timestamp": _timestamp(),
        }


class WebhookCallAction(HTTPAction):
    type = ActionType.WEBHOOK_CALL.value
    name = "Webhook Call"
    description = "Send the trigger data (or a custom payload) to a webhook"
    required_keys = ("url",)
    default_timeout = 10.0

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        payload = config.get("payload")
        if payload is None:
            payload = context.trigger or {}
        headers = {"Content-Type": "application/json", **(config.get("headers") or {})}

        response = await self.send(
            str(config.get("method") or "POST").upper(),
            str(config["url"]),
            headers=headers,
            json=payload,
            timeout=config.get("timeout"),
        )
        if response.is_error:
            raise ActionError(
                f"Webhook call failed: {response.status_code} {response.reason_phrase}",
                self.type,
            )
        return {
            "success": True,
            "status": response.status_code,
            "data": self.response_body(response),
            "timestamp": _timestamp(),
        }


class WaitAction(ActionDefinition):
    type = ActionType.WAIT.value
    name = "Wait"
    description = "Pause the execution"
    required_keys = ("duration",)
    units = {"milliseconds": 0.001, "seconds": 1.0, "minutes": 60.0}
    schema = {
        "type": "object",
        "properties": {
            "duration": {"type": "number", "minimum": 0},
            "unit": {"type": "string", "enum": ["milliseconds", "seconds", "minutes"]},
        },
        "required": ["duration"],
    }

    def __init__(self, sleep: SleepFunc = asyncio.sleep) -> None:
        self.sleep = sleep

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        errors = super().get_config_errors(config)
        duration = config.get("duration")
        if duration is not None and not _is_reference(duration):
            if isinstance(duration, bool) or not isinstance(duration, (int, float)):
                errors.append("'duration' must be a number")
            elif duration < 0:
                errors.append("'duration' must not be negative")
        unit = config.get("unit")
        if unit is not None and unit not in self.units:
            errors.append(f"Unsupported unit: {unit}")
        return errors

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        seconds = float(config["duration"]) * self.units[config.get("unit") or "milliseconds"]
        await self.sleep(seconds)
        return {
            "success": True,
            "waited": seconds * 1000,
            "unit": "milliseconds",
            "timestamp": _timestamp(),
        }


class LogEventAction(ActionDefinition):
    type = ActionType.LOG_EVENT.value
    name = "Log Event"
    description = "Write a message to the automation log"
    required_keys = ("message",)
    levels = ("debug", "info", "warning", "warn", "error")

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        errors = super().get_config_errors(config)
        level = config.get("level")
        if level is not None and level not in self.levels:
            errors.append(f"Unsupported log level: {level}")
        return errors

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        level = config.get("level") or "info"
        log_func = getattr(recipe_logger, "warning" if level == "warn" else level)
        data = config.get("data")
        if data:
            log_func("[%s] %s | Data: %s", context.recipe_id, config["message"], data)
        else:
            log_func("[%s] %s", context.recipe_id, config["message"])
        return {
            "success": True,
            "level": level,
            "message": config["message"],
            "timestamp": _timestamp(),
        }


class SetVariableAction(ActionDefinition):
    """Define values in the ``computed`` scope for later actions."""

    type = ActionType.SET_VARIABLE.value
    name = "Set Variable"
    description = "Store computed values for later actions"

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        if config.get("name"):
            return []
        if isinstance(config.get("variables"), Mapping) and config["variables"]:
            return []
        return ["'name' or a non-empty 'variables' mapping is required"]

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        values = dict(config.get("variables") or {})
        if config.get("name"):
            values[config["name"]] = config.get("value")
        for key, value in values.items():
            context.variables.define("computed", key, value)
        return {"success": True, "variables": values}


class ConditionalAction(ActionDefinition):
    """Evaluate one condition and run the matching branch of nested actions."""

    type = ActionType.CONDITIONAL.value
    name = "Conditional"
    description = "Run different actions depending on a condition"
    raw_config_keys = frozenset({"condition", "true_actions", "false_actions"})

    def __init__(
        self,
        registry: ActionRegistry,
        condition_engine: ConditionalLogicEngine,
        variable_resolver: VariableResolver,
    ) -> None:
        self.registry = registry
        self.condition_engine = condition_engine
        self.variable_resolver = variable_resolver

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        condition = config.get("condition")
        if not isinstance(condition, Mapping):
            return ["'condition' is required"]
        errors = self.condition_engine.validate_condition(condition)
        for branch in ("true_actions", "false_actions"):
            actions = config.get(branch) or []
            if not isinstance(actions, list):
                errors.append(f"'{branch}' must be a list")
                continue
            for index, action in enumerate(actions):
                if not isinstance(action, Mapping) or not action.get("type"):
                    errors.append(f"{branch}[{index}]: 'type' is required")
                    continue
                errors.extend(
                    f"{branch}[{index}]: {problem}"
                    for problem in self.registry.get_config_errors(
                        action["type"], action.get("config") or {}
                    )
                )
        return errors

    async def execute(self, config: Mapping[str, Any], context: ActionContext) -> Any:
        condition_met = self.condition_engine.evaluate_condition(
            config["condition"], context.trigger, context.variables
        )
        branch = config.get("true_actions" if condition_met else "false_actions") or []

        results = []
        for action in branch:
            resolved = self.registry.resolve_config(
                action["type"], action.get("config") or {}, context, self.variable_resolver
            )
            results.append(await self.registry.execute_action(action["type"], resolved, context))

        return {
            "success": True,
            "condition_met": condition_met,
            "actions_executed": len(results),
            "results": results,
            "timestamp": _timestamp(),
        }


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------


class ActionRegistry:
    """Catalog of action kinds keyed by type name."""

    def __init__(
        self,
        events: EventBus | None = None,
        services: Mapping[str, Any] | None = None,
        http_config: HTTPClientConfig | None = None,
        condition_engine: ConditionalLogicEngine | None = None,
        variable_resolver: VariableResolver | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._actions: dict[str, ActionDefinition] = {}
        self._lock = threading.Lock()
        self.events = events or EventBus()
        self.services: dict[str, Any] = dict(services or {})
        self.http_config = http_config or HTTPClientConfig()
        self.condition_engine = condition_engine
        self.variable_resolver = variable_resolver
        self.sleep = sleep

    def register_builtin_actions(self) -> None:
        from .conditions import ConditionalLogicEngine
        from .variables import VariableResolver

        self.condition_engine = self.condition_engine or ConditionalLogicEngine()
        self.variable_resolver = self.variable_resolver or VariableResolver()

        service_actions: list[ActionDefinition] = [
            action_cls(self.services)
            for action_cls in (
                SendEmailAction,
                ReplyEmailAction,
                ArchiveEmailAction,
                CreateEventAction,
                UpdateEventAction,
                CreateTaskAction,
                SendNotificationAction,
                SendMessageAction,
                PerformSearchAction,
            )
        ]
        builtins = service_actions + [
            ApiRequestAction(self.http_config, self.sleep),
            WebhookCallAction(self.http_config, self.sleep),
            WaitAction(self.sleep),
            LogEventAction(),
            SetVariableAction(),
            ConditionalAction(self, self.condition_engine, self.variable_resolver),
        ]
        for definition in builtins:
            self.register_action(definition)
        logger.debug("Registered %d built-in actions", len(builtins))

    def register_action(self, definition: ActionDefinition) -> None:
        """Register or replace an action kind.

        Args:
            definition: Action definition, keyed by its ``type``
        """
        with self._lock:
            self._actions[definition.type] = definition
        self.events.emit("actionRegistered", definition.describe())

    def unregister_action(self, action_type: str) -> bool:
        with self._lock:
            definition = self._actions.pop(action_type, None)
        if definition is None:
            return False
        self.events.emit("actionUnregistered", definition.describe())
        return True

    def register_service(self, name: str, service: Any) -> None:
        """Attach a collaborator used by the service-backed actions."""
        self.services[name] = service

    def get_action(self, action_type: str) -> ActionDefinition | None:
        with self._lock:
            return self._actions.get(action_type)

    def get_all_actions(self) -> list[dict[str, Any]]:
        with self._lock:
            return [definition.describe() for definition in self._actions.values()]

    def is_valid_action(self, action_type: str) -> bool:
        with self._lock:
            return action_type in self._actions

    def validate_action_config(self, action_type: str, config: Mapping[str, Any]) -> bool:
        """Return False for unknown kinds or invalid configs."""
        definition = self.get_action(action_type)
        if definition is None:
            return False
        return definition.validate(config or {})

    def get_config_errors(self, action_type: str, config: Mapping[str, Any]) -> list[str]:
        definition = self.get_action(action_type)
        if definition is None:
            return [f"Unknown action type: {action_type}"]
        return definition.get_config_errors(config or {})

    def raw_config_keys(self, action_type: str) -> frozenset[str]:
        definition = self.get_action(action_type)
        return definition.raw_config_keys if definition else frozenset()

    def resolve_config(
        self,
        action_type: str,
        config: Mapping[str, Any],
        context: ActionContext,
        resolver: VariableResolver,
    ) -> dict[str, Any]:
        """Resolve variables in ``config`` except the kind's raw keys."""
        raw = self.raw_config_keys(action_type)
        resolved = resolver.resolve_variables(
            {k: v for k, v in config.items() if k not in raw}, context.variables
        )
        resolved.update({k: v for k, v in config.items() if k in raw})
        return resolved

    async def execute_action(
        self, action_type: str, config: Mapping[str, Any], context: ActionContext
    ) -> Any:
        """Run an action with an already-resolved config.

        Args:
            action_type: Registered action kind
            config: Resolved configuration
            context: Execution context for the action

        Returns:
            The action's result

        Raises:
            UnknownActionTypeError: If the kind is not registered
            ActionError: If the action fails for any reason
        """
        definition = self.get_action(action_type)
        if definition is None:
            raise UnknownActionTypeError(action_type)
        try:
            return await definition.execute(config, context)
        except ActionError:
            raise
        except Exception as exc:
            raise ActionError(
                f"Action '{action_type}' failed: {exc}", action_type, original_error=exc
            ) from exc


__all__ = [
    "ActionDefinition",
    "ActionRegistry",
    "ActionType",
    "ApiRequestAction",
    "ArchiveEmailAction",
    "ConditionalAction",
    "CreateEventAction",
    "CreateTaskAction",
    "HTTPAction",
    "LogEventAction",
    "PerformSearchAction",
    "ReplyEmailAction",
    "SendEmailAction",
    "SendMessageAction",
    "SendNotificationAction",
    "ServiceAction",
    "SetVariableAction",
    "UpdateEventAction",
    "WaitAction",
    "WebhookCallAction",
]
