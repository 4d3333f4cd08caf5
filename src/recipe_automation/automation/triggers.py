"""Trigger registry for the automation engine.

A trigger kind validates its configuration and decides whether an incoming event
matches it. Matching is side-effect free: time-based kinds are scheduled by the cron
job manager and only need a structurally valid config here.

Events handed to :meth:`TriggerRegistry.execute_trigger` have the shape::

    {"event": {"type": "email_received", "data": {...}}, "now": datetime}

``now`` is optional and only consulted by time-window matchers.
"""

from __future__ import annotations

import fnmatch
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..core.events import EventBus
from ..core.logger import get_logger
from ..scheduler.expressions import CronExpressionParser, validate_timezone
from .exceptions import SchedulingError, UnknownTriggerTypeError
from .expression import parse_datetime

logger = get_logger("automation.triggers")


class TriggerType(str, Enum):
    """Built-in trigger kinds."""

    EMAIL_RECEIVED = "email_received"
    EMAIL_STARRED = "email_starred"
    EVENT_CREATED = "event_created"
    EVENT_STARTING = "event_starting"
    FILE_CREATED = "file_created"
    FILE_MODIFIED = "file_modified"
    SCHEDULE = "schedule"
    DATE_TIME = "date_time"
    MESSAGE_RECEIVED = "message_received"
    APP_OPENED = "app_opened"
    SEARCH_PERFORMED = "search_performed"
    WEBHOOK = "webhook"
    MANUAL = "manual"


SCHEDULED_TRIGGER_TYPES = frozenset({TriggerType.SCHEDULE.value, TriggerType.DATE_TIME.value})


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _lower(value: Any) -> str:
    return "" if value is None else str(value).lower()


def _any_substring(filters: list[str], text: Any) -> bool:
    haystack = _lower(text)
    return any(_lower(f) in haystack for f in filters)


def _check_lists(config: Mapping[str, Any], *keys: str) -> list[str]:
    return [
        f"'{key}' must be a list"
        for key in keys
        if config.get(key) is not None and not isinstance(config[key], list)
    ]


# ----------------------------------------------------------------------
# Trigger definitions
# ----------------------------------------------------------------------


class TriggerDefinition(ABC):
    """One trigger kind: config validator plus event matcher."""

    type: str
    name: str
    description: str = ""
    schema: dict[str, Any] = {"type": "object", "properties": {}}

    @property
    def event_types(self) -> tuple[str, ...]:
        """Event type names this kind listens to."""
        return (self.type, _camel(self.type))

    def accepts(self, context: Mapping[str, Any]) -> bool:
        event = context.get("event") or {}
        return event.get("type") in self.event_types

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        """Describe what is wrong with ``config``. Empty when valid."""
        return []

    def validate(self, config: Mapping[str, Any]) -> bool:
        return not self.get_config_errors(config)

    def matches(self, config: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
        """Whether the event in ``context`` satisfies this trigger's filters."""
        if not self.accepts(context):
            return False
        data = (context.get("event") or {}).get("data") or {}
        return self.match_data(config, data, context)

    @abstractmethod
    def match_data(
        self, config: Mapping[str, Any], data: Mapping[str, Any], context: Mapping[str, Any]
    ) -> bool:
        """Apply the config filters to the event data."""

    def describe(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "schema": self.schema,
        }


class EmailReceivedTrigger(TriggerDefinition):
    type = TriggerType.EMAIL_RECEIVED.value
    name = "Email Received"
    description = "Triggered when a new email is received"
    schema = {
        "type": "object",
        "properties": {
            "account_ids": {"type": "array", "items": {"type": "string"}},
            "sender_filters": {"type": "array", "items": {"type": "string"}},
            "subject_filters": {"type": "array", "items": {"type": "string"}},
            "has_attachments": {"type": "boolean"},
        },
    }

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        errors = _check_lists(config, "account_ids", "sender_filters", "subject_filters")
        attachments = config.get("has_attachments")
        if attachments is not None and not isinstance(attachments, bool):
            errors.append("'has_attachments' must be a boolean")
        return errors

    def match_data(self, config, data, context) -> bool:
        account_ids = config.get("account_ids")
        if account_ids and data.get("account_id") not in account_ids:
            return False
        senders = config.get("sender_filters")
        if senders and not _any_substring(senders, data.get("sender")):
            return False
        subjects = config.get("subject_filters")
        if subjects and not _any_substring(subjects, data.get("subject")):
            return False
        wants_attachments = config.get("has_attachments")
        if wants_attachments is not None:
            if bool(data.get("attachments")) != wants_attachments:
                return False
        return True


class EmailStarredTrigger(TriggerDefinition):
    type = TriggerType.EMAIL_STARRED.value
    name = "Email Starred"
    description = "Triggered when an email is starred"
    schema = {
        "type": "object",
        "properties": {"account_ids": {"type": "array", "items": {"type": "string"}}},
    }

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        return _check_lists(config, "account_ids")

    def match_data(self, config, data, context) -> bool:
        account_ids = config.get("account_ids")
        return not account_ids or data.get("account_id") in account_ids


class EventCreatedTrigger(TriggerDefinition):
    type = TriggerType.EVENT_CREATED.value
    name = "Calendar Event Created"
    description = "Triggered when a calendar event is created"
    schema = {
        "type": "object",
        "properties": {
            "calendar_ids": {"type": "array", "items": {"type": "string"}},
            "attendee_filters": {"type": "array", "items": {"type": "string"}},
            "location_filters": {"type": "array", "items": {"type": "string"}},
        },
    }

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        return _check_lists(config, "calendar_ids", "attendee_filters", "location_filters")

    def match_data(self, config, data, context) -> bool:
        calendar_ids = config.get("calendar_ids")
        if calendar_ids and data.get("calendar_id") not in calendar_ids:
            return False
        attendee_filters = config.get("attendee_filters")
        if attendee_filters:
            emails = [
                a.get("email") if isinstance(a, Mapping) else a
                for a in data.get("attendees") or []
            ]
            if not any(_any_substring(attendee_filters, email) for email in emails):
                return False
        location_filters = config.get("location_filters")
        if location_filters and not _any_substring(location_filters, data.get("location")):
            return False
        return True


class EventStartingTrigger(TriggerDefinition):
    type = TriggerType.EVENT_STARTING.value
    name = "Calendar Event Starting"
    description = "Triggered shortly before a calendar event starts"
    schema = {
        "type": "object",
        "properties": {
            "calendar_ids": {"type": "array", "items": {"type": "string"}},
            "lead_time_minutes": {"type": "number", "minimum": 0, "maximum": 1440},
        },
    }
    default_lead_time = 15

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        errors = _check_lists(config, "calendar_ids")
        lead = config.get("lead_time_minutes")
        if lead is not None:
            if isinstance(lead, bool) or not isinstance(lead, (int, float)):
                errors.append("'lead_time_minutes' must be a number")
            elif not 0 <= lead <= 1440:
                errors.append("'lead_time_minutes' must be between 0 and 1440")
        return errors

    def match_data(self, config, data, context) -> bool:
        try:
            start = parse_datetime(data.get("start_time"))
        except (TypeError, ValueError):
            return False
        now = context.get("now") or datetime.now(timezone.utc)
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        minutes_until = (start - now).total_seconds() / 60
        lead = config.get("lead_time_minutes") or self.default_lead_time
        if minutes_until < 0 or minutes_until > lead:
            return False

        calendar_ids = config.get("calendar_ids")
        return not calendar_ids or data.get("calendar_id") in calendar_ids


class FileTrigger(TriggerDefinition):
    """Shared validation and matching for file system triggers."""

    schema = {
        "type": "object",
        "properties": {
            "directories": {"type": "array", "items": {"type": "string"}},
            "patterns": {"type": "array", "items": {"type": "string"}},
            "file_types": {"type": "array", "items": {"type": "string"}},
            "recursive": {"type": "boolean"},
        },
        "required": ["directories"],
    }

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        directories = config.get("directories")
        if not isinstance(directories, list) or not directories:
            return ["'directories' must be a non-empty list"]
        errors = [
            f"Directory does not exist: {directory}"
            for directory in directories
            if not os.path.isdir(str(directory))
        ]
        errors.extend(_check_lists(config, "patterns", "file_types"))
        return errors

    def match_data(self, config, data, context) -> bool:
        filepath = data.get("filepath") or data.get("path")
        if not filepath:
            return False
        filepath = os.path.abspath(str(filepath))
        parent = os.path.dirname(filepath)

        def in_directory(directory: str) -> bool:
            root = os.path.abspath(directory)
            if config.get("recursive"):
                return parent == root or parent.startswith(root + os.sep)
            return parent == root

        if not any(in_directory(str(d)) for d in config.get("directories") or []):
            return False

        filename = os.path.basename(filepath)
        patterns = config.get("patterns")
        if patterns and not any(fnmatch.fnmatch(filename, p) for p in patterns):
            return False

        file_types = config.get("file_types")
        if file_types:
            extension = os.path.splitext(filename)[1].lower().lstrip(".")
            if extension not in [t.lower().lstrip(".") for t in file_types]:
                return False
        return True


class FileCreatedTrigger(FileTrigger):
    type = TriggerType.FILE_CREATED.value
    name = "File Created"
    description = "Triggered when a file is created in a watched directory"


class FileModifiedTrigger(FileTrigger):
    type = TriggerType.FILE_MODIFIED.value
    name = "File Modified"
    description = "Triggered when a file is modified in a watched directory"


class ScheduleTrigger(TriggerDefinition):
    """Recurring time trigger. Fired by the cron job manager, not by events."""

    type = TriggerType.SCHEDULE.value
    name = "Schedule"
    description = "Triggered on a cron schedule"
    schema = {
        "type": "object",
        "properties": {"cron": {"type": "string"}, "timezone": {"type": "string"}},
        "required": ["cron"],
    }

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        cron = config.get("cron")
        if not cron or not isinstance(cron, str):
            return ["'cron' is required"]
        valid, error = CronExpressionParser.validate(cron)
        errors = [] if valid else [f"Invalid cron expression: {error}"]
        if config.get("timezone"):
            try:
                validate_timezone(str(config["timezone"]))
            except SchedulingError as exc:
                errors.append(str(exc))
        return errors

    def match_data(self, config, data, context) -> bool:
        return True


class DateTimeTrigger(TriggerDefinition):
    """One-shot time trigger. Fired by the cron job manager, not by events."""

    type = TriggerType.DATE_TIME.value
    name = "Date & Time"
    description = "Triggered once at a specific date and time"
    schema = {
        "type": "object",
        "properties": {
            "date_time": {"type": "string", "format": "date-time"},
            "timezone": {"type": "string"},
        },
        "required": ["date_time"],
    }

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        raw = config.get("date_time")
        if not raw:
            return ["'date_time' is required"]
        try:
            when = parse_datetime(raw)
        except (TypeError, ValueError):
            return [f"Invalid date_time: {raw}"]
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        if when <= datetime.now(timezone.utc):
            return ["'date_time' must be in the future"]
        return []

    def match_data(self, config, data, context) -> bool:
        return True


class MessageReceivedTrigger(TriggerDefinition):
    type = TriggerType.MESSAGE_RECEIVED.value
    name = "Message Received"
    description = "Triggered when a chat message is received"
    schema = {
        "type": "object",
        "properties": {
            "platforms": {"type": "array", "items": {"type": "string"}},
            "channels": {"type": "array", "items": {"type": "string"}},
            "keywords": {"type": "array", "items": {"type": "string"}},
        },
    }

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        return _check_lists(config, "platforms", "channels", "keywords")

    def match_data(self, config, data, context) -> bool:
        platforms = config.get("platforms")
        if platforms and data.get("platform") not in platforms:
            return False
        channels = config.get("channels")
        if channels and data.get("channel") not in channels:
            return False
        keywords = config.get("keywords")
        return not keywords or _any_substring(keywords, data.get("text"))


class AppOpenedTrigger(TriggerDefinition):
    type = TriggerType.APP_OPENED.value
    name = "App Opened"
    description = "Triggered when the application is opened"

    def match_data(self, config, data, context) -> bool:
        return True


class SearchPerformedTrigger(TriggerDefinition):
    type = TriggerType.SEARCH_PERFORMED.value
    name = "Search Performed"
    description = "Triggered when a search is performed"
    schema = {
        "type": "object",
        "properties": {
            "query_filters": {"type": "array", "items": {"type": "string"}},
            "min_result_count": {"type": "number", "minimum": 0},
        },
    }

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        errors = _check_lists(config, "query_filters")
        minimum = config.get("min_result_count")
        if minimum is not None and (isinstance(minimum, bool) or not isinstance(minimum, int)):
            errors.append("'min_result_count' must be an integer")
        return errors

    def match_data(self, config, data, context) -> bool:
        filters = config.get("query_filters")
        if filters and not _any_substring(filters, data.get("query")):
            return False
        minimum = config.get("min_result_count")
        if minimum is not None and len(data.get("results") or []) < minimum:
            return False
        return True


class WebhookTrigger(TriggerDefinition):
    type = TriggerType.WEBHOOK.value
    name = "Webhook"
    description = "Triggered by an incoming HTTP request"
    schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "pattern": "^/[a-zA-Z0-9/_-]+$"},
            "methods": {
                "type": "array",
                "items": {"type": "string", "enum": ["GET", "POST", "PUT", "DELETE"]},
            },
        },
        "required": ["path"],
    }

    def get_config_errors(self, config: Mapping[str, Any]) -> list[str]:
        path = config.get("path")
        if not path or not isinstance(path, str):
            return ["'path' is required"]
        errors = [] if path.startswith("/") else ["'path' must start with '/'"]
        errors.extend(_check_lists(config, "methods"))
        return errors

    def match_data(self, config, data, context) -> bool:
        if data.get("path") is not None and data.get("path") != config.get("path"):
            return False
        methods = config.get("methods")
        method = data.get("method")
        if methods and method is not None:
            return str(method).upper() in [m.upper() for m in methods]
        return True


class ManualTrigger(TriggerDefinition):
    type = TriggerType.MANUAL.value
    name = "Manual"
    description = "Run on demand"

    def match_data(self, config, data, context) -> bool:
        return True


BUILTIN_TRIGGERS: tuple[type[TriggerDefinition], ...] = (
    EmailReceivedTrigger,
    EmailStarredTrigger,
    EventCreatedTrigger,
    EventStartingTrigger,
    FileCreatedTrigger,
    FileModifiedTrigger,
    ScheduleTrigger,
    DateTimeTrigger,
    MessageReceivedTrigger,
    AppOpenedTrigger,
    SearchPerformedTrigger,
    WebhookTrigger,
    ManualTrigger,
)


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------


class TriggerRegistry:
    """Catalog of trigger kinds keyed by type name."""

    def __init__(self, events: EventBus | None = None) -> None:
        self._triggers: dict[str, TriggerDefinition] = {}
        self._lock = threading.Lock()
        self.events = events or EventBus()

    def register_builtin_triggers(self) -> None:
        for trigger_cls in BUILTIN_TRIGGERS:
            self.register_trigger(trigger_cls())
        logger.debug("Registered %d built-in triggers", len(BUILTIN_TRIGGERS))

    def register_trigger(self, definition: TriggerDefinition) -> None:
        """Register or replace a trigger kind.

        Args:
            definition: Trigger definition, keyed by its ``type``
        """
        with self._lock:
            self._triggers[definition.type] = definition
        self.events.emit("triggerRegistered", definition.describe())

    def unregister_trigger(self, trigger_type: str) -> bool:
        with self._lock:
            definition = self._triggers.pop(trigger_type, None)
        if definition is None:
            return False
        self.events.emit("triggerUnregistered", definition.describe())
        return True

    def get_trigger(self, trigger_type: str) -> TriggerDefinition | None:
        with self._lock:
            return self._triggers.get(trigger_type)

    def get_all_triggers(self) -> list[dict[str, Any]]:
        with self._lock:
            return [definition.describe() for definition in self._triggers.values()]

    def is_valid_trigger(self, trigger_type: str) -> bool:
        with self._lock:
            return trigger_type in self._triggers

    def validate_trigger_config(self, trigger_type: str, config: Mapping[str, Any]) -> bool:
        """Return False for unknown kinds or invalid configs."""
        definition = self.get_trigger(trigger_type)
        if definition is None:
            return False
        return definition.validate(config or {})

    def get_config_errors(self, trigger_type: str, config: Mapping[str, Any]) -> list[str]:
        definition = self.get_trigger(trigger_type)
        if definition is None:
            return [f"Unknown trigger type: {trigger_type}"]
        return definition.get_config_errors(config or {})

    def execute_trigger(
        self, trigger_type: str, config: Mapping[str, Any], context: Mapping[str, Any]
    ) -> bool:
        """Check whether an event matches a trigger configuration.

        Args:
            trigger_type: Registered trigger kind
            config: The recipe's trigger config
            context: ``{"event": {"type": ..., "data": ...}}`` plus optional ``now``

        Returns:
            True when the event matches

        Raises:
            UnknownTriggerTypeError: If the kind is not registered
        """
        definition = self.get_trigger(trigger_type)
        if definition is None:
            raise UnknownTriggerTypeError(trigger_type)
        return definition.matches(config or {}, context)


__all__ = [
    "BUILTIN_TRIGGERS",
    "SCHEDULED_TRIGGER_TYPES",
    "AppOpenedTrigger",
    "DateTimeTrigger",
    "EmailReceivedTrigger",
    "EmailStarredTrigger",
    "EventCreatedTrigger",
    "EventStartingTrigger",
    "FileCreatedTrigger",
    "FileModifiedTrigger",
    "FileTrigger",
    "ManualTrigger",
    "MessageReceivedTrigger",
    "ScheduleTrigger",
    "SearchPerformedTrigger",
    "TriggerDefinition",
    "TriggerRegistry",
    "TriggerType",
    "WebhookTrigger",
]
