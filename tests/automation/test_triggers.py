"""Tests for the trigger registry.

Tests cover:
- Built-in trigger registration and catalog
- Config validation per trigger kind
- Event matching for email, calendar, file, message, search and webhook triggers
- Custom trigger registration and lifecycle events
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from recipe_automation.automation.exceptions import UnknownTriggerTypeError
from recipe_automation.automation.triggers import (
    SCHEDULED_TRIGGER_TYPES,
    TriggerDefinition,
    TriggerRegistry,
    TriggerType,
)
from recipe_automation.core.events import EventBus


@pytest.fixture
def registry() -> TriggerRegistry:
    registry = TriggerRegistry()
    registry.register_builtin_triggers()
    return registry


def event(event_type: str, now: datetime | None = None, **data: Any) -> dict[str, Any]:
    context: dict[str, Any] = {"event": {"type": event_type, "data": data}}
    if now is not None:
        context["now"] = now
    return context


# ==============================================================================
# Registry Tests
# ==============================================================================


class TestTriggerRegistry:
    """Tests for registration and lookup."""

    def test_builtin_triggers_registered(self, registry):
        """Test every built-in kind is available."""
        types = {trigger["type"] for trigger in registry.get_all_triggers()}

        assert types == {member.value for member in TriggerType}
        assert len(types) == 13

    def test_describe_shape(self, registry):
        described = registry.get_trigger("webhook").describe()

        assert described["name"] == "Webhook"
        assert described["schema"]["required"] == ["path"]

    def test_scheduled_types(self):
        assert SCHEDULED_TRIGGER_TYPES == {"schedule", "date_time"}

    def test_is_valid_trigger(self, registry):
        assert registry.is_valid_trigger("email_received") is True
        assert registry.is_valid_trigger("fax_received") is False

    def test_unknown_type_errors(self, registry):
        assert registry.validate_trigger_config("fax_received", {}) is False
        assert registry.get_config_errors("fax_received", {}) == [
            "Unknown trigger type: fax_received"
        ]
        with pytest.raises(UnknownTriggerTypeError):
            registry.execute_trigger("fax_received", {}, event("fax_received"))

    def test_register_custom_trigger_emits_event(self):
        """Test custom kinds and the registration lifecycle events."""

        class BuildFinishedTrigger(TriggerDefinition):
            type = "build_finished"
            name = "Build Finished"

            def match_data(self, config, data, context):
                return data.get("status") == config.get("status", "success")

        bus = EventBus()
        seen = []
        bus.subscribe("triggerRegistered", lambda name, payload: seen.append(payload["type"]))
        bus.subscribe(
            "triggerUnregistered", lambda name, payload: seen.append("-" + payload["type"])
        )
        registry = TriggerRegistry(events=bus)

        registry.register_trigger(BuildFinishedTrigger())

        assert registry.execute_trigger(
            "build_finished", {}, event("build_finished", status="success")
        )
        assert registry.unregister_trigger("build_finished") is True
        assert registry.unregister_trigger("build_finished") is False
        assert seen == ["build_finished", "-build_finished"]

    def test_camel_case_event_alias(self, registry):
        """Test that events may use the camelCase spelling of a kind."""
        assert registry.execute_trigger("email_received", {}, event("emailReceived"))

    def test_wrong_event_type_does_not_match(self, registry):
        assert not registry.execute_trigger("email_received", {}, event("email_starred"))


# ==============================================================================
# Validation Tests
# ==============================================================================


class TestTriggerValidation:
    """Tests for per-kind config validation."""

    def test_email_received_lists(self, registry):
        errors = registry.get_config_errors(
            "email_received", {"sender_filters": "boss@example.com", "has_attachments": "yes"}
        )

        assert errors == ["'sender_filters' must be a list", "'has_attachments' must be a boolean"]

    def test_event_starting_lead_time(self, registry):
        assert registry.validate_trigger_config("event_starting", {"lead_time_minutes": 30})
        assert registry.get_config_errors("event_starting", {"lead_time_minutes": 2000}) == [
            "'lead_time_minutes' must be between 0 and 1440"
        ]
        assert registry.get_config_errors("event_starting", {"lead_time_minutes": "soon"}) == [
            "'lead_time_minutes' must be a number"
        ]

    def test_file_trigger_requires_existing_directories(self, registry, tmp_path):
        missing = tmp_path / "missing"

        assert registry.validate_trigger_config("file_created", {"directories": [str(tmp_path)]})
        assert registry.get_config_errors("file_created", {"directories": [str(missing)]}) == [
            f"Directory does not exist: {missing}"
        ]
        assert registry.get_config_errors("file_modified", {}) == [
            "'directories' must be a non-empty list"
        ]

    def test_schedule_requires_valid_cron(self, registry):
        assert registry.validate_trigger_config("schedule", {"cron": "0 9 * * 1-5"})
        assert registry.get_config_errors("schedule", {}) == ["'cron' is required"]

        errors = registry.get_config_errors("schedule", {"cron": "not a cron"})

        assert len(errors) == 1
        assert errors[0].startswith("Invalid cron expression")

    def test_schedule_rejects_unknown_timezone(self, registry):
        errors = registry.get_config_errors(
            "schedule", {"cron": "0 9 * * *", "timezone": "Mars/Olympus"}
        )

        assert len(errors) == 1
        assert "Mars/Olympus" in errors[0]

    def test_date_time_must_be_future(self, registry):
        future = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()

        assert registry.validate_trigger_config("date_time", {"date_time": future})
        assert registry.get_config_errors("date_time", {"date_time": past}) == [
            "'date_time' must be in the future"
        ]
        assert registry.get_config_errors("date_time", {"date_time": "tomorrow"}) == [
            "Invalid date_time: tomorrow"
        ]

    def test_webhook_path(self, registry):
        assert registry.validate_trigger_config("webhook", {"path": "/hooks/deploy"})
        assert registry.get_config_errors("webhook", {"path": "hooks"}) == [
            "'path' must start with '/'"
        ]
        assert registry.get_config_errors("webhook", {}) == ["'path' is required"]

    def test_search_min_result_count(self, registry):
        assert registry.get_config_errors("search_performed", {"min_result_count": 1.5}) == [
            "'min_result_count' must be an integer"
        ]


# ==============================================================================
# Matching Tests
# ==============================================================================


class TestTriggerMatching:
    """Tests for event matching."""

    def test_email_filters(self, registry):
        config = {
            "sender_filters": ["@example.com"],
            "subject_filters": ["urgent"],
            "has_attachments": True,
        }
        matching = event(
            "email_received",
            sender="ops@EXAMPLE.com",
            subject="URGENT: disk",
            attachments=[{"name": "df.txt"}],
        )
        no_attachment = event("email_received", sender="ops@example.com", subject="urgent")

        assert registry.execute_trigger("email_received", config, matching) is True
        assert registry.execute_trigger("email_received", config, no_attachment) is False

    def test_email_account_filter(self, registry):
        config = {"account_ids": ["work"]}

        assert registry.execute_trigger("email_starred", config, event("email_starred")) is False
        assert registry.execute_trigger(
            "email_starred", config, event("email_starred", account_id="work")
        )

    def test_event_created_attendees(self, registry):
        config = {"attendee_filters": ["ada@"], "location_filters": ["room"]}
        data = event(
            "event_created",
            attendees=[{"email": "bob@example.com"}, {"email": "ada@example.com"}],
            location="Room 4",
        )

        assert registry.execute_trigger("event_created", config, data) is True

    def test_event_starting_window(self, registry):
        now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
        soon = event("event_starting", now=now, start_time="2026-03-02T09:10:00Z")
        later = event("event_starting", now=now, start_time="2026-03-02T10:00:00Z")
        started = event("event_starting", now=now, start_time="2026-03-02T08:55:00Z")

        assert registry.execute_trigger("event_starting", {}, soon) is True
        assert registry.execute_trigger("event_starting", {}, later) is False
        assert registry.execute_trigger("event_starting", {}, started) is False
        assert registry.execute_trigger("event_starting", {"lead_time_minutes": 90}, later)

    def test_file_created_patterns(self, registry, tmp_path):
        nested = tmp_path / "reports"
        config = {"directories": [str(tmp_path)], "patterns": ["*.csv"]}

        assert registry.execute_trigger(
            "file_created", config, event("file_created", filepath=str(tmp_path / "q1.csv"))
        )
        assert not registry.execute_trigger(
            "file_created", config, event("file_created", filepath=str(tmp_path / "q1.txt"))
        )
        assert not registry.execute_trigger(
            "file_created", config, event("file_created", filepath=str(nested / "q1.csv"))
        )
        assert registry.execute_trigger(
            "file_created",
            {**config, "recursive": True},
            event("file_created", filepath=str(nested / "q1.csv")),
        )

    def test_file_modified_types(self, registry, tmp_path):
        config = {"directories": [str(tmp_path)], "file_types": [".PDF"]}

        assert registry.execute_trigger(
            "file_modified", config, event("file_modified", path=str(tmp_path / "a.pdf"))
        )
        assert not registry.execute_trigger("file_modified", config, event("file_modified"))

    def test_message_keywords(self, registry):
        config = {"platforms": ["slack"], "keywords": ["deploy"]}

        assert registry.execute_trigger(
            "message_received",
            config,
            event("message_received", platform="slack", text="Please DEPLOY now"),
        )
        assert not registry.execute_trigger(
            "message_received",
            config,
            event("message_received", platform="teams", text="deploy"),
        )

    def test_search_min_results(self, registry):
        config = {"query_filters": ["invoice"], "min_result_count": 2}

        assert registry.execute_trigger(
            "search_performed",
            config,
            event("search_performed", query="Invoice 2026", results=[1, 2]),
        )
        assert not registry.execute_trigger(
            "search_performed",
            config,
            event("search_performed", query="invoice", results=[1]),
        )

    def test_webhook_path_and_method(self, registry):
        config = {"path": "/hooks/deploy", "methods": ["POST"]}

        assert registry.execute_trigger(
            "webhook", config, event("webhook", path="/hooks/deploy", method="post")
        )
        assert not registry.execute_trigger(
            "webhook", config, event("webhook", path="/hooks/other", method="POST")
        )
        assert not registry.execute_trigger(
            "webhook", config, event("webhook", path="/hooks/deploy", method="GET")
        )

    def test_app_opened_always_matches(self, registry):
        assert registry.execute_trigger("app_opened", {}, event("appOpened"))
