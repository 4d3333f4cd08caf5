"""Tests for the action registry and built-in actions.

Tests cover:
- Built-in action registration and catalog
- Config validation per action kind
- Service-backed actions with sync and async collaborators
- HTTP actions (api_request, webhook_call) including transport retries
- Flow actions: wait, log_event, set_variable, conditional
- Error wrapping in execute_action
"""

from __future__ import annotations

import json
import logging

import httpx
import pytest
from pytest_httpx import HTTPXMock

from recipe_automation.automation.actions import ActionRegistry, ActionType
from recipe_automation.automation.exceptions import ActionError, UnknownActionTypeError
from recipe_automation.automation.execution import ActionContext, VariableContext
from recipe_automation.automation.variables import VariableResolver
from recipe_automation.core.config import HTTPClientConfig, RetryPolicyConfig
from tests.mocks import FakeSleep, RecordAction, RecordingCalendar, RecordingEmail


@pytest.fixture
def sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def services(notifier):
    return {"notifications": notifier, "email": RecordingEmail(), "calendar": RecordingCalendar()}


@pytest.fixture
def registry(services, sleep) -> ActionRegistry:
    registry = ActionRegistry(services=services, sleep=sleep)
    registry.register_builtin_actions()
    return registry


@pytest.fixture
def context() -> ActionContext:
    trigger = {"subject": "URGENT: server down", "sender": "ops@example.com", "priority": 5}
    return ActionContext(
        execution_id="exec_1",
        recipe_id="recipe_1",
        action_id="action_1",
        trigger=trigger,
        variables=VariableContext(execution={"execution_id": "exec_1", "trigger": trigger}),
    )


# ==============================================================================
# Registry Tests
# ==============================================================================


class TestActionRegistry:
    """Tests for registration and lookup."""

    def test_builtin_actions_registered(self, registry):
        types = {action["type"] for action in registry.get_all_actions()}

        assert types == {member.value for member in ActionType}
        assert len(types) == 15

    def test_unknown_type(self, registry):
        assert registry.is_valid_action("print_document") is False
        assert registry.validate_action_config("print_document", {}) is False
        assert registry.get_config_errors("print_document", {}) == [
            "Unknown action type: print_document"
        ]

    @pytest.mark.anyio
    async def test_execute_unknown_type(self, registry, context):
        with pytest.raises(UnknownActionTypeError):
            await registry.execute_action("print_document", {}, context)

    def test_register_and_unregister_emit_events(self, registry):
        seen = []
        registry.events.subscribe("actionRegistered", lambda name, data: seen.append(name))
        registry.events.subscribe("actionUnregistered", lambda name, data: seen.append(name))

        registry.register_action(RecordAction())

        assert registry.is_valid_action("record")
        assert registry.unregister_action("record") is True
        assert registry.unregister_action("record") is False
        assert seen == ["actionRegistered", "actionUnregistered"]

    def test_register_service(self, registry):
        messaging = object()

        registry.register_service("messaging", messaging)

        assert registry.services["messaging"] is messaging

    def test_resolve_config_keeps_raw_keys(self, registry, context):
        """Test conditional branches are not resolved up front."""
        config = {
            "condition": {"field": "subject", "operator": "exists"},
            "true_actions": [{"type": "log_event", "config": {"message": "$trigger.subject"}}],
        }

        resolved = registry.resolve_config("conditional", config, context, VariableResolver())

        assert resolved == config

    def test_resolve_config_resolves_other_kinds(self, registry, context):
        resolved = registry.resolve_config(
            "log_event", {"message": "From {{$trigger.sender}}"}, context, VariableResolver()
        )

        assert resolved == {"message": "From ops@example.com"}


# ==============================================================================
# Validation Tests
# ==============================================================================


class TestActionValidation:
    """Tests for config validation."""

    def test_required_keys(self, registry):
        assert registry.get_config_errors("send_email", {"to": ["a@b.co"]}) == [
            "'subject' is required"
        ]
        assert registry.validate_action_config("send_notification", {"title": "t", "body": "b"})

    def test_http_method(self, registry):
        errors = registry.get_config_errors("api_request", {"method": "FETCH", "url": "http://x"})

        assert errors == ["Unsupported HTTP method: FETCH"]
        assert registry.validate_action_config("api_request", {"method": "$recipe.m", "url": "u"})

    def test_wait_duration(self, registry):
        assert registry.get_config_errors("wait", {"duration": -1}) == [
            "'duration' must not be negative"
        ]
        assert registry.get_config_errors("wait", {"duration": "soon", "unit": "hours"}) == [
            "'duration' must be a number",
            "Unsupported unit: hours",
        ]
        assert registry.validate_action_config("wait", {"duration": "$recipe.delay"})

    def test_log_level(self, registry):
        assert registry.get_config_errors("log_event", {"message": "m", "level": "loud"}) == [
            "Unsupported log level: loud"
        ]

    def test_set_variable(self, registry):
        assert registry.validate_action_config("set_variable", {"name": "x", "value": 1})
        assert registry.validate_action_config("set_variable", {"variables": {"x": 1}})
        assert registry.get_config_errors("set_variable", {}) == [
            "'name' or a non-empty 'variables' mapping is required"
        ]

    def test_conditional_validates_branches(self, registry):
        config = {
            "condition": {"field": "subject", "operator": "sounds_like"},
            "true_actions": [{"type": "send_email", "config": {"to": ["x@y.z"]}}],
            "false_actions": [{"config": {}}],
        }

        errors = registry.get_config_errors("conditional", config)

        assert errors == [
            "condition: unsupported operator 'sounds_like'",
            "true_actions[0]: 'subject' is required",
            "false_actions[0]: 'type' is required",
        ]

    def test_conditional_requires_condition(self, registry):
        assert registry.get_config_errors("conditional", {}) == ["'condition' is required"]


# ==============================================================================
# Service Action Tests
# ==============================================================================


class TestServiceActions:
    """Tests for actions backed by injected services."""

    @pytest.mark.anyio
    async def test_send_notification(self, registry, context, notifier):
        result = await registry.execute_action(
            "send_notification",
            {"title": "Urgent", "body": "disk", "priority": "urgent", "timeout": 20000},
            context,
        )

        assert result["success"] is True
        assert result["title"] == "Urgent"
        assert notifier.shown == [
            {"title": "Urgent", "body": "disk", "type": "error", "persistent": True, "actions": []}
        ]

    @pytest.mark.anyio
    async def test_send_email_with_sync_service(self, registry, context, services):
        result = await registry.execute_action(
            "send_email", {"to": "ada@example.com", "subject": "Hi"}, context
        )

        assert result["message_id"] == "msg_1"
        assert services["email"].sent[0]["to"] == ["ada@example.com"]
        assert services["email"].sent[0]["body"] == ""

    @pytest.mark.anyio
    async def test_archive_email(self, registry, context, services):
        result = await registry.execute_action("archive_email", {"email_id": "m42"}, context)

        assert result["email_id"] == "m42"
        assert services["email"].archived == ["m42"]

    @pytest.mark.anyio
    async def test_create_and_update_event(self, registry, context, services):
        created = await registry.execute_action(
            "create_event",
            {"title": "Sync", "start_time": "2026-03-02T09:00", "end_time": "2026-03-02T09:30"},
            context,
        )
        updated = await registry.execute_action(
            "update_event", {"event_id": created["event_id"], "title": "Standup"}, context
        )

        assert created["event_id"] == "evt_1"
        assert updated["event_id"] == "evt_1"
        assert services["calendar"].updates == [("evt_1", {"title": "Standup"})]

    @pytest.mark.anyio
    async def test_missing_service(self, registry, context):
        with pytest.raises(ActionError, match="No 'tasks' service configured"):
            await registry.execute_action("create_task", {"title": "Follow up"}, context)

    @pytest.mark.anyio
    async def test_service_without_method(self, registry, context):
        registry.register_service("messaging", object())

        with pytest.raises(ActionError, match="does not support send_message"):
            await registry.execute_action(
                "send_message", {"platform": "slack", "channel": "ops", "message": "hi"}, context
            )


# ==============================================================================
# HTTP Action Tests
# ==============================================================================


class TestHTTPActions:
    """Tests for api_request and webhook_call."""

    @pytest.mark.anyio
    async def test_api_request_json(self, registry, context, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST", url="https://api.example.com/tickets", json={"id": 7}, status_code=201
        )

        result = await registry.execute_action(
            "api_request",
            {
                "method": "post",
                "url": "https://api.example.com/tickets",
                "body": {"title": "Disk"},
                "auth": {"type": "bearer", "credentials": {"token": "secret"}},
            },
            context,
        )

        request = httpx_mock.get_requests()[0]
        assert result["status"] == 201
        assert result["data"] == {"id": 7}
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {"title": "Disk"}

    @pytest.mark.anyio
    async def test_api_request_text_body(self, registry, context, httpx_mock: HTTPXMock):
        httpx_mock.add_response(text="pong")

        result = await registry.execute_action(
            "api_request", {"method": "GET", "url": "https://api.example.com/ping"}, context
        )

        assert result["data"] == "pong"
        assert result["status_text"] == "OK"

    @pytest.mark.anyio
    async def test_api_request_error_status(self, registry, context, httpx_mock: HTTPXMock):
        httpx_mock.add_response(status_code=503)

        with pytest.raises(ActionError, match="API request failed: 503 Service Unavailable"):
            await registry.execute_action(
                "api_request", {"method": "GET", "url": "https://api.example.com/x"}, context
            )

    @pytest.mark.anyio
    async def test_transport_error_without_retry(self, registry, context, httpx_mock: HTTPXMock):
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))

        with pytest.raises(ActionError, match="connection refused"):
            await registry.execute_action(
                "api_request", {"method": "GET", "url": "https://api.example.com/x"}, context
            )

    @pytest.mark.anyio
    async def test_transport_error_retried(self, context, sleep, httpx_mock: HTTPXMock):
        http_config = HTTPClientConfig(
            retry=RetryPolicyConfig(max_attempts=2, backoff_seconds=0.5)
        )
        registry = ActionRegistry(http_config=http_config, sleep=sleep)
        registry.register_builtin_actions()
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))
        httpx_mock.add_response(json={"ok": True})

        result = await registry.execute_action(
            "api_request", {"method": "GET", "url": "https://api.example.com/x"}, context
        )

        assert result["data"] == {"ok": True}
        assert sleep.calls == [0.5]
        assert len(httpx_mock.get_requests()) == 2

    @pytest.mark.anyio
    async def test_webhook_call_sends_trigger_data(self, registry, context, httpx_mock):
        httpx_mock.add_response(method="POST", url="https://hooks.example.com/in", json={})

        result = await registry.execute_action(
            "webhook_call", {"url": "https://hooks.example.com/in"}, context
        )

        request = httpx_mock.get_requests()[0]
        assert result["status"] == 200
        assert json.loads(request.content) == context.trigger
        assert request.headers["Content-Type"] == "application/json"

    @pytest.mark.anyio
    async def test_webhook_call_error(self, registry, context, httpx_mock: HTTPXMock):
        httpx_mock.add_response(status_code=404)

        with pytest.raises(ActionError, match="Webhook call failed: 404"):
            await registry.execute_action(
                "webhook_call", {"url": "https://hooks.example.com/in", "payload": {}}, context
            )


# ==============================================================================
# Flow Action Tests
# ==============================================================================


class TestFlowActions:
    """Tests for wait, log_event, set_variable and conditional."""

    @pytest.mark.anyio
    async def test_wait_default_unit(self, registry, context, sleep):
        result = await registry.execute_action("wait", {"duration": 250}, context)

        assert sleep.calls == [pytest.approx(0.25)]
        assert result["waited"] == pytest.approx(250)

    @pytest.mark.anyio
    async def test_wait_seconds(self, registry, context, sleep):
        result = await registry.execute_action("wait", {"duration": 2, "unit": "seconds"}, context)

        assert sleep.calls == [2.0]
        assert result["waited"] == 2000

    @pytest.mark.anyio
    async def test_log_event(self, registry, context, caplog):
        with caplog.at_level(logging.WARNING, logger="recipe_automation.automation.recipes"):
            result = await registry.execute_action(
                "log_event", {"message": "Disk full", "level": "warn", "data": {"pct": 97}}, context
            )

        assert result["level"] == "warn"
        assert "[recipe_1] Disk full | Data: {'pct': 97}" in caplog.text

    @pytest.mark.anyio
    async def test_set_variable(self, registry, context):
        result = await registry.execute_action(
            "set_variable", {"name": "ticket", "value": "OPS-1", "variables": {"n": 2}}, context
        )

        assert result["variables"] == {"n": 2, "ticket": "OPS-1"}
        assert context.variables.computed == {"n": 2, "ticket": "OPS-1"}

    @pytest.mark.anyio
    async def test_set_variable_is_write_once(self, registry, context):
        await registry.execute_action("set_variable", {"name": "x", "value": 1}, context)

        with pytest.raises(ActionError, match="already defined"):
            await registry.execute_action("set_variable", {"name": "x", "value": 2}, context)

    @pytest.mark.anyio
    async def test_conditional_runs_matching_branch(self, registry, context, notifier):
        config = {
            "condition": {"field": "subject", "operator": "contains", "value": "urgent"},
            "true_actions": [
                {
                    "type": "send_notification",
                    "config": {"title": "{{$trigger.subject}}", "body": "$trigger.sender"},
                }
            ],
            "false_actions": [{"type": "log_event", "config": {"message": "ignored"}}],
        }

        result = await registry.execute_action("conditional", config, context)

        assert result["condition_met"] is True
        assert result["actions_executed"] == 1
        assert notifier.shown[0]["title"] == "URGENT: server down"
        assert notifier.shown[0]["body"] == "ops@example.com"

    @pytest.mark.anyio
    async def test_conditional_false_branch(self, registry, context, notifier):
        config = {
            "condition": {"field": "priority", "operator": "greater_than", "value": 8},
            "true_actions": [{"type": "send_notification", "config": {"title": "t", "body": "b"}}],
        }

        result = await registry.execute_action("conditional", config, context)

        assert result["condition_met"] is False
        assert result["actions_executed"] == 0
        assert notifier.shown == []

    @pytest.mark.anyio
    async def test_unexpected_exception_is_wrapped(self, registry, context):
        """Test non-ActionError failures surface as ActionError."""
        with pytest.raises(ActionError, match="Action 'wait' failed"):
            await registry.execute_action("wait", {"duration": "soon"}, context)
