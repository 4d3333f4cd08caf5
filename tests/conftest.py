"""Test configuration hooks."""

from __future__ import annotations

import pytest

from recipe_automation.automation.execution import VariableContext
from recipe_automation.core.config import (
    AutomationConfig,
    EngineConfig,
    SchedulerConfig,
)
from tests.mocks import RecordingNotifier


# Configure anyio to only use asyncio backend (skip trio tests)
@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio to use only asyncio backend."""
    return "asyncio"


@pytest.fixture
def engine_config() -> AutomationConfig:
    """Engine configuration with a fast tick and no background scheduler thread."""
    return AutomationConfig(
        engine=EngineConfig(tick_interval_seconds=0.01, shutdown_timeout_seconds=1.0),
        scheduler=SchedulerConfig(enabled=False),
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def variable_context() -> VariableContext:
    """A populated variable context for resolver and condition tests."""
    return VariableContext(
        global_scope={"company": "Acme", "limit": 10},
        recipe={"owner": "ada", "tags": ["ops", "mail"]},
        execution={
            "execution_id": "exec_1",
            "recipe_id": "recipe_1",
            "trigger": {
                "subject": "URGENT: server down",
                "sender": "ops@example.com",
                "priority": 5,
                "attachments": [{"name": "log.txt", "size": 2048}],
            },
        },
        step={"action_0_result": {"status": 200, "items": [1, 2, 3]}},
    )
