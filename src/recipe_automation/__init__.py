"""Recipe Automation Engine.

An embedded workflow-automation engine for personal productivity:
- Recipes: a trigger, trigger conditions and an ordered list of actions
- Built-in email, calendar, file, schedule, webhook and app triggers
- Built-in service, HTTP, wait, logging and variable actions
- Retries with backoff, per-recipe concurrency caps and throttling
- Cron and one-time schedules backed by APScheduler

Example:
    ```python
    from recipe_automation import AutomationConfig, AutomationEngine

    engine = AutomationEngine(AutomationConfig(), services={"notifications": notifier})
    await engine.initialize()

    engine.create_recipe(
        {
            "name": "Urgent mail",
            "trigger": {
                "type": "email_received",
                "conditions": [{"field": "subject", "operator": "contains", "value": "URGENT"}],
            },
            "actions": [
                {
                    "type": "send_notification",
                    "config": {"title": "Urgent", "body": "{{$execution.trigger.subject}}"},
                }
            ],
        }
    )
    engine.handle_trigger_event("email_received", {"subject": "URGENT: server down"})
    ```
"""

from importlib.metadata import PackageNotFoundError, version

from .automation import (
    AutomationEngine,
    Execution,
    ExecutionStatus,
    Recipe,
)
from .core import (
    AutomationConfig,
    EventBus,
    get_logger,
    setup_logging,
)
from .scheduler import CronExpressionParser, CronJobManager

__all__ = [
    "__version__",
    "AutomationEngine",
    "AutomationConfig",
    "CronExpressionParser",
    "CronJobManager",
    "EventBus",
    "Execution",
    "ExecutionStatus",
    "Recipe",
    "get_logger",
    "setup_logging",
]

try:  # pragma: no cover - best-effort during development
    __version__ = version("recipe-automation")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
