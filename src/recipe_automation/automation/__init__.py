"""Recipe automation engine.

This module provides:
- AutomationEngine: Main engine owning recipes, executions and the execution loop
- Trigger registry with built-in email, calendar, file, schedule and app triggers
- Action registry with built-in service, HTTP, flow-control and variable actions
- Conditional logic engine for field/operator/value conditions and logic groups
- Variable resolver for scoped references, transforms and template rendering
"""

from .actions import (
    ActionDefinition,
    ActionRegistry,
    ActionType,
    ApiRequestAction,
    ArchiveEmailAction,
    ConditionalAction,
    CreateEventAction,
    CreateTaskAction,
    HTTPAction,
    LogEventAction,
    PerformSearchAction,
    ReplyEmailAction,
    SendEmailAction,
    SendMessageAction,
    SendNotificationAction,
    ServiceAction,
    SetVariableAction,
    UpdateEventAction,
    WaitAction,
    WebhookCallAction,
)
from .conditions import CompiledCondition, ConditionalLogicEngine
from .engine import AutomationEngine, schedule_job_id
from .exceptions import (
    ActionError,
    AutomationError,
    ExecutionAbortedError,
    ExecutionNotFoundError,
    InvalidExecutionStateError,
    JobNotFoundError,
    RecipeNotFoundError,
    SchedulingError,
    UnknownActionTypeError,
    UnknownTriggerTypeError,
    UnsupportedOperatorError,
    ValidationError,
    VariableNotFoundError,
)
from .execution import (
    ActionContext,
    ActionExecution,
    ActionStatus,
    CancellationToken,
    Execution,
    ExecutionStatus,
    ExecutionTrigger,
    RetryRecord,
    VariableContext,
)
from .models import (
    Action,
    Condition,
    Recipe,
    RecipeSettings,
    RecipeStats,
    RecipeTrigger,
    RetryPolicy,
    VariableDefinition,
)
from .triggers import (
    SCHEDULED_TRIGGER_TYPES,
    DateTimeTrigger,
    EmailReceivedTrigger,
    EventStartingTrigger,
    FileCreatedTrigger,
    FileModifiedTrigger,
    ManualTrigger,
    ScheduleTrigger,
    TriggerDefinition,
    TriggerRegistry,
    TriggerType,
    WebhookTrigger,
)
from .variables import VariableReference, VariableResolver, parse_reference

__all__ = [
    # Engine
    "AutomationEngine",
    "schedule_job_id",
    # Models
    "Action",
    "Condition",
    "Recipe",
    "RecipeSettings",
    "RecipeStats",
    "RecipeTrigger",
    "RetryPolicy",
    "VariableDefinition",
    # Execution records
    "ActionContext",
    "ActionExecution",
    "ActionStatus",
    "CancellationToken",
    "Execution",
    "ExecutionStatus",
    "ExecutionTrigger",
    "RetryRecord",
    "VariableContext",
    # Triggers
    "SCHEDULED_TRIGGER_TYPES",
    "TriggerType",
    "TriggerDefinition",
    "TriggerRegistry",
    "DateTimeTrigger",
    "EmailReceivedTrigger",
    "EventStartingTrigger",
    "FileCreatedTrigger",
    "FileModifiedTrigger",
    "ManualTrigger",
    "ScheduleTrigger",
    "WebhookTrigger",
    # Actions
    "ActionType",
    "ActionDefinition",
    "ActionRegistry",
    "ServiceAction",
    "HTTPAction",
    "ApiRequestAction",
    "ArchiveEmailAction",
    "ConditionalAction",
    "CreateEventAction",
    "CreateTaskAction",
    "LogEventAction",
    "PerformSearchAction",
    "ReplyEmailAction",
    "SendEmailAction",
    "SendMessageAction",
    "SendNotificationAction",
    "SetVariableAction",
    "UpdateEventAction",
    "WaitAction",
    "WebhookCallAction",
    # Conditions and variables
    "CompiledCondition",
    "ConditionalLogicEngine",
    "VariableReference",
    "VariableResolver",
    "parse_reference",
    # Errors
    "AutomationError",
    "ValidationError",
    "SchedulingError",
    "UnknownTriggerTypeError",
    "UnknownActionTypeError",
    "UnsupportedOperatorError",
    "VariableNotFoundError",
    "ActionError",
    "ExecutionAbortedError",
    "RecipeNotFoundError",
    "ExecutionNotFoundError",
    "JobNotFoundError",
    "InvalidExecutionStateError",
]
