"""Exceptions raised by the automation engine and its components."""

from __future__ import annotations


class AutomationError(Exception):
    """Base exception for automation errors."""

    pass


class ValidationError(AutomationError):
    """Raised when a recipe, trigger, action or variable set is invalid.

    Validation happens before any state change, so catching this error means
    nothing was created, updated or persisted.
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Summary message
            errors: Individual validation problems
        """
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: {'; '.join(self.errors)}"
        super().__init__(message)


class SchedulingError(ValidationError):
    """Raised when a cron expression, timezone or date window is rejected."""

    pass


class UnknownTriggerTypeError(AutomationError):
    """Raised when a trigger type is not registered."""

    def __init__(self, trigger_type: str) -> None:
        self.trigger_type = trigger_type
        super().__init__(f"Unknown trigger type: {trigger_type}")


class UnknownActionTypeError(AutomationError):
    """Raised when an action type is not registered."""

    def __init__(self, action_type: str) -> None:
        self.action_type = action_type
        super().__init__(f"Unknown action type: {action_type}")


class UnsupportedOperatorError(AutomationError):
    """Raised when a condition uses an operator nobody registered."""

    def __init__(self, operator: str) -> None:
        self.operator = operator
        super().__init__(f"Unsupported operator: {operator}")


class VariableNotFoundError(AutomationError):
    """Raised when a variable reference cannot be resolved."""

    def __init__(self, reference: str, reason: str | None = None) -> None:
        """Initialize the exception.

        Args:
            reference: The reference as written, e.g. ``$step.action_0_result``
            reason: Optional detail about why resolution failed
        """
        self.reference = reference
        message = f"Variable not found: {reference}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class ActionError(AutomationError):
    """Raised when an action executor fails. Retryable per the action's policy."""

    def __init__(
        self,
        message: str,
        action_type: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            action_type: Type of the action that failed
            original_error: Original exception that caused the failure
        """
        self.action_type = action_type
        self.original_error = original_error
        super().__init__(message)


class ExecutionAbortedError(AutomationError):
    """Raised inside an execution when a non-continuable action fails."""

    def __init__(self, message: str, action_id: str | None = None) -> None:
        self.action_id = action_id
        super().__init__(message)


class RecipeNotFoundError(AutomationError):
    """Raised when a recipe id is unknown."""

    def __init__(self, recipe_id: str) -> None:
        self.recipe_id = recipe_id
        super().__init__(f"Recipe not found: {recipe_id}")


class ExecutionNotFoundError(AutomationError):
    """Raised when an execution id is unknown."""

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")


class JobNotFoundError(AutomationError):
    """Raised when a scheduled job id is unknown."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidExecutionStateError(AutomationError):
    """Raised when an operation is not allowed in the execution's current status."""

    def __init__(self, execution_id: str, status: str, operation: str = "cancel") -> None:
        self.execution_id = execution_id
        self.status = status
        super().__init__(f"Cannot {operation} execution {execution_id} in status {status}")


__all__ = [
    "ActionError",
    "AutomationError",
    "ExecutionAbortedError",
    "ExecutionNotFoundError",
    "InvalidExecutionStateError",
    "JobNotFoundError",
    "RecipeNotFoundError",
    "SchedulingError",
    "UnknownActionTypeError",
    "UnknownTriggerTypeError",
    "UnsupportedOperatorError",
    "ValidationError",
    "VariableNotFoundError",
]
