"""Conditional logic engine.

Evaluates condition trees against event data and a variable context. A leaf looks
like ``{"field": ..., "operator": ..., "value": ...}``; a group looks like
``{"conditions": [...], "logic": "AND" | "OR"}``. Evaluation is pure and
short-circuits per group logic.
"""

from __future__ import annotations

import hashlib
import json
import re
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..core.logger import get_logger
from .exceptions import (
    UnsupportedOperatorError,
    ValidationError,
    VariableNotFoundError,
)
from .execution import SCOPES, VariableContext
from .expression import (
    BUILTIN_FUNCTIONS,
    NOT_A_LITERAL,
    get_nested_value,
    is_empty,
    match_function_call,
    parse_literal,
    split_arguments,
    stringify,
    to_number,
)
from .models import Condition

logger = get_logger("automation.conditions")

OperatorFn = Callable[[Any, Any], bool]
ConditionLike = Condition | Mapping[str, Any]
VariablesLike = VariableContext | Mapping[str, Any] | None

_TEMPLATE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)


def _as_mapping(condition: ConditionLike) -> Mapping[str, Any]:
    if isinstance(condition, Condition):
        return condition.model_dump()
    return condition


def _lower(value: Any) -> str:
    return stringify(value).lower()


def _contains(left: Any, right: Any) -> bool:
    if left is None:
        return False
    if isinstance(left, (list, tuple, set)):
        needle = _lower(right)
        return any(_lower(item) == needle for item in left)
    if isinstance(left, Mapping):
        return right in left
    return _lower(right) in _lower(left)


def _starts_with(left: Any, right: Any) -> bool:
    return left is not None and _lower(left).startswith(_lower(right))


def _ends_with(left: Any, right: Any) -> bool:
    return left is not None and _lower(left).endswith(_lower(right))


def _in(left: Any, right: Any) -> bool:
    if isinstance(right, (list, tuple, set)):
        return left in right
    if right is None or left is None:
        return False
    return stringify(left) in stringify(right)


def _regex(left: Any, right: Any) -> bool:
    if left is None:
        return False
    try:
        return re.search(stringify(right), stringify(left), re.IGNORECASE) is not None
    except re.error as exc:
        raise ValidationError(f"Invalid regex pattern '{right}': {exc}") from exc


def _compare(op: Callable[[float, float], bool]) -> OperatorFn:
    def compare(left: Any, right: Any) -> bool:
        # NaN compares False both ways, so non-numeric operands never match.
        return op(to_number(left), to_number(right))

    return compare


def _default_operators() -> dict[str, OperatorFn]:
    return {
        "equals": lambda a, b: a == b,
        "not_equals": lambda a, b: a != b,
        "greater_than": _compare(lambda a, b: a > b),
        "greater_than_or_equal": _compare(lambda a, b: a >= b),
        "less_than": _compare(lambda a, b: a < b),
        "less_than_or_equal": _compare(lambda a, b: a <= b),
        "contains": _contains,
        "not_contains": lambda a, b: not _contains(a, b),
        "starts_with": _starts_with,
        "ends_with": _ends_with,
        "in": _in,
        "not_in": lambda a, b: not _in(a, b),
        "exists": lambda a, _: a is not None,
        "not_exists": lambda a, _: a is None,
        "is_empty": lambda a, _: is_empty(a),
        "is_not_empty": lambda a, _: not is_empty(a),
        "regex": _regex,
    }


@dataclass
class CompiledCondition:
    """A condition bound to an engine, reusable across evaluations."""

    id: str
    condition: Mapping[str, Any]
    engine: ConditionalLogicEngine = field(repr=False)

    def evaluate(self, data: Mapping[str, Any], variables: VariablesLike = None) -> bool:
        return self.engine.evaluate_condition(self.condition, data, variables)


class ConditionalLogicEngine:
    """Evaluate conditions against event data and variable scopes."""

    def __init__(self) -> None:
        self._functions: dict[str, Callable[..., Any]] = dict(BUILTIN_FUNCTIONS)
        self._operators: dict[str, OperatorFn] = _default_operators()
        self._compiled: dict[str, CompiledCondition] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def register_function(self, name: str, func: Callable[..., Any]) -> None:
        """Expose a function to ``name(args)`` expressions."""
        self._functions[name] = func
        logger.debug("Registered condition function: %s", name)

    def register_operator(self, name: str, func: OperatorFn) -> None:
        """Register a comparison operator ``func(left, right) -> bool``."""
        self._operators[name] = func
        logger.debug("Registered condition operator: %s", name)

    def has_operator(self, name: str) -> bool:
        return name in self._operators

    @property
    def operators(self) -> list[str]:
        return sorted(self._operators)

    @property
    def functions(self) -> list[str]:
        return sorted(self._functions)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def evaluate_condition(
        self,
        condition: ConditionLike,
        data: Mapping[str, Any] | None,
        variables: VariablesLike = None,
    ) -> bool:
        """Evaluate one condition (leaf or group).

        Args:
            condition: Condition model or mapping
            data: Event/trigger data used for bare field names
            variables: Variable context for ``$scope.path`` references

        Returns:
            Whether the condition holds

        Raises:
            UnsupportedOperatorError: If the leaf's operator is not registered
        """
        cond = _as_mapping(condition)
        data = data or {}

        if cond.get("conditions") is not None:
            return self.evaluate_conditions(
                cond["conditions"], data, variables, cond.get("logic") or "AND"
            )

        operator = cond.get("operator")
        func = self._operators.get(operator) if operator else None
        if func is None:
            raise UnsupportedOperatorError(str(operator))

        left = self.resolve_field(cond.get("field") or "", data, variables)
        right = self.resolve_value(cond.get("value"), data, variables)
        return bool(func(left, right))

    def evaluate_conditions(
        self,
        conditions: Iterable[ConditionLike],
        data: Mapping[str, Any] | None,
        variables: VariablesLike = None,
        logic: str = "AND",
    ) -> bool:
        """Evaluate a flat list of conditions with AND/OR short-circuiting.

        An empty list is vacuously true.
        """
        conditions = list(conditions or [])
        if not conditions:
            return True

        mode = str(logic).upper()
        results = (self.evaluate_condition(c, data, variables) for c in conditions)
        if mode == "AND":
            return all(results)
        if mode == "OR":
            return any(results)
        raise ValidationError(f"Unsupported condition logic: {logic}")

    def compile_condition(self, condition: ConditionLike) -> CompiledCondition:
        """Return a reusable predicate keyed by a stable content hash."""
        cond = _as_mapping(condition)
        digest = hashlib.sha256(
            json.dumps(cond, sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()[:16]
        with self._lock:
            compiled = self._compiled.get(digest)
            if compiled is None:
                compiled = CompiledCondition(id=f"cond_{digest}", condition=cond, engine=self)
                self._compiled[digest] = compiled
        return compiled

    def validate_condition(self, condition: ConditionLike, path: str = "condition") -> list[str]:
        """Collect structural problems without evaluating anything."""
        cond = _as_mapping(condition)
        errors: list[str] = []

        if cond.get("conditions") is not None:
            logic = str(cond.get("logic") or "AND").upper()
            if logic not in ("AND", "OR"):
                errors.append(f"{path}: unsupported logic '{cond.get('logic')}'")
            for index, child in enumerate(cond["conditions"]):
                errors.extend(self.validate_condition(child, f"{path}.conditions[{index}]"))
            return errors

        if not cond.get("field"):
            errors.append(f"{path}: 'field' is required")
        operator = cond.get("operator")
        if not operator:
            errors.append(f"{path}: 'operator' is required")
        elif operator not in self._operators:
            errors.append(f"{path}: unsupported operator '{operator}'")
        elif operator == "regex":
            value = cond.get("value")
            if isinstance(value, str) and not value.startswith("$") and "{{" not in value:
                try:
                    re.compile(value)
                except re.error as exc:
                    errors.append(f"{path}: invalid regex '{value}': {exc}")
        return errors

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    def resolve_field(
        self, field_expr: str, data: Mapping[str, Any], variables: VariablesLike = None
    ) -> Any:
        """Resolve the left-hand side of a leaf.

        Order: ``$scope.path`` reference, registered function call, dotted path
        on the data, direct key on the data.
        """
        if not isinstance(field_expr, str):
            return field_expr
        expr = field_expr.strip()
        if expr.startswith("$"):
            return self._lookup_reference(expr, data, variables)
        call = match_function_call(expr)
        if call and call[0] in self._functions:
            return self._call(call[0], call[1], data, variables)
        if "." in expr or "[" in expr:
            return get_nested_value(data, expr)
        return data.get(expr) if isinstance(data, Mapping) else None

    def resolve_value(
        self, value: Any, data: Mapping[str, Any], variables: VariablesLike = None
    ) -> Any:
        """Resolve the right-hand side of a leaf. Non-strings pass through."""
        if not isinstance(value, str):
            return value
        if value.startswith("$"):
            return self._lookup_reference(value, data, variables)
        if "{{" in value and "}}" in value:
            return _TEMPLATE.sub(
                lambda m: stringify(self._evaluate_expression(m.group(1).strip(), data, variables)),
                value,
            )
        call = match_function_call(value)
        if call and call[0] in self._functions:
            return self._call(call[0], call[1], data, variables)
        return value

    def _evaluate_expression(
        self, expr: str, data: Mapping[str, Any], variables: VariablesLike
    ) -> Any:
        literal = parse_literal(expr)
        if literal is not NOT_A_LITERAL:
            return literal
        return self.resolve_field(expr, data, variables)

    def _call(
        self, name: str, args_text: str, data: Mapping[str, Any], variables: VariablesLike
    ) -> Any:
        args = [
            self._evaluate_expression(arg, data, variables) for arg in split_arguments(args_text)
        ]
        try:
            return self._functions[name](*args)
        except Exception as exc:
            raise ValidationError(f"Error calling function {name}: {exc}") from exc

    def _lookup_reference(
        self, reference: str, data: Mapping[str, Any], variables: VariablesLike
    ) -> Any:
        body = reference[1:]
        scope, _, path = body.partition(".")
        if scope == "trigger":
            source: Any = data
        elif isinstance(variables, VariableContext):
            source = variables.get_scope(scope)
        elif scope in SCOPES or scope == "metadata":
            source = (variables or {}).get(scope) or {}
        else:
            raise VariableNotFoundError(reference, f"unknown scope '{scope}'")
        return get_nested_value(source, path) if path else source


__all__ = [
    "CompiledCondition",
    "ConditionalLogicEngine",
    "OperatorFn",
]
