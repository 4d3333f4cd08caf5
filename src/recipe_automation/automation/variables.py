"""Variable resolution for action configuration.

Walks arbitrary value trees and replaces:

- strings starting with ``$`` by the referenced variable, e.g.
  ``$trigger.subject|upper|truncate:20``
- strings containing ``{{ ... }}`` by a rendered template

Anything else is returned unchanged.
"""

from __future__ import annotations

import copy
import json
import math
import re
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote, urlparse

from ..core.config import VariableResolverConfig
from ..core.logger import get_logger
from .exceptions import ValidationError, VariableNotFoundError
from .execution import VariableContext
from .expression import (
    BUILTIN_FUNCTIONS,
    NOT_A_LITERAL,
    get_nested_value,
    is_number,
    match_function_call,
    parse_datetime,
    parse_literal,
    split_arguments,
    stringify,
    to_number,
)
from .models import VariableDefinition

logger = get_logger("automation.variables")

_TEMPLATE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Scopes that change while an execution runs
_VOLATILE_SCOPES = frozenset({"step", "computed"})

Transform = Callable[..., Any]
Validator = Callable[[Any], bool]


@dataclass
class VariableReference:
    """Parsed form of ``$scope.path|transform:arg``."""

    raw: str
    scope: str
    path: str
    transforms: list[tuple[str, list[Any]]] = field(default_factory=list)

    @property
    def key(self) -> str:
        """Reference without ``$`` and transforms, as used for default values."""
        return f"{self.scope}.{self.path}" if self.path else self.scope


def parse_reference(reference: str) -> VariableReference:
    """Parse a ``$`` reference into scope, path and transform chain."""
    body, *transform_parts = reference.strip()[1:].split("|")
    scope, _, path = body.strip().partition(".")
    transforms: list[tuple[str, list[Any]]] = []
    for part in transform_parts:
        name, *raw_args = part.strip().split(":")
        args = []
        for raw in raw_args:
            literal = parse_literal(raw.strip())
            args.append(raw if literal is NOT_A_LITERAL else literal)
        transforms.append((name.strip(), args))
    return VariableReference(raw=reference, scope=scope, path=path, transforms=transforms)


def _to_number(value: Any) -> int | float:
    number = to_number(value)
    if math.isnan(number):
        raise ValueError(f"Cannot convert {value!r} to a number")
    return int(number) if number.is_integer() and not isinstance(value, float) else number


def _truncate(value: Any, length: Any = 50, suffix: str = "") -> str:
    text = stringify(value)
    size = int(length)
    return text[:size] + suffix if len(text) > size else text


def _default_transforms() -> dict[str, Transform]:
    functions = BUILTIN_FUNCTIONS
    return {
        "upper": functions["upper"],
        "lower": functions["lower"],
        "trim": functions["trim"],
        "truncate": _truncate,
        "number": _to_number,
        "round": functions["round"],
        "abs": functions["abs"],
        "join": functions["join"],
        "first": functions["first"],
        "last": functions["last"],
        "json": functions["json"],
        "base64": functions["base64"],
        "url": lambda v: quote(stringify(v), safe=""),
        "default": functions["default"],
    }


def _is_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


def _is_uuid(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _default_validators() -> dict[str, Validator]:
    return {
        "email": lambda v: isinstance(v, str) and bool(_EMAIL.match(v)),
        "url": _is_url,
        "uuid": _is_uuid,
        "not_empty": lambda v: v is not None and stringify(v).strip() != "",
    }


class VariableResolver:
    """Resolve ``$`` references and ``{{ }}`` templates against a VariableContext."""

    def __init__(self, config: VariableResolverConfig | None = None) -> None:
        self.config = config or VariableResolverConfig()
        self._functions: dict[str, Callable[..., Any]] = dict(BUILTIN_FUNCTIONS)
        self._transforms: dict[str, Transform] = _default_transforms()
        self._validators: dict[str, Validator] = _default_validators()
        self._cache: dict[tuple[str, str], tuple[float, Any]] = {}
        self._templates: dict[str, list[tuple[bool, str]]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def register_function(self, name: str, func: Callable[..., Any]) -> None:
        self._functions[name] = func

    def register_transform(self, name: str, func: Transform) -> None:
        """Register a transform usable as ``$ref|name:arg``."""
        self._transforms[name] = func

    def register_validator(self, name: str, func: Validator) -> None:
        self._validators[name] = func

    @property
    def transforms(self) -> list[str]:
        return sorted(self._transforms)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    def resolve_variables(
        self,
        value: Any,
        context: VariableContext,
        throw_on_missing: bool | None = None,
    ) -> Any:
        """Resolve every reference and template inside ``value``.

        Args:
            value: Arbitrary tree of dicts, lists and scalars
            context: Variables visible to the current execution
            throw_on_missing: Override the configured missing-variable behaviour

        Returns:
            A new tree with references substituted

        Raises:
            VariableNotFoundError: If a reference is missing and throwing is enabled
        """
        if isinstance(value, Mapping):
            return {
                key: self.resolve_variables(item, context, throw_on_missing)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [self.resolve_variables(item, context, throw_on_missing) for item in value]
        if isinstance(value, str):
            return self.resolve_string(value, context, throw_on_missing)
        return value

    def resolve_string(
        self, value: str, context: VariableContext, throw_on_missing: bool | None = None
    ) -> Any:
        if value.startswith("$"):
            return self.resolve_reference(value, context, throw_on_missing)
        if "{{" in value and "}}" in value:
            return self.render_template(value, context, throw_on_missing)
        return value

    def resolve_reference(
        self, reference: str, context: VariableContext, throw_on_missing: bool | None = None
    ) -> Any:
        """Resolve a single ``$scope.path|transforms`` reference."""
        throw = self.config.throw_on_missing if throw_on_missing is None else throw_on_missing
        parsed = parse_reference(reference)
        execution_id = context.execution_id
        if not parsed.path or parsed.scope in _VOLATILE_SCOPES:
            execution_id = None

        cached = self._cache_get(execution_id, reference)
        if cached is not NOT_A_LITERAL:
            return copy.deepcopy(cached)

        try:
            source = context.get_scope(parsed.scope)
            value = get_nested_value(source, parsed.path) if parsed.path else source
            if value is None:
                if any(name == "default" for name, _ in parsed.transforms):
                    return self._apply_transforms(None, parsed.transforms)
                raise VariableNotFoundError(reference)
            result = self._apply_transforms(copy.deepcopy(value), parsed.transforms)
        except Exception as exc:
            return self._handle_missing(parsed, exc, throw)

        self._cache_put(execution_id, reference, result)
        return copy.deepcopy(result)

    def render_template(
        self, template: str, context: VariableContext, throw_on_missing: bool | None = None
    ) -> str:
        """Render ``{{ expr }}`` placeholders. A failing placeholder is left as written."""
        rendered: list[str] = []
        for is_expression, text in self._compile_template(template):
            if not is_expression:
                rendered.append(text)
                continue
            try:
                rendered.append(
                    stringify(self.evaluate_expression(text.strip(), context, throw_on_missing))
                )
            except VariableNotFoundError:
                raise
            except Exception as exc:
                logger.debug("Template expression '%s' failed: %s", text, exc)
                rendered.append("{{" + text + "}}")
        return "".join(rendered)

    def evaluate_expression(
        self, expression: str, context: VariableContext, throw_on_missing: bool | None = None
    ) -> Any:
        """Evaluate a template expression: reference, literal, call or trigger path."""
        if expression.startswith("$"):
            return self.resolve_reference(expression, context, throw_on_missing)

        literal = parse_literal(expression)
        if literal is not NOT_A_LITERAL:
            return literal

        call = match_function_call(expression)
        if call:
            name, args_text = call
            func = self._functions.get(name)
            if func is None:
                raise ValidationError(f"Unknown function: {name}")
            args = [
                self.evaluate_expression(arg, context, throw_on_missing)
                for arg in split_arguments(args_text)
            ]
            try:
                return func(*args)
            except Exception as exc:
                raise ValidationError(f"Error calling function {name}: {exc}") from exc

        return get_nested_value(context.trigger, expression)

    def _apply_transforms(self, value: Any, transforms: list[tuple[str, list[Any]]]) -> Any:
        for name, args in transforms:
            transform = self._transforms.get(name)
            if transform is None:
                raise ValidationError(f"Unknown transform: {name}")
            value = transform(value, *args)
        return value

    def _handle_missing(self, parsed: VariableReference, exc: Exception, throw: bool) -> Any:
        if throw:
            if isinstance(exc, VariableNotFoundError):
                raise exc
            raise VariableNotFoundError(parsed.raw, str(exc)) from exc

        defaults = self.config.default_values
        for key in (parsed.raw[1:], parsed.key):
            if key in defaults:
                return copy.deepcopy(defaults[key])

        logger.debug("Unresolved variable %s left as written: %s", parsed.raw, exc)
        return parsed.raw

    def _compile_template(self, template: str) -> list[tuple[bool, str]]:
        with self._lock:
            parts = self._templates.get(template)
        if parts is not None:
            return parts

        parts = []
        position = 0
        for match in _TEMPLATE.finditer(template):
            if match.start() > position:
                parts.append((False, template[position : match.start()]))
            parts.append((True, match.group(1)))
            position = match.end()
        if position < len(template):
            parts.append((False, template[position:]))

        with self._lock:
            self._templates[template] = parts
        return parts

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------
    def _cache_get(self, execution_id: str | None, reference: str) -> Any:
        if not self.config.cache_enabled or not execution_id:
            return NOT_A_LITERAL
        with self._lock:
            entry = self._cache.get((execution_id, reference))
            if entry is None:
                return NOT_A_LITERAL
            expires_at, value = entry
            if time.monotonic() >= expires_at:
                del self._cache[(execution_id, reference)]
                return NOT_A_LITERAL
            return value

    def _cache_put(self, execution_id: str | None, reference: str, value: Any) -> None:
        if not self.config.cache_enabled or not execution_id:
            return
        with self._lock:
            self._cache[(execution_id, reference)] = (
                time.monotonic() + self.config.cache_ttl_seconds,
                value,
            )

    def clear_cache(self, execution_id: str | None = None) -> None:
        """Drop cached references for one execution, or everything."""
        with self._lock:
            if execution_id is None:
                self._cache.clear()
                self._templates.clear()
                return
            for key in [k for k in self._cache if k[0] == execution_id]:
                del self._cache[key]

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate_variables(
        self,
        variables: Mapping[str, Any],
        definitions: list[VariableDefinition] | list[Mapping[str, Any]],
    ) -> list[str]:
        """Check supplied variables against their declarations.

        Returns:
            Human-readable problems; empty when everything is valid
        """
        errors: list[str] = []
        for raw in definitions:
            definition = (
                raw
                if isinstance(raw, VariableDefinition)
                else VariableDefinition.model_validate(raw)
            )
            value = variables.get(definition.name)
            if value is None:
                if definition.required and definition.default is None:
                    errors.append(f"Variable '{definition.name}' is required")
                continue

            if definition.type:
                problem = self._check_type(value, definition.type)
                if problem:
                    errors.append(f"Variable '{definition.name}': {problem}")
                    continue

            errors.extend(
                f"Variable '{definition.name}': {problem}"
                for problem in self._check_rules(value, definition)
            )
        return errors

    def apply_defaults(
        self,
        variables: Mapping[str, Any],
        definitions: list[VariableDefinition],
    ) -> dict[str, Any]:
        """Return ``variables`` with declared defaults filled in."""
        merged = dict(variables)
        for definition in definitions:
            if merged.get(definition.name) is None and definition.default is not None:
                merged[definition.name] = copy.deepcopy(definition.default)
        return merged

    @staticmethod
    def _check_type(value: Any, expected: str) -> str | None:
        if expected == "string" and not isinstance(value, str):
            return f"expected string, got {type(value).__name__}"
        if expected == "number" and not is_number(value):
            return f"expected number, got {type(value).__name__}"
        if expected == "boolean" and not isinstance(value, bool):
            return f"expected boolean, got {type(value).__name__}"
        if expected == "array" and not isinstance(value, (list, tuple)):
            return f"expected array, got {type(value).__name__}"
        if expected == "object" and not isinstance(value, Mapping):
            return f"expected object, got {type(value).__name__}"
        if expected == "date":
            try:
                parse_datetime(value)
            except (TypeError, ValueError):
                return "expected a valid date"
        if expected == "email" and not (isinstance(value, str) and _EMAIL.match(value)):
            return "expected a valid email address"
        if expected == "url" and not _is_url(value):
            return "expected a valid URL"
        return None

    def _check_rules(self, value: Any, definition: VariableDefinition) -> list[str]:
        problems: list[str] = []
        measured: float | None = None
        if is_number(value):
            measured = float(value)
        elif isinstance(value, (str, list, tuple)):
            measured = float(len(value))

        if measured is not None:
            if definition.min is not None and measured < definition.min:
                problems.append(f"must be at least {definition.min:g}")
            if definition.max is not None and measured > definition.max:
                problems.append(f"must be at most {definition.max:g}")

        if definition.pattern and isinstance(value, str):
            if not re.search(definition.pattern, value):
                problems.append(f"does not match pattern {definition.pattern}")

        if definition.enum is not None and value not in definition.enum:
            problems.append(f"must be one of {json.dumps(definition.enum, default=str)}")

        if definition.validator:
            validator = self._validators.get(definition.validator)
            if validator is None:
                problems.append(f"unknown validator '{definition.validator}'")
            elif not validator(value):
                problems.append(f"failed {definition.validator} validation")
        return problems


__all__ = [
    "VariableReference",
    "VariableResolver",
    "parse_reference",
]
