"""Shared expression grammar for conditions and variable templates.

Both the conditional logic engine and the variable resolver understand the same
small language:

- ``$scope.path|transform:arg`` references
- ``name(arg, ...)`` calls, arguments split on top-level commas with quoted strings
  and nested parentheses respected
- literals: quoted strings, numbers, ``true``/``false``/``null``
- dotted paths with ``key[index]`` access
"""

from __future__ import annotations

import base64
import json
import math
import re
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime, timedelta, timezone
from typing import Any

FUNCTION_CALL = re.compile(r"^([A-Za-z_]\w*)\((.*)\)$", re.DOTALL)
_SEGMENT = re.compile(r"^([^\[\]]*)((?:\[-?\d+\])*)$")
_INDEX = re.compile(r"\[(-?\d+)\]")
_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")

NOT_A_LITERAL = object()


def get_nested_value(obj: Any, path: str) -> Any:
    """Walk ``path`` (``a.b[0].c``) through mappings, sequences and attributes.

    Returns None as soon as a segment is missing.
    """
    if not path:
        return obj

    current = obj
    for part in path.split("."):
        if current is None:
            return None
        match = _SEGMENT.match(part)
        if not match:
            return None
        key, indexes = match.group(1), match.group(2)
        if key:
            current = _get_key(current, key)
        for index in _INDEX.findall(indexes):
            current = _get_index(current, int(index))
    return current


def _get_key(obj: Any, key: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key)
    if isinstance(obj, Sequence) and not isinstance(obj, (str, bytes)):
        if key.lstrip("-").isdigit():
            return _get_index(obj, int(key))
        if key == "length":
            return len(obj)
        return None
    if isinstance(obj, (str, bytes, int, float, bool)) or key.startswith("_"):
        return None
    return getattr(obj, key, None)


def _get_index(obj: Any, index: int) -> Any:
    if isinstance(obj, Sequence) and not isinstance(obj, (str, bytes)):
        try:
            return obj[index]
        except IndexError:
            return None
    return None


def split_arguments(text: str) -> list[str]:
    """Split a call's argument text on top-level commas."""
    args: list[str] = []
    current: list[str] = []
    depth = 0
    quote: str | None = None
    escaped = False

    for char in text:
        if quote:
            current.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue

        if char in ("'", '"'):
            quote = char
        elif char in "([":
            depth += 1
        elif char in ")]":
            depth -= 1
        elif char == "," and depth == 0:
            args.append("".join(current).strip())
            current = []
            continue
        current.append(char)

    tail = "".join(current).strip()
    if tail or args:
        args.append(tail)
    return args


def parse_literal(text: str) -> Any:
    """Parse a literal, or return ``NOT_A_LITERAL``."""
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        body = text[1:-1]
        return body.replace("\\" + text[0], text[0]).replace("\\\\", "\\")
    if _NUMBER.match(text):
        return float(text) if "." in text else int(text)
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered in ("null", "none", "undefined"):
        return None
    return NOT_A_LITERAL


def match_function_call(text: str) -> tuple[str, str] | None:
    """Return ``(name, argument_text)`` when ``text`` is a call expression."""
    match = FUNCTION_CALL.match(text.strip())
    if not match:
        return None
    return match.group(1), match.group(2)


def to_number(value: Any) -> float:
    """Coerce to float; NaN when the value is not numeric."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return math.nan


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def stringify(value: Any) -> str:
    """Render a value for template output."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _numbers(args: tuple[Any, ...]) -> list[float]:
    if len(args) == 1 and isinstance(args[0], (list, tuple)):
        args = tuple(args[0])
    return [to_number(a) for a in args]


def _length(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value)
    return len(str(value))


def _round(value: Any, digits: Any = 0) -> float | int:
    result = round(to_number(value), int(digits))
    return int(result) if int(digits) == 0 else result


def _date_add(value: Any, amount: Any, unit: str = "days") -> str:
    key = str(unit).lower().rstrip("s") + "s"
    if key not in ("seconds", "minutes", "hours", "days", "weeks"):
        raise ValueError(f"Unsupported date unit: {unit}")
    return (parse_datetime(value) + timedelta(**{key: to_number(amount)})).isoformat()


def _format_date(value: Any, fmt: str = "%Y-%m-%d") -> str:
    return parse_datetime(value).strftime(fmt)


def _join(value: Any, separator: str = ",") -> str:
    if isinstance(value, (list, tuple)):
        return separator.join(stringify(v) for v in value)
    return _text(value)


def _first(value: Any) -> Any:
    if isinstance(value, (list, tuple, str)) and value:
        return value[0]
    return None


def _last(value: Any) -> Any:
    if isinstance(value, (list, tuple, str)) and value:
        return value[-1]
    return None


def _default(value: Any, fallback: Any = None) -> Any:
    return fallback if value is None or value == "" else value


def _base64(value: Any) -> str:
    return base64.b64encode(_text(value).encode("utf-8")).decode("ascii")


BUILTIN_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "length": _length,
    "upper": lambda v: _text(v).upper(),
    "lower": lambda v: _text(v).lower(),
    "trim": lambda v: _text(v).strip(),
    "substring": lambda v, start, end=None: _text(v)[
        int(start) : int(end) if end is not None else None
    ],
    "replace": lambda v, old, new: _text(v).replace(_text(old), _text(new)),
    "abs": lambda v: abs(to_number(v)),
    "round": _round,
    "floor": lambda v: math.floor(to_number(v)),
    "ceil": lambda v: math.ceil(to_number(v)),
    "min": lambda *args: min(_numbers(args)),
    "max": lambda *args: max(_numbers(args)),
    "now": lambda: datetime.now(timezone.utc).isoformat(),
    "today": lambda: date.today().isoformat(),
    "date_add": _date_add,
    "format_date": _format_date,
    "count": lambda v: len(v) if isinstance(v, (list, tuple, dict)) else 0,
    "first": _first,
    "last": _last,
    "join": _join,
    "default": _default,
    "coalesce": lambda *args: next((a for a in args if a is not None), None),
    "json": lambda v: json.dumps(v, default=str),
    "base64": _base64,
    "uuid": lambda: str(uuid.uuid4()),
    "is_string": lambda v: isinstance(v, str),
    "is_number": is_number,
    "is_boolean": lambda v: isinstance(v, bool),
    "is_array": lambda v: isinstance(v, (list, tuple)),
    "is_object": lambda v: isinstance(v, Mapping),
    "is_empty": is_empty,
}


__all__ = [
    "BUILTIN_FUNCTIONS",
    "NOT_A_LITERAL",
    "get_nested_value",
    "is_empty",
    "is_number",
    "match_function_call",
    "parse_datetime",
    "parse_literal",
    "split_arguments",
    "stringify",
    "to_number",
]
