"""Serialize Python values as Lua or JSON literals according to a declared type."""

import json
import math
import re
from collections.abc import Mapping, Sequence
from typing import Any

from config_link.core.errors import TypeMismatchError
from config_link.models import DeclaredType, ValueKind

_LUA_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

LUA_KEYWORDS = frozenset(
    {
        "and", "break", "do", "else", "elseif", "end", "false", "for", "function", "goto", "if", "in",
        "local", "nil", "not", "or", "repeat", "return", "then", "true", "until", "while",
    }
)

_LUA_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\0": "\\000",
}

_NUMERIC_TYPES = frozenset({DeclaredType.NUMBER, DeclaredType.SLIDER})
_STRING_TYPES = frozenset({DeclaredType.STRING, DeclaredType.COLOR})
_TABLE_TYPES = frozenset({DeclaredType.ARRAY, DeclaredType.TABLE})

# Node kinds each declared type may overwrite. nil and expression nodes accept anything.
_COMPATIBLE_KINDS: dict[DeclaredType, frozenset[ValueKind]] = {
    DeclaredType.NUMBER: frozenset({ValueKind.NUMBER}),
    DeclaredType.SLIDER: frozenset({ValueKind.NUMBER}),
    DeclaredType.STRING: frozenset({ValueKind.STRING}),
    DeclaredType.COLOR: frozenset({ValueKind.STRING}),
    DeclaredType.BOOLEAN: frozenset({ValueKind.BOOLEAN}),
    DeclaredType.SELECT: frozenset({ValueKind.NUMBER, ValueKind.STRING}),
    DeclaredType.ARRAY: frozenset({ValueKind.TABLE}),
    DeclaredType.TABLE: frozenset({ValueKind.TABLE}),
    DeclaredType.CODE: frozenset({ValueKind.FUNCTION}),
}


def is_compatible(declared_type: DeclaredType, kind: ValueKind) -> bool:
    if kind in (ValueKind.NIL, ValueKind.EXPRESSION):
        return True
    return kind in _COMPATIBLE_KINDS[declared_type]


def coerce_number(value: Any) -> int | float:
    """Return ``value`` as an int or float, keeping integers integral."""
    if isinstance(value, bool):
        raise TypeMismatchError(f"Expected a number, got boolean {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise TypeMismatchError(f"Cannot write non-finite number {value!r}")
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            raise TypeMismatchError(f"Expected a number, got {value!r}") from None
        return coerce_number(number)
    raise TypeMismatchError(f"Expected a number, got {type(value).__name__}")


def coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise TypeMismatchError(f"Expected a boolean, got {value!r}")


def _format_number(value: int | float) -> str:
    return str(value) if isinstance(value, int) else repr(value)


def escape_lua_string(text: str) -> str:
    return "".join(_LUA_ESCAPES.get(ch, ch) for ch in text)


def _lua_key(key: Any) -> str:
    if isinstance(key, str) and _LUA_IDENTIFIER.match(key) and key not in LUA_KEYWORDS:
        return key
    return f"[{_format_lua_auto(key)}]"


def _format_lua_table(value: Any) -> str:
    if isinstance(value, Mapping):
        items = [f"{_lua_key(k)} = {_format_lua_auto(v)}" for k, v in value.items()]
    elif isinstance(value, Sequence) and not isinstance(value, str):
        items = [_format_lua_auto(v) for v in value]
    else:
        raise TypeMismatchError(f"Expected a table, got {type(value).__name__}")
    if not items:
        return "{}"
    return "{ " + ", ".join(items) + " }"


def _format_lua_auto(value: Any) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return _format_number(coerce_number(value))
    if isinstance(value, str):
        return f'"{escape_lua_string(value)}"'
    return _format_lua_table(value)


def format_lua_value(value: Any, declared_type: DeclaredType) -> str:
    declared_type = DeclaredType(declared_type)
    if declared_type is DeclaredType.CODE:
        if not isinstance(value, str):
            raise TypeMismatchError("Code values must be strings")
        return value
    if value is None:
        return "nil"
    if declared_type in _NUMERIC_TYPES:
        return _format_number(coerce_number(value))
    if declared_type in _STRING_TYPES:
        return f'"{escape_lua_string(str(value))}"'
    if declared_type is DeclaredType.BOOLEAN:
        return "true" if coerce_boolean(value) else "false"
    if declared_type in _TABLE_TYPES:
        return _format_lua_table(value)
    # select: options may be numbers or strings
    return _format_lua_auto(value)


def _dump_json(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise TypeMismatchError(f"Cannot write {value!r} as JSON: {exc}") from None


def format_json_value(value: Any, declared_type: DeclaredType) -> str:
    declared_type = DeclaredType(declared_type)
    if declared_type is DeclaredType.CODE:
        raise TypeMismatchError("JSON documents have no code values")
    if value is None:
        return "null"
    if declared_type in _NUMERIC_TYPES:
        return _format_number(coerce_number(value))
    if declared_type in _STRING_TYPES:
        return _dump_json(str(value))
    if declared_type is DeclaredType.BOOLEAN:
        return "true" if coerce_boolean(value) else "false"
    if declared_type in _TABLE_TYPES:
        if isinstance(value, str) or not isinstance(value, Mapping | Sequence):
            raise TypeMismatchError(f"Expected an array or object, got {type(value).__name__}")
        return _dump_json(value)
    return _dump_json(value)


_KIND_TYPES = {
    ValueKind.NUMBER: DeclaredType.NUMBER,
    ValueKind.STRING: DeclaredType.STRING,
    ValueKind.BOOLEAN: DeclaredType.BOOLEAN,
    ValueKind.TABLE: DeclaredType.TABLE,
    ValueKind.FUNCTION: DeclaredType.CODE,
}


def declared_type_for(kind: ValueKind, value: Any) -> DeclaredType:
    """Pick the declared type that keeps the existing node's kind."""
    if kind in _KIND_TYPES:
        return _KIND_TYPES[kind]
    # nil and expressions take the shape of the new value
    if isinstance(value, bool):
        return DeclaredType.BOOLEAN
    if isinstance(value, int | float):
        return DeclaredType.NUMBER
    if isinstance(value, Mapping | list | tuple):
        return DeclaredType.TABLE
    return DeclaredType.SELECT
