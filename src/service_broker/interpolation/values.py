"""Closed value type shared by the evaluator and the variable context.

Every value that flows through template evaluation or a resolved variable
context is one of: text, integer, float, boolean, list, map or null. The
``ValueType`` enum names these variants and ``type_of`` classifies a Python
object into exactly one of them, raising for anything else.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from enum import Enum
from typing import Any, TypeAlias

from ..exceptions import EvaluationError

_TRUE_STRINGS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_STRINGS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

Value: TypeAlias = str | int | float | bool | list["Value"] | dict[str, "Value"] | None


class ValueType(str, Enum):
    """Variants of the closed value type.

    ``ANY`` is only used in function signatures to accept every variant.
    """

    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    LIST = "list"
    MAP = "map"
    NULL = "null"
    ANY = "any"


def type_of(value: Any) -> ValueType:
    """Classify a value into its ValueType variant.

    Args:
        value: Any Python object

    Returns:
        The matching ValueType (never ``ANY``)

    Raises:
        EvaluationError: If the value is not part of the closed variant
    """
    # bool is a subclass of int, so it must be checked first
    if isinstance(value, bool):
        return ValueType.BOOL
    if isinstance(value, int):
        return ValueType.INT
    if isinstance(value, float):
        return ValueType.FLOAT
    if isinstance(value, str):
        return ValueType.STRING
    if isinstance(value, list | tuple):
        return ValueType.LIST
    if isinstance(value, Mapping):
        return ValueType.MAP
    if value is None:
        return ValueType.NULL
    raise EvaluationError(f"unsupported value type: {type(value).__name__}")


def to_value(value: Any) -> Value:
    """Normalise a Python object into the closed value type.

    Tuples become lists and mappings become plain dicts, recursively.

    Raises:
        EvaluationError: If any nested element is outside the variant
    """
    kind = type_of(value)
    if kind is ValueType.LIST:
        return [to_value(item) for item in value]
    if kind is ValueType.MAP:
        return {str(key): to_value(item) for key, item in value.items()}
    return value


def parse_bool(text: str) -> bool:
    """Parse boolean text using the 1/t/true and 0/f/false vocabulary.

    Raises:
        ValueError: If the text is not a recognised boolean spelling
    """
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ValueError(f"invalid boolean: {text!r}")


def format_value(value: Value) -> str:
    """Render a value as template output text.

    Booleans render as ``true``/``false``, null as the empty string, lists and
    maps as compact JSON.
    """
    kind = type_of(value)
    if kind is ValueType.BOOL:
        return "true" if value else "false"
    if kind is ValueType.NULL:
        return ""
    if kind in (ValueType.LIST, ValueType.MAP):
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    return str(value)


__all__ = ["Value", "ValueType", "format_value", "parse_bool", "to_value", "type_of"]
