"""Typed standard library of functions callable from interpolation templates.

Every function declares its argument types and return type. Calling a
function with the wrong number of arguments, or with an argument that cannot
be coerced into the declared type, raises ``EvaluationError`` instead of a
Python ``TypeError``.

Functions are addressed by dotted names; the part before the first dot is the
namespace visible in templates:

    ${str.truncate(10, name)}
    ${regexp.matches("^[a-z]+$", name)}
    ${counter.next()}
    ${assert(size <= 100, "size too large")}

Argument coercion mirrors the lenient conversions template authors rely on:
numbers are accepted where text is expected, numeric text is accepted where
an integer is expected, and ``"true"``/``"false"`` are accepted where a
boolean is expected.
"""

from __future__ import annotations

import base64
import json
import re
import secrets
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote_plus

from jinja2 import Undefined

from ..exceptions import EvaluationError
from .values import Value, ValueType, format_value, parse_bool, to_value, type_of


class Counter:
    """Atomically incremented integer shared by every call on one evaluator.

    Values are unique within the counter's lifetime but carry no ordering or
    gap-free guarantee across process restarts.

    Example:
        counter = Counter()
        counter.next()  # 1
        counter.next()  # 2
        counter.reset()
        counter.next()  # 1
    """

    def __init__(self, start: int = 0) -> None:
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        """Increment the counter and return the new value."""
        with self._lock:
            self._value += 1
            return self._value

    def reset(self, value: int = 0) -> None:
        """Set the counter so that the next call returns ``value + 1``."""
        with self._lock:
            self._value = value

    @property
    def value(self) -> int:
        """Last value handed out (0 if none)."""
        with self._lock:
            return self._value

    def __repr__(self) -> str:
        return f"Counter(value={self.value})"


def coerce_argument(value: Any, expected: ValueType) -> Value:
    """Convert a template argument to the declared parameter type.

    Args:
        value: Argument as produced by the template
        expected: Declared parameter type

    Returns:
        The argument converted into the expected variant

    Raises:
        EvaluationError: If the argument cannot be converted
    """
    actual = type_of(value)
    if expected is ValueType.ANY or actual is expected:
        return to_value(value)

    if expected is ValueType.STRING and actual in (ValueType.INT, ValueType.FLOAT, ValueType.BOOL):
        return format_value(value)
    if expected is ValueType.INT:
        if actual is ValueType.STRING:
            try:
                return int(value.strip())
            except ValueError:
                pass
        elif actual is ValueType.FLOAT and value.is_integer():
            return int(value)
    if expected is ValueType.FLOAT and actual is ValueType.INT:
        return float(value)
    if expected is ValueType.BOOL and actual is ValueType.STRING:
        try:
            return parse_bool(value)
        except ValueError:
            pass

    raise EvaluationError(f"expected type {expected.value}, got {actual.value}")


@dataclass(frozen=True)
class Function:
    """A callable entry of the function table.

    Attributes:
        name: Fully qualified name as written in templates (e.g. "str.truncate")
        arg_types: Declared parameter types, one per positional argument
        return_type: Declared type of the result
        callback: Implementation receiving already-coerced arguments
    """

    name: str
    arg_types: tuple[ValueType, ...]
    return_type: ValueType
    callback: Callable[..., Value]

    def __call__(self, *args: Any, **kwargs: Any) -> Value:
        if kwargs:
            raise EvaluationError(f"{self.name}: keyword arguments are not supported")
        if len(args) != len(self.arg_types):
            raise EvaluationError(
                f"{self.name}: expected {len(self.arg_types)} argument(s), got {len(args)}"
            )

        for arg in args:
            if isinstance(arg, Undefined):
                arg._fail_with_undefined_error()

        coerced = []
        for position, (arg, arg_type) in enumerate(zip(args, self.arg_types, strict=True), 1):
            try:
                coerced.append(coerce_argument(arg, arg_type))
            except EvaluationError as e:
                raise EvaluationError(f"{self.name}: argument {position}: {e.message}") from e

        result = self.callback(*coerced)
        if self.return_type is not ValueType.ANY and type_of(result) is not self.return_type:
            raise EvaluationError(
                f"{self.name}: returned {type_of(result).value}, declared {self.return_type.value}"
            )
        return result


def _truncate(limit: int, text: str) -> str:
    if limit < 0:
        raise EvaluationError(f"str.truncate: length must not be negative, got {limit}")
    return text[:limit]


def _regexp_matches(pattern: str, text: str) -> bool:
    try:
        return re.search(pattern, text) is not None
    except re.error as e:
        raise EvaluationError(f"regexp.matches: invalid pattern {pattern!r}: {e}") from e


def _rand_base64(count: int) -> str:
    if count < 0:
        raise EvaluationError(f"rand.base64: byte count must not be negative, got {count}")
    return base64.urlsafe_b64encode(secrets.token_bytes(count)).decode("ascii")


def _assert(condition: bool, message: str) -> bool:
    if not condition:
        raise EvaluationError(f"Assertion failed: {message}")
    return True


def _json_marshal(value: Value) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _map_flatten(kv_separator: str, tuple_separator: str, mapping: Mapping[str, Value]) -> str:
    tuples = sorted(f"{key}{kv_separator}{format_value(value)}" for key, value in mapping.items())
    return tuple_separator.join(tuples)


def standard_library(counter: Counter) -> dict[str, Function]:
    """Build the standard function table bound to a counter.

    Args:
        counter: Counter backing ``counter.next()``

    Returns:
        Mapping of qualified function name to Function
    """
    STR, INT, BOOL, MAP, ANY = (  # noqa: N806
        ValueType.STRING,
        ValueType.INT,
        ValueType.BOOL,
        ValueType.MAP,
        ValueType.ANY,
    )
    functions = [
        Function("time.nano", (), STR, lambda: str(time.time_ns())),
        Function("str.truncate", (INT, STR), STR, _truncate),
        Function("str.queryEscape", (STR,), STR, quote_plus),
        Function("regexp.matches", (STR, STR), BOOL, _regexp_matches),
        Function("counter.next", (), INT, counter.next),
        Function("rand.base64", (INT,), STR, _rand_base64),
        Function("assert", (BOOL, STR), BOOL, _assert),
        Function("json.marshal", (ANY,), STR, _json_marshal),
        Function("map.flatten", (STR, STR, MAP), STR, _map_flatten),
    ]
    return {function.name: function for function in functions}


__all__ = ["Counter", "Function", "coerce_argument", "standard_library"]
