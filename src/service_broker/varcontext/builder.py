"""Layered variable resolution.

ContextBuilder merges configuration sources in a strict order; a later merge
overrides keys set by an earlier one. The canonical pipeline for a request is:

    1. set_eval_constants   request/platform constants, visible to expressions only
    2. merge_map            operator-level default overrides
    3. merge_map            user-supplied parameters, never evaluated
    4. merge_defaults       declared variable defaults (expressions evaluated here)
    5. merge_map            plan-specific fixed properties
    6. merge_defaults       computed variables, each with its own overwrite flag

Errors never interrupt the chain. Every failing step appends to an
ErrorCollector and ``build()`` raises one ContextBuildError describing all of
them, so a context is either completely resolved or not produced at all.

Example:
    vc = (
        ContextBuilder()
        .set_eval_constants({"request.instance_id": "abc"})
        .merge_map(user_params)
        .merge_defaults([DefaultVariable(name="name", default="db-${request.instance_id}")])
        .build()
    )
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..exceptions import ContextBuildError, EvaluationError
from ..interpolation import (
    Evaluator,
    ValueType,
    is_literal,
    is_reserved_name,
    parse_bool,
    to_value,
    type_of,
)
from .context import VarContext

logger = logging.getLogger(__name__)

JSON_TYPES = frozenset({"object", "boolean", "array", "number", "string", "integer"})

_ZERO_DECIMAL = re.compile(r"^([+-]?\d+)\.0*$")


class ErrorCollector:
    """Accumulates error messages across a build pass."""

    def __init__(self) -> None:
        self.errors: list[str] = []

    def add(self, error: Exception | str) -> None:
        self.errors.append(str(error))

    def __bool__(self) -> bool:
        return bool(self.errors)

    def __len__(self) -> int:
        return len(self.errors)

    def raise_if_any(self) -> None:
        """Raise one ContextBuildError if anything was collected."""
        if self.errors:
            raise ContextBuildError(self.errors)


class DefaultVariable(BaseModel):
    """A variable default applied by ``merge_defaults``.

    Used both for the defaults of declared input variables and for computed
    variables.

    Attributes:
        name: Variable name
        default: Literal value or ``${...}`` template
        overwrite: Replace an existing value instead of keeping it
        type: JSON type the evaluated result is cast to (empty keeps it as-is)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    default: Any = None
    overwrite: bool = False
    type: str = ""

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        if is_reserved_name(v):
            raise ValueError(f"name {v!r} is reserved by the template language")
        return v

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v and v not in JSON_TYPES:
            raise ValueError(f"type must be one of {sorted(JSON_TYPES)}, got {v!r}")
        return v


def cast_to(value: Any, json_type: str) -> Any:
    """Cast a value to a JSON type.

    Args:
        value: Value to convert
        json_type: One of object, boolean, array, number, string, integer, or
            empty to return the value unchanged

    Returns:
        Converted value

    Raises:
        ValueError: If the type is unknown or the value cannot be converted
    """
    if json_type == "":
        return value

    kind = type_of(value)
    if json_type == "string":
        if kind is ValueType.BOOL:
            return "true" if value else "false"
        if kind is ValueType.NULL:
            return ""
        if kind in (ValueType.STRING, ValueType.INT, ValueType.FLOAT):
            return str(value)

    elif json_type == "boolean":
        if kind is ValueType.BOOL:
            return value
        if kind in (ValueType.INT, ValueType.FLOAT):
            return value != 0
        if kind is ValueType.STRING:
            return parse_bool(value)

    elif json_type == "integer":
        if kind is ValueType.BOOL:
            return int(value)
        if kind is ValueType.INT:
            return value
        if kind is ValueType.FLOAT:
            return int(value)
        if kind is ValueType.STRING:
            text = value.strip()
            if match := _ZERO_DECIMAL.match(text):
                text = match.group(1)
            return int(text, 0)

    elif json_type == "number":
        if kind in (ValueType.BOOL, ValueType.INT, ValueType.FLOAT):
            return float(value)
        if kind is ValueType.STRING:
            return float(value.strip())

    elif json_type == "object":
        if kind is ValueType.MAP:
            return to_value(value)
        if kind is ValueType.STRING:
            parsed = json.loads(value)
            if isinstance(parsed, dict):
                return parsed

    elif json_type == "array":
        if kind is ValueType.LIST:
            return to_value(value)
        if kind is ValueType.STRING:
            parsed = json.loads(value)
            if isinstance(parsed, list):
                return parsed

    else:
        raise ValueError(f"couldn't cast {value!r} to {json_type!r}, unknown type")

    raise ValueError(f"couldn't cast {value!r} of type {kind.value} to {json_type}")


class ContextBuilder:
    """Chainable builder producing an immutable VarContext.

    A builder is single-use and not thread-safe; independent builders may run
    in parallel and may share one Evaluator.

    Args:
        evaluator: Evaluator for expression defaults (a fresh one if omitted)
    """

    def __init__(self, evaluator: Evaluator | None = None) -> None:
        self._evaluator = evaluator if evaluator is not None else Evaluator()
        self._context: dict[str, Any] = {}
        self._constants: dict[str, Any] = {}
        self._errors = ErrorCollector()

    def set_eval_constants(self, constants: Mapping[str, Any]) -> Self:
        """Set constants visible to expressions but absent from the output.

        Constants take precedence over same-named context keys while
        evaluating, so user input can never shadow them.
        """
        self._constants = dict(constants)
        return self

    def merge_map(self, data: Mapping[str, Any] | None) -> Self:
        """Merge values verbatim; nothing in ``data`` is ever evaluated."""
        if not data:
            return self
        for key, value in data.items():
            try:
                self._context[str(key)] = to_value(value)
            except EvaluationError as e:
                self._errors.add(f"couldn't merge {key!r}: {e}")
        return self

    def merge_json_object(self, raw: str | bytes | None) -> Self:
        """Merge a raw JSON object; empty input merges nothing."""
        if raw is None or not raw.strip():
            return self
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as e:
            self._errors.add(f"couldn't decode JSON object: {e}")
            return self
        if not isinstance(decoded, dict):
            self._errors.add(f"expected a JSON object, got {type(decoded).__name__}")
            return self
        return self.merge_map(decoded)

    def merge_struct(self, obj: BaseModel | Mapping[str, Any]) -> Self:
        """Merge a pydantic model (by alias) or a plain mapping."""
        if isinstance(obj, BaseModel):
            return self.merge_map(obj.model_dump(mode="json", by_alias=True))
        return self.merge_map(obj)

    def merge_eval_result(self, key: str, template: str, result_type: str = "") -> Self:
        """Evaluate a template against the current context and store the cast result."""
        try:
            if is_literal(template):
                value: Any = template
            else:
                value = self._evaluator.evaluate(template, self._evaluation_scope())
            self._context[key] = cast_to(value, result_type)
        except (EvaluationError, ValueError) as e:
            self._errors.add(
                f"couldn't compute the value for {key!r}, template: {template!r}, {_reason(e)}"
            )
        return self

    def merge_defaults(self, variables: Iterable[DefaultVariable]) -> Self:
        """Apply variable defaults in declaration order.

        A default is skipped when it is None, or when the key already exists
        and the variable does not set ``overwrite``. String defaults are
        evaluated as templates against everything merged so far; other
        defaults are stored as they are.
        """
        for variable in variables:
            if variable.default is None:
                continue
            if variable.name in self._context and not variable.overwrite:
                logger.debug(f"Keeping existing value for '{variable.name}'")
                continue
            if isinstance(variable.default, str):
                self.merge_eval_result(variable.name, variable.default, variable.type)
            else:
                self.merge_map({variable.name: variable.default})
        return self

    def _evaluation_scope(self) -> dict[str, Any]:
        scope = dict(self._context)
        scope.update(self._constants)
        return scope

    def build(self) -> VarContext:
        """Finish the pass.

        Returns:
            The resolved, immutable context

        Raises:
            ContextBuildError: If any merge step failed
        """
        self._errors.raise_if_any()
        return VarContext(self._context)

    def build_map(self) -> dict[str, Any]:
        """Finish the pass and return a plain dict."""
        return self.build().to_map()


def _reason(error: Exception) -> str:
    if isinstance(error, EvaluationError):
        return error.message
    return str(error)


__all__ = ["JSON_TYPES", "ContextBuilder", "DefaultVariable", "ErrorCollector", "cast_to"]
