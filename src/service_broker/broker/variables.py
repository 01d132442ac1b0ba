"""Declared input variables of a service and their JSON Schema validation.

A BrokerVariable describes one user-facing parameter: its type, default,
enum and structural constraints. Lists of variables are turned into JSON
Schema for the catalog and used to validate resolved request parameters.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from typing import Any, Literal, Self

from jsonschema import Draft4Validator
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..exceptions import ParameterValidationError
from ..interpolation import is_reserved_name
from ..varcontext import DefaultVariable

JSON_SCHEMA_DRAFT = "http://json-schema.org/draft-04/schema#"

JsonType = Literal["string", "number", "integer", "boolean"]


class BrokerVariable(BaseModel):
    """A user-facing input variable of a service.

    Attributes:
        field_name: Name of the JSON field this variable reads from
        type: JSON Schema type of the field
        details: Human readable description
        default: Literal default or ``${...}`` template
        required: Whether the caller must supply the field
        enum: Allowed values mapped to a friendly description
        constraints: Extra JSON Schema validation keywords (maxLength, pattern, ...)
    """

    model_config = ConfigDict(extra="forbid")

    field_name: str = Field(min_length=1)
    type: JsonType = "string"
    details: str = ""
    default: Any = None
    required: bool = False
    enum: dict[Any, str] = Field(default_factory=dict)
    constraints: dict[str, Any] = Field(default_factory=dict)

    @field_validator("field_name")
    @classmethod
    def validate_field_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("field_name must not be blank")
        if is_reserved_name(v):
            raise ValueError(f"field_name {v!r} is reserved by the template language")
        return v

    def to_schema(self) -> dict[str, Any]:
        """Convert the variable into the value part of a JSON Schema.

        Enum values are sorted by their text form so generated documentation
        is stable.
        """
        schema: dict[str, Any] = copy.deepcopy(self.constraints)
        if self.enum:
            schema["enum"] = sorted(self.enum, key=str)
        if self.details:
            schema["description"] = self.details
        if self.type:
            schema["type"] = self.type
        if self.default is not None:
            schema["default"] = self.default
        return schema

    def to_default_variable(self) -> DefaultVariable:
        """Default of this variable as applied by the context builder."""
        return DefaultVariable(
            name=self.field_name, default=self.default, overwrite=False, type=self.type
        )


class ConstraintBuilder:
    """Fluent builder for JSON Schema validation keywords.

    Example:
        constraints = ConstraintBuilder().min_length(1).max_length(30).pattern("^[a-z]+$").build()
    """

    def __init__(self) -> None:
        self._constraints: dict[str, Any] = {}

    def _set(self, key: str, value: Any) -> Self:
        self._constraints[key] = value
        return self

    def description(self, text: str) -> Self:
        return self._set("description", text)

    def examples(self, *values: Any) -> Self:
        return self._set("examples", list(values))

    def enum(self, *values: Any) -> Self:
        return self._set("enum", list(values))

    def min_length(self, value: int) -> Self:
        return self._set("minLength", value)

    def max_length(self, value: int) -> Self:
        return self._set("maxLength", value)

    def pattern(self, regex: str) -> Self:
        return self._set("pattern", regex)

    def minimum(self, value: float) -> Self:
        return self._set("minimum", value)

    def maximum(self, value: float) -> Self:
        return self._set("maximum", value)

    def min_items(self, value: int) -> Self:
        return self._set("minItems", value)

    def max_items(self, value: int) -> Self:
        return self._set("maxItems", value)

    def build(self) -> dict[str, Any]:
        return dict(self._constraints)


def create_json_schema(variables: Iterable[BrokerVariable]) -> dict[str, Any]:
    """Build a JSON Schema object describing a list of variables.

    Args:
        variables: Input variables of a service operation

    Returns:
        Draft-04 object schema with one property per variable and a
        ``required`` list when any variable is required
    """
    properties: dict[str, Any] = {}
    required: list[str] = []
    for variable in variables:
        properties[variable.field_name] = variable.to_schema()
        if variable.required:
            required.append(variable.field_name)

    schema: dict[str, Any] = {
        "$schema": JSON_SCHEMA_DRAFT,
        "type": "object",
        "properties": properties,
    }
    if required:
        schema["required"] = sorted(required)
    return schema


def validate_variables(
    parameters: Mapping[str, Any],
    variables: Iterable[BrokerVariable],
) -> None:
    """Validate resolved parameters against their declared variables.

    Missing required fields are reported; a missing optional field with a
    default has that default checked in its place. Every violation is
    collected before raising.

    Args:
        parameters: Resolved parameters (typically ``VarContext.to_map()``)
        variables: Declared variables to check against

    Raises:
        ParameterValidationError: With one entry per offending field
    """
    field_errors: dict[str, list[str]] = {}

    for variable in variables:
        name = variable.field_name
        if name in parameters:
            value = parameters[name]
        elif variable.required:
            field_errors.setdefault(name, []).append(f"missing required parameter {name!r}")
            continue
        elif variable.default is None:
            continue
        else:
            value = variable.default

        schema = variable.to_schema()
        try:
            Draft4Validator.check_schema(schema)
        except SchemaError as e:
            field_errors.setdefault(name, []).append(f"({name}): invalid schema: {e.message}")
            continue

        for error in Draft4Validator(schema).iter_errors(value):
            location = "".join(f"[{part!r}]" for part in error.absolute_path)
            field_errors.setdefault(name, []).append(f"({name}{location}): {error.message}")

    if field_errors:
        raise ParameterValidationError(field_errors)


__all__ = [
    "JSON_SCHEMA_DRAFT",
    "BrokerVariable",
    "ConstraintBuilder",
    "JsonType",
    "create_json_schema",
    "validate_variables",
]
