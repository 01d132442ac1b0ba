"""Immutable resolved variable context handed to backend providers."""

from __future__ import annotations

import copy
import json
from collections.abc import Iterator, Mapping
from typing import Any

from ..exceptions import ContextBuildError
from ..interpolation import ValueType, type_of


class VarContext(Mapping[str, Any]):
    """Read-only mapping of resolved variables.

    The mapping itself never changes after the builder produces it. The typed
    getters record conversion problems in an error list instead of raising,
    so a provider can read every field it needs and then check ``error()``
    once:

        name = vc.get_string("instance_name")
        size = vc.get_int("disk_size")
        labels = vc.get_string_map_string("labels")
        if (err := vc.error()) is not None:
            raise err
    """

    def __init__(self, data: Mapping[str, Any]) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(data))
        self._errors: list[str] = []

    def __getitem__(self, key: str) -> Any:
        value = self._data[key]
        if isinstance(value, (dict, list)):
            return copy.deepcopy(value)
        return value

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"VarContext({self._data!r})"

    def _lookup(self, key: str) -> tuple[bool, Any]:
        if key not in self._data:
            self._errors.append(f"missing value for key {key!r}")
            return False, None
        return True, self._data[key]

    def _type_error(self, key: str, expected: str) -> None:
        self._errors.append(f"value for {key!r} must be a {expected}")

    def get_string(self, key: str) -> str:
        """Get a value as text; numbers and booleans are converted."""
        found, value = self._lookup(key)
        if not found:
            return ""
        kind = type_of(value)
        if kind is ValueType.STRING:
            return value
        if kind is ValueType.BOOL:
            return "true" if value else "false"
        if kind in (ValueType.INT, ValueType.FLOAT):
            return str(value)
        self._type_error(key, "string")
        return ""

    def get_int(self, key: str) -> int:
        """Get a value as an integer; integral floats and numeric text are converted."""
        found, value = self._lookup(key)
        if not found:
            return 0
        kind = type_of(value)
        if kind is ValueType.INT:
            return value
        if kind is ValueType.FLOAT and value.is_integer():
            return int(value)
        if kind is ValueType.STRING:
            try:
                return int(value.strip())
            except ValueError:
                pass
        self._type_error(key, "integer")
        return 0

    def get_bool(self, key: str) -> bool:
        """Get a value as a boolean; "true"/"false" text is converted."""
        found, value = self._lookup(key)
        if not found:
            return False
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        self._type_error(key, "boolean")
        return False

    def get_string_map_string(self, key: str) -> dict[str, str]:
        """Get a map value with every entry rendered as text."""
        found, value = self._lookup(key)
        if not found:
            return {}
        if not isinstance(value, Mapping):
            self._type_error(key, "map[string]string")
            return {}
        return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in value.items()}

    def error(self) -> ContextBuildError | None:
        """Return the errors recorded by the typed getters, if any."""
        if not self._errors:
            return None
        return ContextBuildError(self._errors)

    def to_map(self) -> dict[str, Any]:
        """Return a plain, independent copy of the resolved variables."""
        return copy.deepcopy(self._data)

    def to_json(self) -> str:
        """Serialize the resolved variables as a JSON object."""
        return json.dumps(self._data, sort_keys=True)


__all__ = ["VarContext"]
