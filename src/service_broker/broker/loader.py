"""
YAML service definition loader.

Service definitions can be declared in YAML files whose keys mirror the
ServiceDefinition fields. The backend provider is referenced by name and
resolved from a mapping of provider factories supplied by the host:

    id: 4bc59b9a-8520-409f-85da-1c7552315863
    name: example-cache
    description: An in-memory cache
    provider: cache
    plans:
      - id: 9a6e4dd5-0e4b-4e5f-9a71-2c5bfb3f0e3f
        name: small
        description: Small cache
        display_name: Small
        service_properties:
          memory_gb: "1"
    provision_input_variables:
      - field_name: name
        type: string
        details: Name of the cache
        default: cache-${counter.next()}
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, TypeVar

import yaml
from pydantic import ValidationError

from .provider import ServiceProvider
from .service_definition import ServiceDefinition

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], ServiceProvider]

PROVIDER_KEY = "provider"

T = TypeVar("T")


@dataclass(frozen=True)
class LoadResult(Generic[T]):  # noqa: UP046
    """A loaded value, or the reason loading failed.

    File and validation problems are returned rather than raised so a caller
    walking a directory can name the file that broke.
    """

    value: T | None = None
    error: str | None = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "LoadResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "LoadResult[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None or self.value is None:
            raise ValueError(f"Cannot unwrap failed load: {self.error}")
        return self.value


def load_service_definition_from_file(
    file_path: str | Path,
    providers: Mapping[str, ProviderFactory] | None = None,
) -> LoadResult[ServiceDefinition]:
    """
    Load and validate a service definition from a YAML file.

    Args:
        file_path: Path to the YAML definition
        providers: Provider factories by name, referenced by the ``provider`` key

    Returns:
        LoadResult.success(ServiceDefinition) if valid
        LoadResult.failure(error_message) otherwise
    """
    path = Path(file_path)

    if not path.exists():
        return LoadResult.failure(f"Service definition file not found: {file_path}")

    if not path.is_file():
        return LoadResult.failure(f"Path is not a file: {file_path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        return LoadResult.failure(f"Failed to read file '{file_path}': {e}")

    return load_service_definition(content, providers, source=str(file_path))


def load_service_definition(
    content: str,
    providers: Mapping[str, ProviderFactory] | None = None,
    source: str = "<string>",
) -> LoadResult[ServiceDefinition]:
    """
    Load and validate a service definition from YAML (or JSON) text.

    Args:
        content: YAML text
        providers: Provider factories by name
        source: Source identifier for error messages

    Returns:
        LoadResult.success(ServiceDefinition) if valid
        LoadResult.failure(error_message) otherwise
    """
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        return LoadResult.failure(f"Invalid YAML syntax in {source}: {e}")

    if not isinstance(data, dict):
        return LoadResult.failure(
            f"Service definition {source} must be a YAML dictionary, got {type(data).__name__}"
        )

    provider_name = data.pop(PROVIDER_KEY, None)
    if provider_name is not None:
        factory = (providers or {}).get(provider_name)
        if factory is None:
            available = sorted(providers or {})
            return LoadResult.failure(
                f"Unknown provider '{provider_name}' in {source}. Available providers: {available}"
            )
        data["provider_builder"] = factory

    try:
        definition = ServiceDefinition.model_validate(data)
    except ValidationError as e:
        return LoadResult.failure(f"Service definition validation failed in {source}:\n{e}")

    logger.debug(f"Loaded service definition '{definition.name}' from {source}")
    return LoadResult.success(definition)


__all__ = [
    "LoadResult",
    "PROVIDER_KEY",
    "ProviderFactory",
    "load_service_definition",
    "load_service_definition_from_file",
]
