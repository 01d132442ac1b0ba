"""Operator configuration for services.

The operator configuration is a map of service id to ServiceConfig. It is
read once when the registry is built:

    {
      "<service id>": {
        "disabled": false,
        "provision_defaults": {"region": "europe-west1"},
        "bind_defaults": {"role": "viewer"},
        "custom_plans": [
          {"guid": "...", "name": "large", "display_name": "Large",
           "description": "A large instance", "properties": {"tier": "db-n1-standard-8"}}
        ]
      }
    }

YAML is accepted as well, since JSON is a subset of YAML.
"""

from __future__ import annotations

import logging
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, RootModel, model_validator

from .catalog import ServicePlan

logger = logging.getLogger(__name__)


class CustomPlan(BaseModel):
    """An operator-defined plan layered onto a service's built-in plans.

    Keys that are not plan fields are folded into ``properties``, so the flat
    form ``{"id": "...", "name": "...", "tier": "..."}`` is accepted as well.
    """

    model_config = ConfigDict(populate_by_name=True)

    guid: str = Field(validation_alias=AliasChoices("guid", "id"))
    name: str
    display_name: str
    description: str
    properties: dict[str, str] = Field(default_factory=dict)
    provision_overrides: dict[str, Any] = Field(default_factory=dict)
    bind_overrides: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def fold_extra_properties(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        known = {
            "guid",
            "id",
            "name",
            "display_name",
            "description",
            "properties",
            "provision_overrides",
            "bind_overrides",
        }
        extra = {k: v for k, v in data.items() if k not in known}
        if not extra:
            return data
        folded = {k: v for k, v in data.items() if k in known}
        properties = dict(folded.get("properties") or {})
        properties.update({k: v if isinstance(v, str) else str(v) for k, v in extra.items()})
        folded["properties"] = properties
        return folded

    def to_service_plan(self) -> ServicePlan:
        """Convert to a catalog plan."""
        return ServicePlan(
            id=self.guid,
            name=self.name,
            description=self.description,
            display_name=self.display_name,
            service_properties=dict(self.properties),
            provision_overrides=dict(self.provision_overrides),
            bind_overrides=dict(self.bind_overrides),
        )


class ServiceConfig(BaseModel):
    """Operator configuration for one service.

    ``custom_plans`` holds raw plan mappings; they are validated against the
    owning service definition when it is registered so that the error can
    name the service and check plan-level required properties.
    """

    model_config = ConfigDict(populate_by_name=True)

    notes: str = Field(default="", alias="//")
    disabled: bool = False
    provision_defaults: dict[str, Any] = Field(default_factory=dict)
    bind_defaults: dict[str, Any] = Field(default_factory=dict)
    custom_plans: list[dict[str, Any]] = Field(default_factory=list)


class ServiceConfigMap(RootModel[dict[str, ServiceConfig]]):
    """Mapping of service id to its operator configuration."""

    root: dict[str, ServiceConfig] = Field(default_factory=dict)

    @classmethod
    def parse(cls, source: str | None) -> ServiceConfigMap:
        """Parse JSON or YAML text; empty input yields an empty map.

        Raises:
            ValueError: If the text is not a mapping of service configs
        """
        if source is None or not source.strip():
            return cls({})
        try:
            data = yaml.safe_load(source)
        except yaml.YAMLError as e:
            raise ValueError(f"couldn't deserialize service config: {e}") from e
        if data is None:
            return cls({})
        if not isinstance(data, dict):
            raise ValueError(
                "couldn't deserialize service config: "
                f"expected a mapping, got {type(data).__name__}"
            )
        config = cls.model_validate(data)
        logger.info(f"Loaded operator configuration for {len(config.root)} service(s)")
        return config

    def get(self, service_id: str) -> ServiceConfig:
        """Configuration for a service, or an empty one when not configured."""
        return self.root.get(service_id) or ServiceConfig()

    def __contains__(self, service_id: object) -> bool:
        return service_id in self.root

    def __len__(self) -> int:
        return len(self.root)


__all__ = ["CustomPlan", "ServiceConfig", "ServiceConfigMap"]
