"""Catalog entries exposed to the lifecycle API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ServicePlan(BaseModel):
    """A purchasable configuration profile of a service.

    Attributes:
        id: Globally unique plan id
        name: Plan name shown to users
        description: Plan description
        display_name: Friendly name for UIs
        free: Whether the plan is free of charge
        service_properties: Fixed properties merged into every request
        provision_overrides: Values forced over user provision parameters
        bind_overrides: Values forced over user bind parameters
        schemas: JSON Schema for instance/binding creation (catalog only)
    """

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    display_name: str = ""
    free: bool = False
    service_properties: dict[str, str] = Field(default_factory=dict)
    provision_overrides: dict[str, Any] = Field(default_factory=dict)
    bind_overrides: dict[str, Any] = Field(default_factory=dict)
    schemas: dict[str, Any] | None = None

    def get_service_properties(self) -> dict[str, Any]:
        """Plan properties as a plain mapping suitable for merging."""
        return dict(self.service_properties)


class CatalogService(BaseModel):
    """A service as it appears in the catalog, with its realized plans."""

    id: str
    name: str
    description: str = ""
    bindable: bool = False
    plan_updateable: bool = False
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    plans: list[ServicePlan] = Field(default_factory=list)

    def to_plain(self) -> dict[str, Any]:
        """Render the entry for the wire, dropping broker-internal plan fields."""
        data = self.model_dump(mode="json", exclude={"plans"})
        data["plans"] = [
            plan.model_dump(
                mode="json",
                exclude={"service_properties", "provision_overrides", "bind_overrides"},
                exclude_none=True,
            )
            for plan in self.plans
        ]
        return data


__all__ = ["CatalogService", "ServicePlan"]
