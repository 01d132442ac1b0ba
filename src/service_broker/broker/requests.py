"""Request details passed to lifecycle operations.

These mirror the bodies of the lifecycle API calls after the protocol layer
has decoded them. ``raw_parameters`` holds the user-supplied parameters as a
decoded JSON object; it is merged verbatim and never evaluated.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ProvisionDetails(BaseModel):
    """Body of a provision request."""

    service_id: str
    plan_id: str
    organization_guid: str = ""
    space_guid: str = ""
    raw_parameters: dict[str, Any] = Field(default_factory=dict)


class BindDetails(BaseModel):
    """Body of a bind request."""

    service_id: str
    plan_id: str
    app_guid: str = ""
    raw_parameters: dict[str, Any] = Field(default_factory=dict)


class DeprovisionDetails(BaseModel):
    """Query of a deprovision request."""

    service_id: str
    plan_id: str


class UnbindDetails(BaseModel):
    """Query of an unbind request."""

    service_id: str
    plan_id: str


__all__ = ["BindDetails", "DeprovisionDetails", "ProvisionDetails", "UnbindDetails"]
