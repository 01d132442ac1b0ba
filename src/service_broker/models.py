"""Persisted records for service instances, bindings and provision requests.

These pydantic models are what the persistence collaborator stores. Their
``other_details`` payloads are opaque to the core: providers put whatever
they need there and the core only reads the pending-operation snapshot it
writes itself under ``OPERATION_DETAILS_KEY``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Key inside ServiceInstanceDetails.other_details holding the operation snapshot
OPERATION_DETAILS_KEY = "operation"


class ServiceInstanceDetails(BaseModel):
    """A provisioned service instance.

    The instance is locked to further mutation while ``operation_type`` is
    non-empty. ``version`` is incremented by the store on every save and is
    checked to detect concurrent writers.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str
    name: str = ""
    location: str = ""
    url: str = ""
    other_details: dict[str, Any] = Field(default_factory=dict)

    service_id: str = ""
    plan_id: str = ""
    space_guid: str = ""
    organization_guid: str = ""

    operation_type: str = ""
    operation_id: str = ""

    version: int = 0
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def provider_details(self) -> dict[str, Any]:
        """Opaque provider payload without the core's operation snapshot."""
        return {k: v for k, v in self.other_details.items() if k != OPERATION_DETAILS_KEY}


class ServiceBindingCredentials(BaseModel):
    """Credentials issued by a bind call, deleted on unbind."""

    id: str
    service_id: str = ""
    service_instance_id: str
    binding_id: str
    other_details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)


class ProvisionRequestDetails(BaseModel):
    """User parameters of the provision request that created an instance.

    Kept so that finishing steps of asynchronous provisions can re-read what
    the user asked for.
    """

    service_instance_id: str
    request_details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)


__all__ = [
    "OPERATION_DETAILS_KEY",
    "ProvisionRequestDetails",
    "ServiceBindingCredentials",
    "ServiceInstanceDetails",
]
