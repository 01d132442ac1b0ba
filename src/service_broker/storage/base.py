"""Persistence boundary for instance, binding and provision-request records.

Every store keeps the same contract:

- Lookups of missing records raise RecordNotFoundError.
- ``save_instance`` is an optimistic compare-and-swap on ``version``: the
  caller's copy must carry the version currently stored (0 for a new record).
  A stale copy raises ConcurrentModificationError, so two concurrent mutating
  calls on the same instance cannot both win. The stored copy, with its
  version incremented, is returned.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from ..exceptions import ConcurrentModificationError
from ..models import ProvisionRequestDetails, ServiceBindingCredentials, ServiceInstanceDetails


class RecordStore(ABC):
    """Abstract base class for broker record storage."""

    @abstractmethod
    async def get_instance(self, instance_id: str) -> ServiceInstanceDetails:
        """Load an instance, raising RecordNotFoundError if missing."""
        ...

    @abstractmethod
    async def instance_exists(self, instance_id: str) -> bool:
        ...

    @abstractmethod
    async def save_instance(self, instance: ServiceInstanceDetails) -> ServiceInstanceDetails:
        """Create or update an instance; returns the stored copy."""
        ...

    @abstractmethod
    async def delete_instance(self, instance_id: str) -> None:
        """Delete an instance and its provision request record."""
        ...

    @abstractmethod
    async def get_binding(self, instance_id: str, binding_id: str) -> ServiceBindingCredentials:
        ...

    @abstractmethod
    async def binding_exists(self, instance_id: str, binding_id: str) -> bool:
        ...

    @abstractmethod
    async def save_binding(self, binding: ServiceBindingCredentials) -> None:
        ...

    @abstractmethod
    async def delete_binding(self, instance_id: str, binding_id: str) -> None:
        ...

    @abstractmethod
    async def list_bindings(self, instance_id: str) -> list[ServiceBindingCredentials]:
        ...

    @abstractmethod
    async def save_provision_request(self, details: ProvisionRequestDetails) -> None:
        ...

    @abstractmethod
    async def get_provision_request(self, instance_id: str) -> ProvisionRequestDetails:
        ...


def next_version(
    instance: ServiceInstanceDetails, stored_version: int | None
) -> ServiceInstanceDetails:
    """Check the caller's version against the stored one and bump it.

    Args:
        instance: Copy being saved
        stored_version: Version currently persisted, None if the record is new

    Returns:
        Copy of the instance with the next version and a fresh ``updated_at``

    Raises:
        ConcurrentModificationError: If the caller's copy is stale
    """
    expected = 0 if stored_version is None else stored_version
    if instance.version != expected:
        raise ConcurrentModificationError(instance.id, instance.version, stored_version)
    return instance.model_copy(
        update={"version": instance.version + 1, "updated_at": datetime.now()}, deep=True
    )


__all__ = ["RecordStore", "next_version"]
