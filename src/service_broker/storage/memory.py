"""In-memory record store for development and testing."""

from __future__ import annotations

import asyncio

from ..exceptions import RecordNotFoundError
from ..models import ProvisionRequestDetails, ServiceBindingCredentials, ServiceInstanceDetails
from .base import RecordStore, next_version


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed store.

    Safe for concurrent coroutines via asyncio.Lock. Records are copied on
    the way in and out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._instances: dict[str, ServiceInstanceDetails] = {}
        self._bindings: dict[tuple[str, str], ServiceBindingCredentials] = {}
        self._requests: dict[str, ProvisionRequestDetails] = {}
        self._lock = asyncio.Lock()
        self._stats = {"instance_writes": 0, "instance_deletes": 0}

    async def get_instance(self, instance_id: str) -> ServiceInstanceDetails:
        async with self._lock:
            if instance_id not in self._instances:
                raise RecordNotFoundError("Service instance", instance_id)
            return self._instances[instance_id].model_copy(deep=True)

    async def instance_exists(self, instance_id: str) -> bool:
        async with self._lock:
            return instance_id in self._instances

    async def save_instance(self, instance: ServiceInstanceDetails) -> ServiceInstanceDetails:
        async with self._lock:
            current = self._instances.get(instance.id)
            stored = next_version(instance, current.version if current else None)
            self._instances[instance.id] = stored
            self._stats["instance_writes"] += 1
            return stored.model_copy(deep=True)

    async def delete_instance(self, instance_id: str) -> None:
        async with self._lock:
            if instance_id not in self._instances:
                raise RecordNotFoundError("Service instance", instance_id)
            del self._instances[instance_id]
            self._requests.pop(instance_id, None)
            self._stats["instance_deletes"] += 1

    def get_stats(self) -> dict[str, int]:
        """Write counters since creation."""
        return dict(self._stats)

    async def get_binding(self, instance_id: str, binding_id: str) -> ServiceBindingCredentials:
        async with self._lock:
            binding = self._bindings.get((instance_id, binding_id))
            if binding is None:
                raise RecordNotFoundError("Binding", binding_id)
            return binding.model_copy(deep=True)

    async def binding_exists(self, instance_id: str, binding_id: str) -> bool:
        async with self._lock:
            return (instance_id, binding_id) in self._bindings

    async def save_binding(self, binding: ServiceBindingCredentials) -> None:
        async with self._lock:
            key = (binding.service_instance_id, binding.binding_id)
            self._bindings[key] = binding.model_copy(deep=True)

    async def delete_binding(self, instance_id: str, binding_id: str) -> None:
        async with self._lock:
            if (instance_id, binding_id) not in self._bindings:
                raise RecordNotFoundError("Binding", binding_id)
            del self._bindings[(instance_id, binding_id)]

    async def list_bindings(self, instance_id: str) -> list[ServiceBindingCredentials]:
        async with self._lock:
            return [
                binding.model_copy(deep=True)
                for (owner, _), binding in self._bindings.items()
                if owner == instance_id
            ]

    async def save_provision_request(self, details: ProvisionRequestDetails) -> None:
        async with self._lock:
            self._requests[details.service_instance_id] = details.model_copy(deep=True)

    async def get_provision_request(self, instance_id: str) -> ProvisionRequestDetails:
        async with self._lock:
            if instance_id not in self._requests:
                raise RecordNotFoundError("Provision request", instance_id)
            return self._requests[instance_id].model_copy(deep=True)


__all__ = ["InMemoryRecordStore"]
