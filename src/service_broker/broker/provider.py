"""Backend provider boundary.

A ServiceProvider performs the backend-specific part of each lifecycle call.
The broker validates inputs and stores state; a provider only changes the
backend to match the resolved VarContext it is handed and returns what it
created. Providers must not touch the broker's persisted records.

Concrete providers are assembled from the base class and mixins:

    class CacheProvider(SynchronousInstanceMixin, NoOpBindMixin,
                        MergedInstanceCredsMixin, ServiceProvider):
        async def provision(self, vc): ...
        async def deprovision(self, instance, details): ...

    class DatabaseProvider(AsynchronousInstanceMixin, MergedInstanceCredsMixin,
                           ServiceProvider):
        finishing_operation_types = frozenset({OperationType.PROVISION})
        async def poll_instance(self, instance): ...
        async def finish_operation(self, instance, operation): ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import AsyncRequiredError
from ..models import ServiceBindingCredentials, ServiceInstanceDetails
from ..operations.models import CloudOperation, OperationType
from ..varcontext import ContextBuilder, VarContext
from .requests import DeprovisionDetails


class ServiceProvider(ABC):
    """Backend operations for one service."""

    # Operation types whose DONE status requires finish_operation before the
    # instance is unlocked.
    finishing_operation_types: frozenset[OperationType] = frozenset()

    @abstractmethod
    async def provision(self, vc: VarContext) -> ServiceInstanceDetails:
        """Create the backend resources for an instance.

        Asynchronous providers set ``operation_id`` on the returned details to
        identify the pending backend job.
        """

    @abstractmethod
    async def deprovision(
        self, instance: ServiceInstanceDetails, details: DeprovisionDetails
    ) -> str | None:
        """Delete the backend resources; returns an operation id if asynchronous."""

    @abstractmethod
    async def bind(self, vc: VarContext) -> dict[str, Any]:
        """Create credentials; the returned map is stored with the binding."""

    @abstractmethod
    async def unbind(
        self, instance: ServiceInstanceDetails, binding: ServiceBindingCredentials
    ) -> None:
        """Delete what bind created."""

    @abstractmethod
    async def build_instance_credentials(
        self, binding: ServiceBindingCredentials, instance: ServiceInstanceDetails
    ) -> dict[str, Any]:
        """Combine the binding record with instance details into credentials."""

    @abstractmethod
    async def poll_instance(self, instance: ServiceInstanceDetails) -> CloudOperation:
        """Fetch the current status of the instance's pending operation.

        Errors are propagated to callers unmodified.
        """

    @abstractmethod
    def provisions_async(self) -> bool: ...

    @abstractmethod
    def deprovisions_async(self) -> bool: ...

    async def update_instance_details(
        self, instance: ServiceInstanceDetails
    ) -> ServiceInstanceDetails:
        """Refresh instance details from the backend; the default keeps them."""
        return instance

    async def finish_operation(
        self, instance: ServiceInstanceDetails, operation: CloudOperation
    ) -> ServiceInstanceDetails | None:
        """Finishing step run once a pending operation reports success.

        Returns the updated instance, or None when the instance record was
        removed by the step.
        """
        return instance


class SynchronousInstanceMixin:
    """Provider whose provision and deprovision complete before returning."""

    def provisions_async(self) -> bool:
        return False

    def deprovisions_async(self) -> bool:
        return False

    async def poll_instance(self, instance: ServiceInstanceDetails) -> CloudOperation:
        raise AsyncRequiredError(
            f"Service instance {instance.id!r} is provisioned synchronously and cannot be polled"
        )


class AsynchronousInstanceMixin:
    """Provider whose provision and deprovision start long-running backend jobs."""

    def provisions_async(self) -> bool:
        return True

    def deprovisions_async(self) -> bool:
        return True


class NoOpBindMixin:
    """Bindable service that needs nothing created server-side."""

    async def bind(self, vc: VarContext) -> dict[str, Any]:
        return {}

    async def unbind(
        self, instance: ServiceInstanceDetails, binding: ServiceBindingCredentials
    ) -> None:
        return None


class MergedInstanceCredsMixin:
    """Credentials are the binding payload merged with the instance payload.

    Instance values win over binding values of the same name.
    """

    async def build_instance_credentials(
        self, binding: ServiceBindingCredentials, instance: ServiceInstanceDetails
    ) -> dict[str, Any]:
        return (
            ContextBuilder()
            .merge_map(binding.other_details)
            .merge_map(instance.provider_details())
            .build_map()
        )


__all__ = [
    "AsynchronousInstanceMixin",
    "MergedInstanceCredsMixin",
    "NoOpBindMixin",
    "ServiceProvider",
    "SynchronousInstanceMixin",
]
