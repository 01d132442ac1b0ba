"""Lifecycle service tying the registry, providers, store and tracker together.

ServiceBroker implements the provision / bind / unbind / deprovision /
last-operation calls independently of any wire protocol. A protocol layer
decodes requests into the models of ``broker.requests``, calls the matching
coroutine and maps the exceptions of ``service_broker.exceptions`` onto its
own status codes.

Asynchronous work:
    provision and deprovision of an asynchronous provider start an operation
    on the instance record. ``last_operation`` polls it once per call (the
    protocol's own polling drives progress); ``wait_for_operation`` polls to
    completion as a cancellable, timeout-bounded coroutine.

Finishing steps:
    provider-declared steps run when a provision, deprovision or update
    completes; a completed deprovision also deletes the instance record.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..config import BrokerConfig
from ..exceptions import (
    AsyncRequiredError,
    BindingAlreadyExistsError,
    InstanceAlreadyExistsError,
    OperationInProgressError,
    ServiceDefinitionError,
)
from ..models import ProvisionRequestDetails, ServiceBindingCredentials, ServiceInstanceDetails
from ..operations import (
    CloudOperation,
    OperationState,
    OperationTracker,
    OperationType,
    PollResult,
    StatusMapping,
)
from ..storage import RecordStore
from .provider import ServiceProvider
from .registry import ServiceRegistry
from .requests import BindDetails, DeprovisionDetails, ProvisionDetails, UnbindDetails
from .service_config import ServiceConfigMap

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProvisionedServiceSpec:
    is_async: bool
    operation_id: str = ""


@dataclass(frozen=True)
class DeprovisionServiceSpec:
    is_async: bool
    operation_id: str = ""


@dataclass(frozen=True)
class Binding:
    credentials: dict[str, Any]


class LastOperationState(str, Enum):
    """Operation states reported to the platform."""

    IN_PROGRESS = "in progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class LastOperation:
    state: LastOperationState
    description: str = ""


_LAST_OPERATION_STATES = {
    OperationState.NONE: LastOperationState.SUCCEEDED,
    OperationState.PENDING: LastOperationState.IN_PROGRESS,
    OperationState.DONE: LastOperationState.SUCCEEDED,
    OperationState.FAILED: LastOperationState.FAILED,
}


class ServiceBroker:
    """Protocol-independent implementation of the service lifecycle.

    Example:
        registry = ServiceRegistry(service_config=ServiceConfigMap.parse(raw))
        registry.register(cache_definition)
        broker = ServiceBroker(registry, InMemoryRecordStore())

        spec = await broker.provision("instance-1", details, async_allowed=True)
        if spec.is_async:
            await broker.wait_for_operation("instance-1")
        binding = await broker.bind("instance-1", "binding-1", bind_details)
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        store: RecordStore,
        poll_interval: float = 1.0,
        poll_timeout: float | None = None,
        status_mapping: StatusMapping | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self._providers: dict[str, ServiceProvider] = {}
        self.tracker = OperationTracker(
            store,
            fetch_status=self._fetch_status,
            finishers={
                OperationType.PROVISION: self._finish_operation,
                OperationType.UPDATE: self._finish_operation,
                OperationType.DEPROVISION: self._finish_deprovision,
            },
            poll_interval=poll_interval,
            timeout=poll_timeout,
            status_mapping=status_mapping,
        )

    @classmethod
    def from_config(cls, config: BrokerConfig, store: RecordStore) -> ServiceBroker:
        """Create a broker with an empty registry configured from ``config``."""
        registry = ServiceRegistry(
            service_config=ServiceConfigMap.parse(config.service_config),
            toggle_overrides=config.toggle_overrides,
        )
        return cls(
            registry,
            store,
            poll_interval=config.poll_interval,
            poll_timeout=config.poll_timeout,
        )

    def provider_for(self, service_id: str) -> ServiceProvider:
        """Backend provider of a service, built once and reused."""
        provider = self._providers.get(service_id)
        if provider is None:
            definition = self.registry.get_service_by_id(service_id)
            if definition.provider_builder is None:
                raise ServiceDefinitionError(definition.name, "no backend provider configured")
            provider = definition.provider_builder()
            self._providers[service_id] = provider
        return provider

    def services(self) -> list[dict[str, Any]]:
        """The catalog as plain mappings, ready for serialization."""
        return [entry.to_plain() for entry in self.registry.catalog()]

    async def provision(
        self, instance_id: str, details: ProvisionDetails, async_allowed: bool = False
    ) -> ProvisionedServiceSpec:
        """Create a service instance.

        Raises:
            InstanceAlreadyExistsError: If the instance id is taken
            ServiceNotFoundError, PlanNotFoundError: For unknown ids
            AsyncRequiredError: If the provider is asynchronous and the
                caller does not accept that
            ContextBuildError, ParameterValidationError: If variable
                resolution fails
        """
        logger.info(f"Provisioning instance '{instance_id}' (async_allowed={async_allowed})")

        if await self.store.instance_exists(instance_id):
            raise InstanceAlreadyExistsError(instance_id)

        definition = self.registry.get_service_by_id(details.service_id)
        plan = definition.get_plan_by_id(details.plan_id)
        provider = self.provider_for(definition.id)

        is_async = provider.provisions_async()
        if is_async and not async_allowed:
            raise AsyncRequiredError()

        vc = definition.provision_variables(instance_id, details, plan, self.registry.evaluator)
        created = await provider.provision(vc)

        operation_id = created.operation_id
        instance = created.model_copy(
            update={
                "id": instance_id,
                "service_id": definition.id,
                "plan_id": plan.id,
                "space_guid": details.space_guid,
                "organization_guid": details.organization_guid,
                "operation_type": OperationType.NONE.value,
                "operation_id": "",
                "version": 0,
            }
        )
        saved = await self.store.save_instance(instance)
        await self.store.save_provision_request(
            ProvisionRequestDetails(
                service_instance_id=instance_id, request_details=dict(details.raw_parameters)
            )
        )

        if is_async:
            operation_id = operation_id or instance_id
            await self.tracker.start(saved, OperationType.PROVISION, operation_id)

        logger.info(f"Provisioned instance '{instance_id}' of service '{definition.name}'")
        return ProvisionedServiceSpec(is_async=is_async, operation_id=operation_id)

    async def deprovision(
        self, instance_id: str, details: DeprovisionDetails, async_allowed: bool = False
    ) -> DeprovisionServiceSpec:
        """Delete a service instance.

        Synchronous deprovisions delete the record immediately; asynchronous
        ones delete it once the operation finishes.

        Raises:
            RecordNotFoundError: If the instance does not exist
            OperationInProgressError: If another operation is pending
            AsyncRequiredError: If the provider is asynchronous and the
                caller does not accept that
        """
        logger.info(f"Deprovisioning instance '{instance_id}' (async_allowed={async_allowed})")

        instance = await self.store.get_instance(instance_id)
        self._check_unlocked(instance)

        provider = self.provider_for(instance.service_id)
        is_async = provider.deprovisions_async()
        if is_async and not async_allowed:
            raise AsyncRequiredError()

        operation_id = await provider.deprovision(instance, details) or ""

        if is_async:
            operation_id = operation_id or instance_id
            await self.tracker.start(instance, OperationType.DEPROVISION, operation_id)
        else:
            await self.store.delete_instance(instance_id)
            logger.info(f"Deprovisioned instance '{instance_id}'")

        return DeprovisionServiceSpec(is_async=is_async, operation_id=operation_id)

    async def bind(self, instance_id: str, binding_id: str, details: BindDetails) -> Binding:
        """Create credentials for an application.

        Variables are resolved against the persisted instance record.

        Raises:
            RecordNotFoundError: If the instance does not exist
            OperationInProgressError: If an operation is pending on the instance
            BindingAlreadyExistsError: If the binding id is taken
            ContextBuildError, ParameterValidationError: If variable
                resolution fails
        """
        logger.info(f"Binding '{binding_id}' to instance '{instance_id}'")

        instance = await self.store.get_instance(instance_id)
        self._check_unlocked(instance)
        if await self.store.binding_exists(instance_id, binding_id):
            raise BindingAlreadyExistsError(instance_id, binding_id)

        definition = self.registry.get_service_by_id(instance.service_id)
        plan = definition.get_plan_by_id(instance.plan_id)
        provider = self.provider_for(definition.id)

        vc = definition.bind_variables(
            instance, binding_id, details, plan, self.registry.evaluator
        )
        payload = await provider.bind(vc)

        binding = ServiceBindingCredentials(
            id=str(uuid.uuid4()),
            service_id=definition.id,
            service_instance_id=instance_id,
            binding_id=binding_id,
            other_details=payload,
        )
        await self.store.save_binding(binding)

        credentials = await provider.build_instance_credentials(binding, instance)
        logger.info(f"Created binding '{binding_id}' for instance '{instance_id}'")
        return Binding(credentials=credentials)

    async def unbind(self, instance_id: str, binding_id: str, details: UnbindDetails) -> None:
        """Delete an application's credentials.

        Raises:
            RecordNotFoundError: If the binding or instance does not exist
        """
        logger.info(f"Unbinding '{binding_id}' from instance '{instance_id}'")

        binding = await self.store.get_binding(instance_id, binding_id)
        instance = await self.store.get_instance(instance_id)
        provider = self.provider_for(instance.service_id)

        await provider.unbind(instance, binding)
        await self.store.delete_binding(instance_id, binding_id)
        logger.info(f"Deleted binding '{binding_id}' of instance '{instance_id}'")

    async def last_operation(self, instance_id: str) -> LastOperation:
        """Poll the instance's pending operation once and report its state.

        Backend errors raised while fetching the status propagate unchanged.

        Raises:
            RecordNotFoundError: If the instance does not exist (including
                after a completed deprovision)
            AsyncRequiredError: If the service is synchronous
        """
        instance = await self.store.get_instance(instance_id)
        provider = self.provider_for(instance.service_id)
        if not (provider.provisions_async() or provider.deprovisions_async()):
            raise AsyncRequiredError(
                f"Can't poll the last operation of synchronous service instance {instance_id!r}"
            )

        return _to_last_operation(await self.tracker.poll(instance_id))

    async def wait_for_operation(
        self, instance_id: str, stop: asyncio.Event | None = None
    ) -> LastOperation:
        """Poll until the instance's operation completes, is stopped or times out.

        Raises:
            TimeoutError: If the tracker's timeout elapses
        """
        return _to_last_operation(await self.tracker.wait_until_done(instance_id, stop=stop))

    def _check_unlocked(self, instance: ServiceInstanceDetails) -> None:
        if self.tracker.is_locked(instance):
            raise OperationInProgressError(instance.id, instance.operation_type)

    async def _fetch_status(self, instance: ServiceInstanceDetails) -> CloudOperation:
        return await self.provider_for(instance.service_id).poll_instance(instance)

    async def _finish_operation(
        self, instance: ServiceInstanceDetails, operation: CloudOperation
    ) -> ServiceInstanceDetails | None:
        provider = self.provider_for(instance.service_id)
        if OperationType(instance.operation_type) not in provider.finishing_operation_types:
            return instance
        logger.info(
            f"Running finishing step for {instance.operation_type} of instance '{instance.id}'"
        )
        return await provider.finish_operation(instance, operation)

    async def _finish_deprovision(
        self, instance: ServiceInstanceDetails, operation: CloudOperation
    ) -> None:
        finished = await self._finish_operation(instance, operation)
        if finished is not None:
            await self.store.delete_instance(instance.id)
        logger.info(f"Deprovisioned instance '{instance.id}'")
        return None


def _to_last_operation(result: PollResult) -> LastOperation:
    description = ""
    if result.state is OperationState.FAILED and result.operation is not None:
        error = result.operation.error
        description = error if isinstance(error, str) else str(error)
    return LastOperation(state=_LAST_OPERATION_STATES[result.state], description=description)


__all__ = [
    "Binding",
    "DeprovisionServiceSpec",
    "LastOperation",
    "LastOperationState",
    "ProvisionedServiceSpec",
    "ServiceBroker",
]
