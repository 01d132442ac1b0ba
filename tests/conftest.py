"""Shared test configuration for service-broker tests.

Provides:
- Fake backend providers (synchronous and asynchronous)
- A sample service definition with plans, input and computed variables
- Record stores, a registry and a lifecycle service wired together
"""

from collections.abc import Iterator
from typing import Any

import pytest

from service_broker.broker import (
    AsynchronousInstanceMixin,
    BrokerVariable,
    MergedInstanceCredsMixin,
    NoOpBindMixin,
    ServiceBroker,
    ServiceDefinition,
    ServicePlan,
    ServiceProvider,
    ServiceRegistry,
    SynchronousInstanceMixin,
)
from service_broker.broker.requests import DeprovisionDetails
from service_broker.config import FEATURES
from service_broker.models import ServiceBindingCredentials, ServiceInstanceDetails
from service_broker.operations import CloudOperation, OperationType
from service_broker.storage import InMemoryRecordStore
from service_broker.varcontext import DefaultVariable, VarContext

SYNC_SERVICE_ID = "b9e4332e-b42b-4680-bda5-ea1506797474"
SYNC_PLAN_ID = "e1d11f65-da66-46ad-977c-6d56513baf43"
ASYNC_SERVICE_ID = "4bc59b9a-8520-409f-85da-1c7552315863"
ASYNC_PLAN_ID = "7d8f9ade-30c1-4a96-a2c1-1d5e1a0c3b2e"


class FakeSyncProvider(SynchronousInstanceMixin, MergedInstanceCredsMixin, ServiceProvider):
    """Provider whose operations complete immediately and record their inputs."""

    def __init__(self) -> None:
        self.provisioned: list[VarContext] = []
        self.bound: list[VarContext] = []
        self.deprovisioned: list[str] = []
        self.unbound: list[str] = []

    async def provision(self, vc: VarContext) -> ServiceInstanceDetails:
        self.provisioned.append(vc)
        return ServiceInstanceDetails(
            id="",
            name=vc.get_string("name"),
            other_details={"tier": vc.get_string("tier")},
        )

    async def deprovision(
        self, instance: ServiceInstanceDetails, details: DeprovisionDetails
    ) -> str | None:
        self.deprovisioned.append(instance.id)
        return None

    async def bind(self, vc: VarContext) -> dict[str, Any]:
        self.bound.append(vc)
        return {"username": vc.get_string("username"), "role": vc.get_string("role")}

    async def unbind(
        self, instance: ServiceInstanceDetails, binding: ServiceBindingCredentials
    ) -> None:
        self.unbound.append(binding.binding_id)


class FakeAsyncProvider(
    AsynchronousInstanceMixin, NoOpBindMixin, MergedInstanceCredsMixin, ServiceProvider
):
    """Provider that starts backend jobs and reports scripted statuses when polled."""

    finishing_operation_types = frozenset({OperationType.PROVISION})

    def __init__(self) -> None:
        self.statuses: list[CloudOperation] = []
        self.poll_count = 0
        self.finished: list[str] = []
        self.poll_error: Exception | None = None

    def script(self, *statuses: str, error: Any = "") -> None:
        """Queue statuses returned by successive polls; the last one repeats."""
        last = len(statuses) - 1
        self.statuses = [
            CloudOperation(name="op-123", status=status, error=error if i == last else "")
            for i, status in enumerate(statuses)
        ]

    async def provision(self, vc: VarContext) -> ServiceInstanceDetails:
        return ServiceInstanceDetails(
            id="", name=vc.get_string("name"), operation_id="op-123"
        )

    async def deprovision(
        self, instance: ServiceInstanceDetails, details: DeprovisionDetails
    ) -> str | None:
        return "op-456"

    async def poll_instance(self, instance: ServiceInstanceDetails) -> CloudOperation:
        self.poll_count += 1
        if self.poll_error is not None:
            raise self.poll_error
        index = min(self.poll_count, len(self.statuses)) - 1
        return self.statuses[index]

    async def finish_operation(
        self, instance: ServiceInstanceDetails, operation: CloudOperation
    ) -> ServiceInstanceDetails | None:
        self.finished.append(instance.id)
        details = dict(instance.other_details)
        details["replica"] = f"{instance.name}-replica"
        return instance.model_copy(update={"other_details": details})


def make_sync_definition(provider: ServiceProvider | None = None) -> ServiceDefinition:
    return ServiceDefinition(
        id=SYNC_SERVICE_ID,
        name="example-cache",
        description="An example cache service",
        display_name="Example Cache",
        documentation_url="https://example.com/docs",
        tags=["cache", "preview"],
        plans=[
            ServicePlan(
                id=SYNC_PLAN_ID,
                name="small",
                description="Small cache",
                display_name="Small",
                service_properties={"tier": "basic"},
            )
        ],
        provision_input_variables=[
            BrokerVariable(
                field_name="name",
                type="string",
                details="Name of the cache",
                default="cache-${counter.next()}",
                constraints={"maxLength": 30},
            ),
            BrokerVariable(field_name="size", type="integer", details="Size in GB", default=10),
            BrokerVariable(
                field_name="region",
                type="string",
                details="Region",
                default="us-central1",
                enum={"us-central1": "Iowa", "europe-west1": "Belgium"},
            ),
        ],
        provision_computed_variables=[
            DefaultVariable(name="labels", default="${request.default_labels}", overwrite=True),
            DefaultVariable(
                name="size_check",
                default='${assert(size <= 100, "disk size exceeds maximum")}',
                overwrite=True,
            ),
        ],
        bind_input_variables=[
            BrokerVariable(
                field_name="role",
                type="string",
                details="Role",
                default="viewer",
                enum={"viewer": "Read only", "editor": "Read/write"},
            ),
        ],
        bind_computed_variables=[
            DefaultVariable(
                name="username",
                default="${str.truncate(20, instance.name)}-${request.binding_id}",
                overwrite=True,
            ),
        ],
        plan_variables=[
            BrokerVariable(field_name="tier", type="string", details="Tier", required=True),
        ],
        provider_builder=(lambda: provider) if provider is not None else FakeSyncProvider,
    )


def make_async_definition(provider: ServiceProvider) -> ServiceDefinition:
    return ServiceDefinition(
        id=ASYNC_SERVICE_ID,
        name="example-database",
        description="An example database service",
        plans=[ServicePlan(id=ASYNC_PLAN_ID, name="standard", description="Standard")],
        provision_input_variables=[
            BrokerVariable(field_name="name", type="string", default="db-${request.instance_id}"),
        ],
        provider_builder=lambda: provider,
    )


@pytest.fixture(autouse=True)
def clean_toggle_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Ensure toggles come from their defaults unless a test sets them."""
    for toggle in FEATURES.toggles():
        monkeypatch.delenv(toggle.env_var, raising=False)
    yield


@pytest.fixture
def sync_provider() -> FakeSyncProvider:
    return FakeSyncProvider()


@pytest.fixture
def async_provider() -> FakeAsyncProvider:
    return FakeAsyncProvider()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def registry(
    sync_provider: FakeSyncProvider, async_provider: FakeAsyncProvider
) -> ServiceRegistry:
    registry = ServiceRegistry()
    registry.register(make_sync_definition(sync_provider))
    registry.register(make_async_definition(async_provider))
    return registry


@pytest.fixture
def service_broker(registry: ServiceRegistry, store: InMemoryRecordStore) -> ServiceBroker:
    return ServiceBroker(registry, store, poll_interval=0.01, poll_timeout=2.0)
