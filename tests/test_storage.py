"""Tests for the in-memory and SQLite record stores."""

import pytest

from service_broker.exceptions import ConcurrentModificationError, RecordNotFoundError
from service_broker.models import (
    ProvisionRequestDetails,
    ServiceBindingCredentials,
    ServiceInstanceDetails,
)
from service_broker.storage import InMemoryRecordStore, RecordStore, SqliteRecordStore


@pytest.fixture(params=["memory", "sqlite"])
async def record_store(request, tmp_path) -> RecordStore:
    if request.param == "memory":
        return InMemoryRecordStore()
    store = SqliteRecordStore(tmp_path / "state.db")
    await store.init()
    return store


def binding(instance_id: str, binding_id: str) -> ServiceBindingCredentials:
    return ServiceBindingCredentials(
        id=f"{instance_id}/{binding_id}",
        service_instance_id=instance_id,
        binding_id=binding_id,
        other_details={"username": "u"},
    )


class TestInstances:
    @pytest.mark.asyncio
    async def test_save_and_get(self, record_store):
        saved = await record_store.save_instance(
            ServiceInstanceDetails(id="i1", name="db", other_details={"a": [1, 2]})
        )
        assert saved.version == 1

        loaded = await record_store.get_instance("i1")
        assert loaded.name == "db"
        assert loaded.other_details == {"a": [1, 2]}
        assert loaded.version == 1
        assert await record_store.instance_exists("i1")

    @pytest.mark.asyncio
    async def test_get_missing(self, record_store):
        with pytest.raises(RecordNotFoundError, match="'nope' not found"):
            await record_store.get_instance("nope")
        assert not await record_store.instance_exists("nope")

    @pytest.mark.asyncio
    async def test_update_bumps_version(self, record_store):
        saved = await record_store.save_instance(ServiceInstanceDetails(id="i1"))
        updated = await record_store.save_instance(saved.model_copy(update={"name": "renamed"}))
        assert updated.version == 2
        assert (await record_store.get_instance("i1")).name == "renamed"

    @pytest.mark.asyncio
    async def test_stale_copy_is_rejected(self, record_store):
        first = await record_store.save_instance(ServiceInstanceDetails(id="i1"))
        await record_store.save_instance(first.model_copy(update={"name": "winner"}))

        with pytest.raises(ConcurrentModificationError) as exc_info:
            await record_store.save_instance(first.model_copy(update={"name": "loser"}))
        assert exc_info.value.expected_version == 1
        assert (await record_store.get_instance("i1")).name == "winner"

    @pytest.mark.asyncio
    async def test_new_record_must_start_at_version_zero(self, record_store):
        with pytest.raises(ConcurrentModificationError):
            await record_store.save_instance(ServiceInstanceDetails(id="i1", version=3))

    @pytest.mark.asyncio
    async def test_delete_removes_provision_request(self, record_store):
        await record_store.save_instance(ServiceInstanceDetails(id="i1"))
        await record_store.save_provision_request(
            ProvisionRequestDetails(service_instance_id="i1", request_details={"size": 1})
        )

        await record_store.delete_instance("i1")

        assert not await record_store.instance_exists("i1")
        with pytest.raises(RecordNotFoundError):
            await record_store.get_provision_request("i1")

    @pytest.mark.asyncio
    async def test_delete_missing(self, record_store):
        with pytest.raises(RecordNotFoundError):
            await record_store.delete_instance("nope")


class TestBindings:
    @pytest.mark.asyncio
    async def test_save_get_list_delete(self, record_store):
        await record_store.save_binding(binding("i1", "b1"))
        await record_store.save_binding(binding("i1", "b2"))
        await record_store.save_binding(binding("i2", "b1"))

        assert await record_store.binding_exists("i1", "b1")
        loaded = await record_store.get_binding("i1", "b1")
        assert loaded.other_details == {"username": "u"}

        listed = await record_store.list_bindings("i1")
        assert sorted(b.binding_id for b in listed) == ["b1", "b2"]

        await record_store.delete_binding("i1", "b1")
        assert not await record_store.binding_exists("i1", "b1")
        assert await record_store.binding_exists("i2", "b1")

    @pytest.mark.asyncio
    async def test_missing_binding(self, record_store):
        with pytest.raises(RecordNotFoundError):
            await record_store.get_binding("i1", "b1")
        with pytest.raises(RecordNotFoundError):
            await record_store.delete_binding("i1", "b1")


@pytest.mark.asyncio
async def test_provision_request_roundtrip(record_store):
    await record_store.save_provision_request(
        ProvisionRequestDetails(service_instance_id="i1", request_details={"name": "${1+1}"})
    )
    loaded = await record_store.get_provision_request("i1")
    assert loaded.request_details == {"name": "${1+1}"}


@pytest.mark.asyncio
async def test_memory_store_counts_writes():
    store = InMemoryRecordStore()
    saved = await store.save_instance(ServiceInstanceDetails(id="i1"))
    await store.save_instance(saved)
    await store.delete_instance("i1")
    assert store.get_stats() == {"instance_writes": 2, "instance_deletes": 1}


@pytest.mark.asyncio
async def test_memory_store_returns_copies():
    store = InMemoryRecordStore()
    saved = await store.save_instance(ServiceInstanceDetails(id="i1", other_details={"k": "v"}))
    saved.other_details["k"] = "mutated"
    assert (await store.get_instance("i1")).other_details == {"k": "v"}


@pytest.mark.asyncio
async def test_sqlite_store_persists_across_instances(tmp_path):
    path = tmp_path / "state.db"
    first = SqliteRecordStore(path)
    await first.init()
    await first.save_instance(ServiceInstanceDetails(id="i1", name="db"))

    second = SqliteRecordStore(path)
    await second.init()
    loaded = await second.get_instance("i1")
    assert loaded.name == "db"
    assert loaded.version == 1
