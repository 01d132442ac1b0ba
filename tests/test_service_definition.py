"""Tests for service definitions: validation, catalog and variable resolution."""

import pytest
from conftest import SYNC_PLAN_ID, SYNC_SERVICE_ID, make_sync_definition
from pydantic import ValidationError

from service_broker.broker import (
    BindDetails,
    BrokerVariable,
    ProvisionDetails,
    ServiceConfig,
    ServiceDefinition,
    ServicePlan,
    extract_default_labels,
)
from service_broker.exceptions import (
    ContextBuildError,
    ParameterValidationError,
    PlanNotFoundError,
    ServiceDefinitionError,
)
from service_broker.interpolation import Evaluator
from service_broker.models import ServiceInstanceDetails
from service_broker.varcontext import DefaultVariable

CUSTOM_PLAN_ID = "31ab2f2c-7b3e-4a39-a8a5-4e6d1c2f9b10"


def custom_plan(**overrides) -> dict:
    plan = {
        "guid": CUSTOM_PLAN_ID,
        "name": "large",
        "display_name": "Large",
        "description": "A large cache",
        "properties": {"tier": "premium"},
    }
    plan.update(overrides)
    return plan


@pytest.fixture
def definition() -> ServiceDefinition:
    return make_sync_definition()


@pytest.fixture
def provision_details() -> ProvisionDetails:
    return ProvisionDetails(
        service_id=SYNC_SERVICE_ID,
        plan_id=SYNC_PLAN_ID,
        organization_guid="Org-1",
        space_guid="space.1",
    )


class TestValidation:
    def test_id_must_be_uuid(self):
        with pytest.raises(ValidationError, match="id must be a UUID"):
            ServiceDefinition(id="not-a-uuid", name="svc")

    def test_name_pattern(self):
        with pytest.raises(ValidationError, match="name must match"):
            ServiceDefinition(id=SYNC_SERVICE_ID, name="bad name!")

    def test_urls_must_be_absolute(self):
        with pytest.raises(ValidationError, match="must be an absolute URL"):
            ServiceDefinition(id=SYNC_SERVICE_ID, name="svc", image_url="logo.png")

    def test_plan_ids_unique(self):
        plan = ServicePlan(id="p", name="a")
        with pytest.raises(ValidationError, match="duplicate plan id"):
            ServiceDefinition(id=SYNC_SERVICE_ID, name="svc", plans=[plan, plan])

    def test_field_names_unique(self):
        variable = BrokerVariable(field_name="name")
        with pytest.raises(ValidationError, match="duplicate field name"):
            ServiceDefinition(
                id=SYNC_SERVICE_ID,
                name="svc",
                provision_input_variables=[variable, variable],
            )


class TestCustomPlans:
    def test_custom_plans_added_after_builtin(self, definition):
        configured = definition.with_operator_config(ServiceConfig(custom_plans=[custom_plan()]))
        plans = configured.catalog_entry(schemas_enabled=False).plans
        assert [plan.name for plan in plans] == ["small", "large"]
        assert plans[1].id == CUSTOM_PLAN_ID
        assert plans[1].service_properties == {"tier": "premium"}

    def test_flat_custom_plan_properties(self, definition):
        raw = {
            "id": CUSTOM_PLAN_ID,
            "name": "flat",
            "display_name": "Flat",
            "description": "Flat plan",
            "tier": "premium",
            "max_size": 500,
        }
        configured = definition.with_operator_config(ServiceConfig(custom_plans=[raw]))
        plan = configured.user_defined_plans()[0]
        assert plan.service_properties == {"tier": "premium", "max_size": "500"}

    def test_missing_name_rejected(self, definition):
        raw = custom_plan()
        del raw["name"]
        configured = definition.with_operator_config(ServiceConfig(custom_plans=[raw]))
        with pytest.raises(ServiceDefinitionError, match="is missing a name"):
            configured.catalog_entry()

    def test_missing_id_rejected(self, definition):
        raw = custom_plan()
        del raw["guid"]
        configured = definition.with_operator_config(ServiceConfig(custom_plans=[raw]))
        with pytest.raises(ServiceDefinitionError, match="is missing an id"):
            configured.user_defined_plans()

    def test_missing_required_plan_property_rejected(self, definition):
        raw = custom_plan(properties={})
        configured = definition.with_operator_config(ServiceConfig(custom_plans=[raw]))
        with pytest.raises(ServiceDefinitionError, match="missing required property tier"):
            configured.user_defined_plans()

    def test_invalid_custom_plan_rejected(self, definition):
        raw = custom_plan()
        del raw["description"]
        configured = definition.with_operator_config(ServiceConfig(custom_plans=[raw]))
        with pytest.raises(ServiceDefinitionError, match="is invalid"):
            configured.user_defined_plans()


class TestCatalog:
    def test_catalog_entry_metadata(self, definition):
        entry = definition.catalog_entry(schemas_enabled=False)
        assert entry.id == SYNC_SERVICE_ID
        assert entry.bindable is True
        assert entry.metadata["displayName"] == "Example Cache"
        assert entry.metadata["documentationUrl"] == "https://example.com/docs"
        assert all(plan.schemas is None for plan in entry.plans)

    def test_catalog_schemas_when_enabled(self, definition):
        entry = definition.catalog_entry(schemas_enabled=True)
        schemas = entry.plans[0].schemas
        create = schemas["service_instance"]["create"]["parameters"]
        assert sorted(create["properties"]) == ["name", "region", "size"]
        assert "role" in schemas["service_binding"]["create"]["parameters"]["properties"]

    def test_catalog_schemas_follow_toggle(self, definition, monkeypatch):
        assert definition.catalog_entry().plans[0].schemas is None
        monkeypatch.setenv("SERVICE_BROKER_COMPATIBILITY_ENABLE_CATALOG_SCHEMAS", "true")
        assert definition.catalog_entry().plans[0].schemas is not None

    def test_to_plain_hides_internal_plan_fields(self, definition):
        plain = definition.catalog_entry(schemas_enabled=False).to_plain()
        assert "service_properties" not in plain["plans"][0]
        assert plain["plans"][0]["name"] == "small"

    def test_get_plan_by_id(self, definition):
        assert definition.get_plan_by_id(SYNC_PLAN_ID).name == "small"

    def test_get_custom_plan_by_id(self, definition):
        configured = definition.with_operator_config(ServiceConfig(custom_plans=[custom_plan()]))
        assert configured.get_plan_by_id(CUSTOM_PLAN_ID).name == "large"

    def test_get_plan_by_id_not_found(self, definition):
        with pytest.raises(PlanNotFoundError, match="could not be found"):
            definition.get_plan_by_id("nope")


class TestProvisionVariables:
    def test_defaults_plan_properties_and_computed(self, definition, provision_details):
        plan = definition.get_plan_by_id(SYNC_PLAN_ID)
        vc = definition.provision_variables("Instance-1", provision_details, plan, Evaluator())
        assert vc.to_map() == {
            "name": "cache-1",
            "size": 10,
            "region": "us-central1",
            "tier": "basic",
            "labels": {
                "pcf-organization-guid": "org-1",
                "pcf-space-guid": "space_1",
                "pcf-instance-id": "instance-1",
            },
            "size_check": True,
        }

    def test_user_values_override_defaults(self, definition, provision_details):
        details = provision_details.model_copy(
            update={"raw_parameters": {"name": "mine", "region": "europe-west1"}}
        )
        plan = definition.get_plan_by_id(SYNC_PLAN_ID)
        vc = definition.provision_variables("i", details, plan)
        assert vc["name"] == "mine"
        assert vc["region"] == "europe-west1"

    def test_user_template_is_not_evaluated(self, definition, provision_details):
        details = provision_details.model_copy(update={"raw_parameters": {"name": "${1+1}"}})
        plan = definition.get_plan_by_id(SYNC_PLAN_ID)
        vc = definition.provision_variables("i", details, plan)
        assert vc["name"] == "${1+1}"

    def test_plan_properties_override_user_values(self, definition, provision_details):
        details = provision_details.model_copy(update={"raw_parameters": {"tier": "hacked"}})
        plan = definition.get_plan_by_id(SYNC_PLAN_ID)
        assert definition.provision_variables("i", details, plan)["tier"] == "basic"

    def test_operator_defaults_below_user_values(self, definition, provision_details):
        configured = definition.with_operator_config(
            ServiceConfig(provision_defaults={"region": "europe-west1", "size": 20})
        )
        details = provision_details.model_copy(update={"raw_parameters": {"size": 30}})
        plan = configured.get_plan_by_id(SYNC_PLAN_ID)
        vc = configured.provision_variables("i", details, plan)
        assert vc["region"] == "europe-west1"
        assert vc["size"] == 30

    def test_plan_provision_overrides_beat_user_values(self, definition, provision_details):
        plan = definition.get_plan_by_id(SYNC_PLAN_ID).model_copy(
            update={"provision_overrides": {"size": 5}}
        )
        details = provision_details.model_copy(update={"raw_parameters": {"size": 50}})
        assert definition.provision_variables("i", details, plan)["size"] == 5

    def test_assertion_failure(self, definition, provision_details):
        details = provision_details.model_copy(update={"raw_parameters": {"size": 500}})
        plan = definition.get_plan_by_id(SYNC_PLAN_ID)
        with pytest.raises(ContextBuildError, match="disk size exceeds maximum"):
            definition.provision_variables("i", details, plan)

    def test_schema_violation(self, definition, provision_details):
        details = provision_details.model_copy(update={"raw_parameters": {"region": "mars"}})
        plan = definition.get_plan_by_id(SYNC_PLAN_ID)
        with pytest.raises(ParameterValidationError) as exc_info:
            definition.provision_variables("i", details, plan)
        assert list(exc_info.value.field_errors) == ["region"]

    def test_counter_unique_across_requests(self, definition, provision_details):
        evaluator = Evaluator()
        plan = definition.get_plan_by_id(SYNC_PLAN_ID)
        names = {
            definition.provision_variables(f"i{n}", provision_details, plan, evaluator)["name"]
            for n in range(3)
        }
        assert names == {"cache-1", "cache-2", "cache-3"}


class TestBindVariables:
    def test_constants_come_from_instance_record(self, definition):
        instance = ServiceInstanceDetails(
            id="instance-1",
            name="orders-cache",
            service_id=SYNC_SERVICE_ID,
            plan_id=SYNC_PLAN_ID,
            other_details={"host": "10.0.0.1"},
        )
        definition = definition.model_copy(
            update={
                "bind_computed_variables": [
                    *definition.bind_computed_variables,
                    DefaultVariable(name="plan", default="${request.plan_id}", overwrite=True),
                    DefaultVariable(
                        name="host", default="${instance.details.host}", overwrite=True
                    ),
                ]
            }
        )
        details = BindDetails(service_id="spoofed", plan_id="spoofed", app_guid="app-1")
        plan = definition.get_plan_by_id(SYNC_PLAN_ID)

        vc = definition.bind_variables(instance, "binding-1", details, plan)
        assert vc.to_map() == {
            "role": "viewer",
            "username": "orders-cache-binding-1",
            "plan": SYNC_PLAN_ID,
            "host": "10.0.0.1",
        }

    def test_operator_bind_defaults(self, definition):
        config = ServiceConfig(bind_defaults={"role": "editor"})
        configured = definition.with_operator_config(config)
        instance = ServiceInstanceDetails(id="i", name="n", plan_id=SYNC_PLAN_ID)
        details = BindDetails(service_id=SYNC_SERVICE_ID, plan_id=SYNC_PLAN_ID)
        plan = configured.get_plan_by_id(SYNC_PLAN_ID)
        assert configured.bind_variables(instance, "b", details, plan)["role"] == "editor"

    def test_invalid_role(self, definition):
        instance = ServiceInstanceDetails(id="i", name="n", plan_id=SYNC_PLAN_ID)
        details = BindDetails(
            service_id=SYNC_SERVICE_ID, plan_id=SYNC_PLAN_ID, raw_parameters={"role": "owner"}
        )
        plan = definition.get_plan_by_id(SYNC_PLAN_ID)
        with pytest.raises(ParameterValidationError):
            definition.bind_variables(instance, "b", details, plan)


def test_default_labels_are_sanitized(provision_details):
    long_id = "X" * 80
    labels = extract_default_labels(long_id, provision_details)
    assert labels["pcf-organization-guid"] == "org-1"
    assert labels["pcf-space-guid"] == "space_1"
    assert labels["pcf-instance-id"] == "x" * 63


def test_role_whitelist(definition):
    assert not definition.is_role_whitelist_enabled()
    restricted = definition.model_copy(update={"default_role_whitelist": ["viewer"]})
    assert restricted.is_role_whitelist_enabled()
