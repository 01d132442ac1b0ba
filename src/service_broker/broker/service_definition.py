"""Declarative service definitions and request variable resolution.

A ServiceDefinition describes one service offered by the broker: its identity
and catalog metadata, the built-in plans, the variables users may pass on
provision and bind, and the computed variables derived for every request.

Variable resolution for a provision request happens in this order (later
steps override earlier ones):

    1. Request constants (request.plan_id, request.service_id,
       request.instance_id, request.default_labels), visible to expressions only
    2. Operator provision defaults from the service config
    3. User parameters, merged verbatim
    4. The plan's provision_overrides
    5. Defaults of provision_input_variables (only for missing keys)
    6. The plan's service_properties
    7. provision_computed_variables

Bind requests follow the same shape, but their constants come from the
persisted instance record rather than from the request body.

The resulting context is validated against the declared input variables so
that a caller either receives a complete, schema-valid VarContext or an
exception.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable, Iterable
from typing import Any
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from ..config import ENABLE_CATALOG_SCHEMAS
from ..exceptions import PlanNotFoundError, ServiceDefinitionError
from ..interpolation import Evaluator
from ..models import ServiceInstanceDetails
from ..varcontext import ContextBuilder, DefaultVariable, VarContext
from .catalog import CatalogService, ServicePlan
from .labels import extract_default_labels
from .provider import ServiceProvider
from .requests import BindDetails, ProvisionDetails
from .service_config import CustomPlan, ServiceConfig
from .variables import BrokerVariable, create_json_schema, validate_variables

logger = logging.getLogger(__name__)

OSB_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9-\.]+$")


def _check_url(value: str, field_name: str) -> str:
    if value:
        parsed = urlparse(value)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"{field_name} must be an absolute URL, got {value!r}")
    return value


def _check_unique(names: Iterable[str], what: str) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ValueError(f"duplicate {what}: {name!r}")
        seen.add(name)


class ServiceDefinition(BaseModel):
    """Everything the broker needs to describe and resolve requests for one service.

    Attributes:
        id: Service UUID
        name: OSB name (letters, digits, ``-`` and ``.``)
        plans: Built-in plans; operator custom plans are layered on at registration
        provision_input_variables: User parameters accepted on provision
        provision_computed_variables: Values derived for every provision
        bind_input_variables: User parameters accepted on bind
        bind_output_variables: Credentials returned by bind (documentation only)
        bind_computed_variables: Values derived for every bind
        plan_variables: Properties a plan may carry; required ones are
            enforced on custom plans
        default_role_whitelist: Roles a bind may request; empty disables the check
        provider_builder: Factory for the backend provider of this service
        operator_config: Operator configuration attached at registration
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    id: str
    name: str
    description: str = ""
    display_name: str = ""
    image_url: str = ""
    documentation_url: str = ""
    support_url: str = ""
    tags: list[str] = Field(default_factory=list)
    bindable: bool = True
    plan_updateable: bool = False
    plans: list[ServicePlan] = Field(default_factory=list)

    provision_input_variables: list[BrokerVariable] = Field(default_factory=list)
    provision_computed_variables: list[DefaultVariable] = Field(default_factory=list)
    bind_input_variables: list[BrokerVariable] = Field(default_factory=list)
    bind_output_variables: list[BrokerVariable] = Field(default_factory=list)
    bind_computed_variables: list[DefaultVariable] = Field(default_factory=list)
    plan_variables: list[BrokerVariable] = Field(default_factory=list)
    default_role_whitelist: list[str] = Field(default_factory=list)

    provider_builder: Callable[[], ServiceProvider] | None = Field(default=None, exclude=True)
    is_builtin: bool = False
    operator_config: ServiceConfig = Field(default_factory=ServiceConfig, exclude=True)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        try:
            uuid.UUID(v)
        except ValueError as e:
            raise ValueError(f"id must be a UUID, got {v!r}") from e
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not OSB_NAME_PATTERN.match(v):
            raise ValueError(f"name must match {OSB_NAME_PATTERN.pattern}, got {v!r}")
        return v

    @field_validator("image_url", "documentation_url", "support_url")
    @classmethod
    def validate_urls(cls, v: str, info: ValidationInfo) -> str:
        return _check_url(v, info.field_name)

    @model_validator(mode="after")
    def validate_uniqueness(self) -> ServiceDefinition:
        _check_unique((plan.id for plan in self.plans), "plan id")
        for list_name in (
            "provision_input_variables",
            "bind_input_variables",
            "bind_output_variables",
            "plan_variables",
        ):
            variables: list[BrokerVariable] = getattr(self, list_name)
            _check_unique((v.field_name for v in variables), f"field name in {list_name}")
        return self

    def with_operator_config(self, config: ServiceConfig) -> ServiceDefinition:
        """Return a copy carrying the given operator configuration."""
        return self.model_copy(update={"operator_config": config})

    def provision_default_overrides(self) -> dict[str, Any]:
        """Operator defaults merged before user provision parameters."""
        return dict(self.operator_config.provision_defaults)

    def bind_default_overrides(self) -> dict[str, Any]:
        """Operator defaults merged before user bind parameters."""
        return dict(self.operator_config.bind_defaults)

    def is_role_whitelist_enabled(self) -> bool:
        return len(self.default_role_whitelist) > 0

    def is_enabled(self) -> bool:
        """False when the operator disabled this service."""
        return not self.operator_config.disabled

    def user_defined_plans(self) -> list[ServicePlan]:
        """Validate and convert the operator's custom plans.

        Raises:
            ServiceDefinitionError: If a plan lacks an id or a name, fails
                validation, or is missing a required plan property
        """
        plans = []
        for raw_plan in self.operator_config.custom_plans:
            if not (raw_plan.get("guid") or raw_plan.get("id")):
                raise ServiceDefinitionError(
                    self.name, f"{self.name} custom plan {raw_plan!r} is missing an id"
                )
            if not raw_plan.get("name"):
                raise ServiceDefinitionError(
                    self.name, f"{self.name} custom plan {raw_plan!r} is missing a name"
                )
            try:
                plan = CustomPlan.model_validate(raw_plan).to_service_plan()
            except ValidationError as e:
                raise ServiceDefinitionError(
                    self.name, f"{self.name} custom plan {raw_plan!r} is invalid: {e}"
                ) from e

            for variable in self.plan_variables:
                if variable.required and variable.field_name not in plan.service_properties:
                    raise ServiceDefinitionError(
                        self.name,
                        f"{self.name} custom plan {raw_plan!r} is missing required "
                        f"property {variable.field_name}",
                    )
            plans.append(plan)
        if plans:
            logger.debug(f"Service '{self.name}' has {len(plans)} custom plan(s)")
        return plans

    def create_schemas(self) -> dict[str, Any]:
        """Catalog schemas for instance and binding creation.

        Updates carry no schema since plan updates are not supported.
        """
        return {
            "service_instance": {
                "create": {"parameters": create_json_schema(self.provision_input_variables)}
            },
            "service_binding": {
                "create": {"parameters": create_json_schema(self.bind_input_variables)}
            },
        }

    def catalog_entry(self, schemas_enabled: bool | None = None) -> CatalogService:
        """Materialize the catalog entry: built-in plans followed by custom plans.

        Args:
            schemas_enabled: Attach JSON schemas to every plan. Defaults to the
                ``enable-catalog-schemas`` toggle.

        Raises:
            ServiceDefinitionError: If a custom plan is invalid
        """
        if schemas_enabled is None:
            schemas_enabled = ENABLE_CATALOG_SCHEMAS.is_active()

        plans = [plan.model_copy(deep=True) for plan in self.plans]
        plans.extend(self.user_defined_plans())
        if schemas_enabled:
            schemas = self.create_schemas()
            plans = [plan.model_copy(update={"schemas": schemas}) for plan in plans]

        return CatalogService(
            id=self.id,
            name=self.name,
            description=self.description,
            bindable=self.bindable,
            plan_updateable=self.plan_updateable,
            tags=list(self.tags),
            metadata={
                "displayName": self.display_name,
                "longDescription": self.description,
                "documentationUrl": self.documentation_url,
                "imageUrl": self.image_url,
                "supportUrl": self.support_url,
            },
            plans=plans,
        )

    def get_plan_by_id(self, plan_id: str) -> ServicePlan:
        """Find a plan of the realized catalog by id (linear scan).

        Raises:
            PlanNotFoundError: If no plan has that id
        """
        for plan in self.catalog_entry(schemas_enabled=False).plans:
            if plan.id == plan_id:
                return plan
        raise PlanNotFoundError(plan_id)

    def provision_defaults(self) -> list[DefaultVariable]:
        return [v.to_default_variable() for v in self.provision_input_variables]

    def bind_defaults(self) -> list[DefaultVariable]:
        return [v.to_default_variable() for v in self.bind_input_variables]

    def provision_variables(
        self,
        instance_id: str,
        details: ProvisionDetails,
        plan: ServicePlan,
        evaluator: Evaluator | None = None,
    ) -> VarContext:
        """Resolve the variables of a provision request.

        Args:
            instance_id: Id of the instance being provisioned
            details: Provision request
            plan: Plan selected by the request
            evaluator: Shared evaluator (so counters stay unique across requests)

        Returns:
            Resolved, schema-valid context

        Raises:
            ContextBuildError: If any resolution step failed
            ParameterValidationError: If the result violates the input schema
        """
        constants = {
            "request.plan_id": details.plan_id,
            "request.service_id": details.service_id,
            "request.instance_id": instance_id,
            "request.default_labels": extract_default_labels(instance_id, details),
        }

        builder = (
            ContextBuilder(evaluator)
            .set_eval_constants(constants)
            .merge_map(self.provision_default_overrides())
            .merge_map(details.raw_parameters)
            .merge_map(plan.provision_overrides)
            .merge_defaults(self.provision_defaults())
            .merge_map(plan.get_service_properties())
            .merge_defaults(self.provision_computed_variables)
        )
        return _build_and_validate(builder, self.provision_input_variables)

    def bind_variables(
        self,
        instance: ServiceInstanceDetails,
        binding_id: str,
        details: BindDetails,
        plan: ServicePlan,
        evaluator: Evaluator | None = None,
    ) -> VarContext:
        """Resolve the variables of a bind request.

        Plan and service ids come from the persisted instance, which is the
        source of truth after provisioning, not from the request body.

        Raises:
            ContextBuildError: If any resolution step failed
            ParameterValidationError: If the result violates the input schema
        """
        constants = {
            "request.binding_id": binding_id,
            "request.instance_id": instance.id,
            "request.plan_id": instance.plan_id,
            "request.service_id": instance.service_id,
            "request.app_guid": details.app_guid,
            "request.plan_properties": plan.get_service_properties(),
            "instance.name": instance.name,
            "instance.details": instance.provider_details(),
        }

        builder = (
            ContextBuilder(evaluator)
            .set_eval_constants(constants)
            .merge_map(self.bind_default_overrides())
            .merge_map(details.raw_parameters)
            .merge_map(plan.bind_overrides)
            .merge_defaults(self.bind_defaults())
            .merge_defaults(self.bind_computed_variables)
        )
        return _build_and_validate(builder, self.bind_input_variables)


def _build_and_validate(builder: ContextBuilder, variables: list[BrokerVariable]) -> VarContext:
    vc = builder.build()
    validate_variables(vc.to_map(), variables)
    return vc


__all__ = ["OSB_NAME_PATTERN", "ServiceDefinition"]
