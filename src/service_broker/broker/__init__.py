"""Service definitions, the registry and the lifecycle service."""

from .catalog import CatalogService, ServicePlan
from .labels import extract_default_labels, sanitize_label_value
from .loader import load_service_definition, load_service_definition_from_file
from .provider import (
    AsynchronousInstanceMixin,
    MergedInstanceCredsMixin,
    NoOpBindMixin,
    ServiceProvider,
    SynchronousInstanceMixin,
)
from .registry import ServiceRegistry
from .requests import BindDetails, DeprovisionDetails, ProvisionDetails, UnbindDetails
from .service_broker import (
    Binding,
    DeprovisionServiceSpec,
    LastOperation,
    LastOperationState,
    ProvisionedServiceSpec,
    ServiceBroker,
)
from .service_config import CustomPlan, ServiceConfig, ServiceConfigMap
from .service_definition import ServiceDefinition
from .variables import BrokerVariable, ConstraintBuilder, create_json_schema, validate_variables

__all__ = [
    "AsynchronousInstanceMixin",
    "BindDetails",
    "Binding",
    "BrokerVariable",
    "CatalogService",
    "ConstraintBuilder",
    "CustomPlan",
    "DeprovisionDetails",
    "DeprovisionServiceSpec",
    "LastOperation",
    "LastOperationState",
    "MergedInstanceCredsMixin",
    "NoOpBindMixin",
    "ProvisionDetails",
    "ProvisionedServiceSpec",
    "ServiceBroker",
    "ServiceConfig",
    "ServiceConfigMap",
    "ServiceDefinition",
    "ServicePlan",
    "ServiceProvider",
    "ServiceRegistry",
    "SynchronousInstanceMixin",
    "UnbindDetails",
    "create_json_schema",
    "extract_default_labels",
    "load_service_definition",
    "load_service_definition_from_file",
    "sanitize_label_value",
    "validate_variables",
]
