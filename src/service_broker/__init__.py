"""Service broker core: variable resolution and operation lifecycle tracking.

Key Components:

- Evaluator: Interpolation templates (``${...}``) over a typed function library
- ContextBuilder / VarContext: Ordered merging of request variables into an
  immutable resolved context, with aggregated errors
- ServiceDefinition / ServiceRegistry: Declarative services, plans, operator
  custom plans and the catalog
- OperationTracker: Pending asynchronous backend operations recorded on the
  instance record, polled and finalized
- RecordStore: Persistence boundary (in-memory and SQLite implementations)
- ServiceBroker: Protocol-independent provision/bind/unbind/deprovision

Architecture:
- A request selects a ServiceDefinition and Plan from the registry
- The definition resolves a VarContext (user parameters are never evaluated)
- A ServiceProvider performs the backend work with the resolved context
- Pending backend work is tracked on the instance until it completes
"""

from .broker import (
    BindDetails,
    BrokerVariable,
    DeprovisionDetails,
    ProvisionDetails,
    ServiceBroker,
    ServiceDefinition,
    ServicePlan,
    ServiceProvider,
    ServiceRegistry,
    UnbindDetails,
)
from .config import BrokerConfig
from .interpolation import Counter, Evaluator
from .models import ServiceBindingCredentials, ServiceInstanceDetails
from .operations import CloudOperation, OperationState, OperationTracker, OperationType
from .storage import InMemoryRecordStore, RecordStore, SqliteRecordStore
from .varcontext import ContextBuilder, DefaultVariable, VarContext

__version__ = "0.1.0"

__all__ = [
    "BindDetails",
    "BrokerConfig",
    "BrokerVariable",
    "CloudOperation",
    "ContextBuilder",
    "Counter",
    "DefaultVariable",
    "DeprovisionDetails",
    "Evaluator",
    "InMemoryRecordStore",
    "OperationState",
    "OperationTracker",
    "OperationType",
    "ProvisionDetails",
    "RecordStore",
    "ServiceBindingCredentials",
    "ServiceBroker",
    "ServiceDefinition",
    "ServiceInstanceDetails",
    "ServicePlan",
    "ServiceProvider",
    "ServiceRegistry",
    "SqliteRecordStore",
    "UnbindDetails",
    "VarContext",
]
