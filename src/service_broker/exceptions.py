"""Exception hierarchy for the service broker core.

Exception Hierarchy:
    BrokerError (base)
    ├── EvaluationError              - Interpolation template could not be evaluated
    ├── ContextBuildError            - One or more variable resolution steps failed
    ├── ParameterValidationError     - Resolved variables violate the declared schema
    ├── ServiceDefinitionError       - Malformed service definition or custom plan
    ├── DuplicateServiceError        - Service name or id registered twice
    ├── ServiceNotFoundError         - Unknown service id or name (LookupError)
    ├── PlanNotFoundError            - Unknown plan id (LookupError)
    ├── RecordNotFoundError          - Persisted record missing (LookupError)
    ├── ConcurrentModificationError  - Optimistic version check failed on save
    ├── InstanceAlreadyExistsError   - Provision called for an existing instance
    ├── BindingAlreadyExistsError    - Bind called for an existing binding
    ├── OperationInProgressError     - Record is locked by a pending operation
    └── AsyncRequiredError           - Backend needs async but caller did not allow it

Two error channels are kept apart: resolution errors are collected
and raised once as ContextBuildError, while errors raised by backend providers
are never wrapped and reach the caller with their original text.
"""

from __future__ import annotations

from collections.abc import Sequence

ASYNC_REQUIRED_MESSAGE = (
    "This service plan requires client support for asynchronous service operations."
)


def format_error_list(errors: Sequence[str]) -> str:
    """Render a list of error messages as one multi-line message.

    Args:
        errors: Individual error messages

    Returns:
        ``"<n> error(s) occurred:"`` followed by one message per line
    """
    lines = [f"{len(errors)} error(s) occurred:"]
    lines.extend(errors)
    return "\n".join(lines)


class BrokerError(Exception):
    """Base exception for all service broker errors."""


class EvaluationError(BrokerError):
    """An interpolation template failed to parse or evaluate.

    Attributes:
        message: Human readable reason (e.g. "unknown variable accessed: x")
        template: Template text being evaluated, if known
    """

    def __init__(self, message: str, template: str | None = None):
        self.message = message
        self.template = template
        super().__init__(message)

    def __repr__(self) -> str:
        return f"EvaluationError(message={self.message!r}, template={self.template!r})"


class ContextBuildError(BrokerError):
    """Aggregated failure of a variable context build pass.

    A build never yields a partially valid context: when any merge step fails
    the whole pass is reported through this error.

    Attributes:
        errors: Every error message collected during the pass, in order
    """

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__(format_error_list(self.errors))

    def __repr__(self) -> str:
        return f"ContextBuildError(errors={self.errors!r})"


class ParameterValidationError(BrokerError):
    """Resolved request parameters violate the declared variable schema.

    This is a client error: the caller supplied values with the wrong type,
    outside an enum, or breaking a structural constraint.

    Attributes:
        field_errors: Mapping of field name to the messages for that field
    """

    def __init__(self, field_errors: dict[str, list[str]]):
        self.field_errors = field_errors
        messages = [msg for msgs in field_errors.values() for msg in msgs]
        super().__init__(format_error_list(messages))

    def __repr__(self) -> str:
        return f"ParameterValidationError(fields={sorted(self.field_errors)!r})"


class ServiceDefinitionError(BrokerError):
    """A service definition or its operator configuration is invalid.

    Raised at registration time; a definition that fails validation is never
    registered.

    Attributes:
        service_name: Name of the offending service
        reason: What was wrong with it
    """

    def __init__(self, service_name: str, reason: str):
        self.service_name = service_name
        self.reason = reason
        super().__init__(f"Invalid service definition '{service_name}': {reason}")

    def __repr__(self) -> str:
        return f"ServiceDefinitionError(service={self.service_name!r}, reason={self.reason!r})"


class DuplicateServiceError(BrokerError):
    """A service with the same name or id is already registered."""

    def __init__(self, key: str, value: str):
        self.key = key
        self.value = value
        super().__init__(f"Service with {key} '{value}' is already registered")

    def __repr__(self) -> str:
        return f"DuplicateServiceError({self.key}={self.value!r})"


class ServiceNotFoundError(BrokerError, LookupError):
    """No registered service matches the requested id or name."""

    def __init__(self, service_id: str):
        self.service_id = service_id
        super().__init__(f"Unknown service ID: {service_id!r}")


class PlanNotFoundError(BrokerError, LookupError):
    """No plan with the requested id exists in the service catalog."""

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Plan ID {plan_id!r} could not be found")


class RecordNotFoundError(BrokerError, LookupError):
    """A persisted instance, binding or request record does not exist."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id!r} not found")


class ConcurrentModificationError(BrokerError):
    """A record was saved from a stale copy.

    Attributes:
        record_id: Id of the record being saved
        expected_version: Version carried by the caller's copy
        actual_version: Version currently persisted (None if missing)
    """

    def __init__(self, record_id: str, expected_version: int, actual_version: int | None):
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Record {record_id!r} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )

    def __repr__(self) -> str:
        return (
            f"ConcurrentModificationError(record_id={self.record_id!r}, "
            f"expected={self.expected_version}, actual={self.actual_version})"
        )


class InstanceAlreadyExistsError(BrokerError):
    """Provision was requested for an instance id that is already in use."""

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Service instance {instance_id!r} already exists")


class BindingAlreadyExistsError(BrokerError):
    """Bind was requested for a binding id that is already in use."""

    def __init__(self, instance_id: str, binding_id: str):
        self.instance_id = instance_id
        self.binding_id = binding_id
        super().__init__(
            f"Binding {binding_id!r} already exists for service instance {instance_id!r}"
        )


class OperationInProgressError(BrokerError):
    """A mutating call was refused because the record is locked.

    Attributes:
        instance_id: Locked instance
        operation_type: Type of the pending operation holding the lock
    """

    def __init__(self, instance_id: str, operation_type: str):
        self.instance_id = instance_id
        self.operation_type = operation_type
        super().__init__(
            f"Service instance {instance_id!r} has a {operation_type} operation in progress"
        )

    def __repr__(self) -> str:
        return (
            f"OperationInProgressError(instance_id={self.instance_id!r}, "
            f"operation_type={self.operation_type!r})"
        )


class AsyncRequiredError(BrokerError):
    """The backend only supports asynchronous operations for this request."""

    def __init__(self, message: str = ASYNC_REQUIRED_MESSAGE):
        super().__init__(message)


__all__ = [
    "AsyncRequiredError",
    "BindingAlreadyExistsError",
    "BrokerError",
    "ConcurrentModificationError",
    "ContextBuildError",
    "DuplicateServiceError",
    "EvaluationError",
    "InstanceAlreadyExistsError",
    "OperationInProgressError",
    "ParameterValidationError",
    "PlanNotFoundError",
    "RecordNotFoundError",
    "ServiceDefinitionError",
    "ServiceNotFoundError",
    "format_error_list",
]
