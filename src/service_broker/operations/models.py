"""Operation lifecycle types.

A CloudOperation is a snapshot of a unit of asynchronous backend work as the
backend last reported it. It is persisted verbatim inside the instance's
``other_details`` payload using the backend's camelCase field names:

    {"name": "op-123", "error": "", "insertTime": "...", "operationType": "CREATE",
     "startTime": "...", "status": "PENDING", "targetId": "..."}

The backend's ``status`` stays an opaque string on the snapshot. Internal
logic never compares it directly; StatusMapping normalises it into the closed
OperationState enum.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OperationType(str, Enum):
    """Kind of mutating call that started a pending operation."""

    NONE = ""
    PROVISION = "provision"
    DEPROVISION = "deprovision"
    UPDATE = "update"


class OperationState(str, Enum):
    """Normalised lifecycle state of a tracked operation.

    State Transitions:
        NONE -> PENDING (start)
        PENDING -> PENDING (poll, backend still working)
        PENDING -> DONE (poll, terminal success; finishing step runs, then NONE)
        PENDING -> FAILED (poll, terminal error; snapshot kept for diagnosis)
    """

    NONE = "none"
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class CloudOperation(BaseModel):
    """Snapshot of a backend operation."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = ""
    error: Any = ""
    insert_time: str = Field(default="", alias="insertTime")
    operation_type: str = Field(default="", alias="operationType")
    start_time: str = Field(default="", alias="startTime")
    status: str = ""
    target_id: str = Field(default="", alias="targetId")

    def to_payload(self) -> dict[str, Any]:
        """Serialize with the backend's field names for persistence."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> CloudOperation | None:
        if not payload:
            return None
        return cls.model_validate(payload)

    def has_error(self) -> bool:
        return bool(self.error)


@dataclass(frozen=True)
class StatusMapping:
    """Normalises opaque backend status strings into OperationState.

    Attributes:
        done_statuses: Statuses meaning the backend finished (successfully
            unless the snapshot carries an error)
        failed_statuses: Statuses meaning the backend gave up
    """

    done_statuses: frozenset[str] = frozenset({"DONE"})
    failed_statuses: frozenset[str] = frozenset({"FAILED", "ERROR", "ABORTED"})

    @classmethod
    def of(cls, done: Iterable[str], failed: Iterable[str] = ()) -> StatusMapping:
        return cls(frozenset(done), frozenset(failed))

    def classify(self, operation: CloudOperation | None) -> OperationState:
        """Map a snapshot to its normalised state."""
        if operation is None:
            return OperationState.NONE
        if operation.status in self.failed_statuses:
            return OperationState.FAILED
        if operation.status in self.done_statuses:
            return OperationState.FAILED if operation.has_error() else OperationState.DONE
        return OperationState.PENDING


__all__ = ["CloudOperation", "OperationState", "OperationType", "StatusMapping"]
