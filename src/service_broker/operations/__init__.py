"""Operation lifecycle tracking for asynchronous backend work."""

from .models import CloudOperation, OperationState, OperationType, StatusMapping
from .tracker import OperationTracker, PollResult

__all__ = [
    "CloudOperation",
    "OperationState",
    "OperationTracker",
    "OperationType",
    "PollResult",
    "StatusMapping",
]
