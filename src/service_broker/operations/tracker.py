"""Tracks asynchronous backend operations attached to service instances.

A pending operation is recorded on the instance itself: ``operation_type``
and ``operation_id`` mark the instance as locked, and the latest backend
snapshot (a CloudOperation) is stored verbatim in ``other_details``.

Lifecycle:
    start     NONE -> PENDING. Records the operation type, id and an initial
              snapshot.
    poll      Fetches the backend status. An unchanged status writes nothing;
              a changed one persists the new snapshot with the backend error
              copied through untouched.
    finalize  On terminal success, runs the finishing step registered for the
              operation type (once, synchronously) and then clears the lock.
              A failing finishing step propagates its exception and leaves the
              instance locked with a terminal snapshot, for an operator to
              inspect.
    fail      On terminal failure, clears the lock and keeps the snapshot so
              the error remains available for diagnosis.

The lock is a convention: callers check ``is_locked`` before starting another
mutating call. Racing callers are caught by the store's optimistic version
check rather than by the tracker.

Polling to completion runs as a cancellable task bounded by a timeout:

    tracker = OperationTracker(store, fetch_status=provider_status)
    result = await tracker.wait_until_done(instance_id)

    task = tracker.watch(instance_id, stop=stop_event)
    stop_event.set()  # abandon the poll at the next interval
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from ..models import OPERATION_DETAILS_KEY, ServiceInstanceDetails
from ..storage import RecordStore
from .models import CloudOperation, OperationState, OperationType, StatusMapping

logger = logging.getLogger(__name__)

PENDING_STATUS = "PENDING"

FetchStatus = Callable[[ServiceInstanceDetails], Awaitable[CloudOperation]]
FinishStep = Callable[
    [ServiceInstanceDetails, CloudOperation], Awaitable[ServiceInstanceDetails | None]
]


@dataclass(frozen=True)
class PollResult:
    """Outcome of one poll.

    Attributes:
        state: Normalised state after the poll
        operation: Snapshot observed (or stored, if nothing was pending)
        instance: Instance after the poll; None if a finishing step removed it
        changed: Whether the snapshot differed from the stored one
    """

    state: OperationState
    operation: CloudOperation | None
    instance: ServiceInstanceDetails | None
    changed: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state is not OperationState.PENDING


class OperationTracker:
    """Records, polls and finalizes pending operations.

    Args:
        store: Persistence for instance records
        fetch_status: Coroutine returning the backend's current snapshot for
            an instance; its exceptions are propagated unchanged
        finishers: Finishing steps keyed by operation type. A step receives
            the instance and the terminal snapshot and returns the (possibly
            saved) instance, or None if it removed the record.
        poll_interval: Seconds between polls in ``wait_until_done``
        timeout: Seconds before ``wait_until_done`` gives up (None: no limit)
        status_mapping: Normalisation of backend status strings
    """

    def __init__(
        self,
        store: RecordStore,
        fetch_status: FetchStatus,
        finishers: Mapping[OperationType | str, FinishStep] | None = None,
        poll_interval: float = 1.0,
        timeout: float | None = None,
        status_mapping: StatusMapping | None = None,
    ) -> None:
        self._store = store
        self._fetch_status = fetch_status
        self._finishers: dict[str, FinishStep] = {
            OperationType(key).value: step for key, step in (finishers or {}).items()
        }
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.status_mapping = status_mapping or StatusMapping()

    @staticmethod
    def is_locked(instance: ServiceInstanceDetails) -> bool:
        """True while an operation is pending on the instance."""
        return instance.operation_type != OperationType.NONE.value

    @staticmethod
    def current_operation(instance: ServiceInstanceDetails) -> CloudOperation | None:
        """Stored snapshot of the instance's last operation, if any."""
        return CloudOperation.from_payload(instance.other_details.get(OPERATION_DETAILS_KEY))

    def state_of(self, instance: ServiceInstanceDetails) -> OperationState:
        """Normalised state as recorded on the instance, without polling."""
        operation = self.current_operation(instance)
        if not self.is_locked(instance):
            if self.status_mapping.classify(operation) is OperationState.FAILED:
                return OperationState.FAILED
            return OperationState.NONE
        if operation is None:
            return OperationState.PENDING
        return self.status_mapping.classify(operation)

    async def start(
        self,
        instance: ServiceInstanceDetails,
        operation_type: OperationType | str,
        operation_id: str,
        snapshot: CloudOperation | None = None,
    ) -> ServiceInstanceDetails:
        """Mark the instance as having a pending operation.

        Args:
            instance: Instance the operation acts on (current stored version)
            operation_type: provision, deprovision or update
            operation_id: Opaque backend id of the operation
            snapshot: Initial backend snapshot; a PENDING one is synthesized
                if omitted

        Returns:
            The saved instance

        Raises:
            ValueError: If operation_type is empty
            ConcurrentModificationError: If the instance changed since it was read
        """
        op_type = OperationType(operation_type)
        if op_type is OperationType.NONE:
            raise ValueError("operation_type must not be empty when starting an operation")

        if snapshot is None:
            now = datetime.now(UTC).isoformat()
            snapshot = CloudOperation(
                name=operation_id,
                insert_time=now,
                start_time=now,
                operation_type=op_type.value,
                status=PENDING_STATUS,
                target_id=instance.id,
            )

        other_details = dict(instance.other_details)
        other_details[OPERATION_DETAILS_KEY] = snapshot.to_payload()
        saved = await self._store.save_instance(
            instance.model_copy(
                update={
                    "operation_type": op_type.value,
                    "operation_id": operation_id,
                    "other_details": other_details,
                }
            )
        )
        logger.info(
            f"Started {op_type.value} operation '{operation_id}' on instance '{instance.id}'"
        )
        return saved

    async def poll(self, instance_id: str) -> PollResult:
        """Poll the backend once and advance the instance's state.

        Raises:
            RecordNotFoundError: If the instance does not exist
            Exception: Anything raised by ``fetch_status`` or a finishing
                step, unchanged
        """
        instance = await self._store.get_instance(instance_id)
        if not self.is_locked(instance):
            return PollResult(self.state_of(instance), self.current_operation(instance), instance)

        observed = await self._fetch_status(instance)
        previous = self.current_operation(instance)
        changed = (
            previous is None
            or observed.status != previous.status
            or observed.error != previous.error
        )
        if changed:
            other_details = dict(instance.other_details)
            other_details[OPERATION_DETAILS_KEY] = observed.to_payload()
            instance = await self._store.save_instance(
                instance.model_copy(update={"other_details": other_details})
            )
            logger.info(
                f"Operation '{instance.operation_id}' on instance '{instance_id}' "
                f"is now {observed.status!r}"
            )
        else:
            logger.debug(f"Operation '{instance.operation_id}' unchanged: {observed.status!r}")

        state = self.status_mapping.classify(observed)
        if state is OperationState.PENDING:
            return PollResult(state, observed, instance, changed)

        if state is OperationState.FAILED:
            logger.warning(
                f"Operation '{instance.operation_id}' on instance '{instance_id}' failed: "
                f"{observed.error!r}"
            )
            instance = await self._clear(instance)
            return PollResult(state, observed, instance, changed)

        return await self._finalize(instance, observed, changed)

    async def _finalize(
        self, instance: ServiceInstanceDetails, observed: CloudOperation, changed: bool
    ) -> PollResult:
        finisher = self._finishers.get(instance.operation_type)
        finished: ServiceInstanceDetails | None = instance
        if finisher is not None:
            try:
                finished = await finisher(instance, observed)
            except Exception as e:
                logger.error(
                    f"Finishing step for {instance.operation_type} operation "
                    f"'{instance.operation_id}' on instance '{instance.id}' failed: {e}"
                )
                raise

        if finished is None:
            logger.info(f"Instance '{instance.id}' removed by finishing step")
            return PollResult(OperationState.DONE, observed, None, changed)

        cleared = await self._clear(finished)
        logger.info(f"Operation '{instance.operation_id}' on instance '{instance.id}' finished")
        return PollResult(OperationState.DONE, observed, cleared, changed)

    async def _clear(self, instance: ServiceInstanceDetails) -> ServiceInstanceDetails:
        return await self._store.save_instance(
            instance.model_copy(
                update={"operation_type": OperationType.NONE.value, "operation_id": ""}
            )
        )

    async def wait_until_done(
        self,
        instance_id: str,
        stop: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> PollResult:
        """Poll at a fixed interval until the operation leaves PENDING.

        Args:
            instance_id: Instance to poll
            stop: Event that abandons the loop at the next interval; the last
                (still pending) result is returned
            timeout: Overrides the tracker's timeout for this call

        Returns:
            The terminal PollResult, or the last pending one if stopped

        Raises:
            TimeoutError: If the timeout elapses first
            asyncio.CancelledError: If the awaiting task is cancelled
        """
        limit = timeout if timeout is not None else self.timeout
        try:
            return await asyncio.wait_for(self._poll_loop(instance_id, stop), timeout=limit)
        except TimeoutError:
            logger.warning(f"Gave up polling instance '{instance_id}' after {limit}s")
            raise

    async def _poll_loop(self, instance_id: str, stop: asyncio.Event | None) -> PollResult:
        while True:
            result = await self.poll(instance_id)
            if result.is_terminal:
                return result
            if stop is None:
                await asyncio.sleep(self.poll_interval)
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except TimeoutError:
                continue
            logger.info(f"Polling of instance '{instance_id}' stopped")
            return result

    def watch(
        self,
        instance_id: str,
        stop: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> asyncio.Task[PollResult]:
        """Run ``wait_until_done`` as a background task the caller can cancel."""
        return asyncio.create_task(
            self.wait_until_done(instance_id, stop=stop, timeout=timeout),
            name=f"poll-{instance_id}",
        )


__all__ = ["PENDING_STATUS", "FetchStatus", "FinishStep", "OperationTracker", "PollResult"]
