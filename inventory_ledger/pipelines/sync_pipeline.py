from typing import Any, Optional

from inventory_ledger.engine.conditional_write import ConditionalWriteEngine
from inventory_ledger.engine.mutations import rejection_message
from inventory_ledger.exceptions import (
    DatabaseError,
    PreconditionFailedError,
    SnapshotNotFoundError,
)
from inventory_ledger.logging_config import get_child_logger, mark_span_error, tracer
from inventory_ledger.models.event import EventType, InventoryEvent, parse_event
from inventory_ledger.models.snapshot import InventorySnapshot
from inventory_ledger.pipelines.deadline import call_with_deadline
from inventory_ledger.store.base import DurableStore
from inventory_ledger.store.operations import PatchOutcome

logger = get_child_logger("pipelines.sync")


class SyncPipeline:
    """
    Commits the ledger entry and the snapshot mutation in one partition-scoped
    transaction. Failures are surfaced to the caller, who owns any retry.
    """

    def __init__(
        self,
        store: DurableStore,
        timeout: Optional[float] = None,
        engine: Optional[ConditionalWriteEngine] = None,
    ):
        self._store = store
        self._timeout = timeout
        self._engine = engine or ConditionalWriteEngine(store)

    async def submit(self, payload: Any) -> InventoryEvent:
        """
        Validate and commit one event.

        Returns:
            The committed event

        Raises:
            InvalidPayloadError: If the payload is not a valid event
            PreconditionFailedError: If the business guard rejected the mutation
            SnapshotNotFoundError: If a non-update event targets a new partition
            DatabaseError: For any other store failure (StoreTimeoutError on deadline)
        """
        event = parse_event(payload)

        with tracer.start_as_current_span("sync_submit_event") as span:
            span.set_attribute("partition_key", event.pk)
            span.set_attribute("event.id", event.id)
            span.set_attribute("event.type", event.event_type.value)

            logger.info(
                f"Processing {event.event_type.value} event",
                extra={"partition_key": event.pk, "event_id": event.id, "quantity": event.quantity},
            )

            try:
                outcome = await self._commit(event)
            except DatabaseError as e:
                mark_span_error(span, e)
                raise

            span.set_attribute("commit.outcome", outcome.value)

            if outcome is PatchOutcome.APPLIED:
                return event
            if outcome is PatchOutcome.PRECONDITION_FAILED:
                raise PreconditionFailedError(rejection_message(event))
            if outcome is PatchOutcome.NOT_FOUND:
                raise SnapshotNotFoundError(f"Inventory snapshot for item '{event.pk}' not found")
            raise DatabaseError(f"Transaction for item '{event.pk}' failed with outcome '{outcome.value}'")

    async def get_snapshot(self, partition_key: str) -> InventorySnapshot:
        snapshot = await call_with_deadline(
            self._store.get_snapshot(partition_key), self._timeout, "reading snapshot"
        )
        if snapshot is None:
            raise SnapshotNotFoundError(f"Inventory snapshot for item '{partition_key}' not found")
        return snapshot

    async def _commit(self, event: InventoryEvent) -> PatchOutcome:
        transaction = self._engine.build_transaction(event)
        outcome = await call_with_deadline(
            self._store.transactional_write(event.pk, transaction),
            self._timeout,
            "committing event",
        )
        if outcome is not PatchOutcome.NOT_FOUND or event.event_type is not EventType.INVENTORY_UPDATED:
            return outcome

        logger.info(
            f"Inventory snapshot not found for item {event.pk}. Creating new snapshot.",
            extra={"partition_key": event.pk, "event_id": event.id},
        )
        outcome = await call_with_deadline(
            self._store.transactional_write(
                event.pk, self._engine.bootstrapper.bootstrap_transaction(event)
            ),
            self._timeout,
            "creating snapshot",
        )
        if outcome is PatchOutcome.CONFLICT:
            # Another request created the snapshot first; patch it instead
            outcome = await call_with_deadline(
                self._store.transactional_write(event.pk, transaction),
                self._timeout,
                "committing event",
            )
        return outcome
