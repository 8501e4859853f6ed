from typing import Any, Optional

from inventory_ledger.engine.admission import AdmissionController
from inventory_ledger.exceptions import SnapshotNotFoundError
from inventory_ledger.logging_config import get_child_logger, tracer
from inventory_ledger.models.event import InventoryEvent, parse_event
from inventory_ledger.models.snapshot import InventorySnapshot
from inventory_ledger.pipelines.deadline import call_with_deadline
from inventory_ledger.store.base import DurableStore

logger = get_child_logger("pipelines.async")


class AsyncPipeline:
    """
    Validates and admits events, then appends them to the ledger only.
    The projector folds them into the snapshot later from the change feed.
    """

    def __init__(
        self,
        store: DurableStore,
        low_availability_threshold: int,
        timeout: Optional[float] = None,
    ):
        self._store = store
        self._timeout = timeout
        self._admission = AdmissionController(store, low_availability_threshold)

    async def submit(self, payload: Any) -> InventoryEvent:
        """
        Returns:
            The ledger entry, carrying its store-assigned sequence token when
            the store reports one

        Raises:
            InvalidPayloadError: If the payload is not a valid event
            InsufficientInventoryError: If a reservation is not admitted
            DatabaseError: For store failures (StoreTimeoutError on deadline)
        """
        event = parse_event(payload)

        with tracer.start_as_current_span("async_submit_event") as span:
            span.set_attribute("partition_key", event.pk)
            span.set_attribute("event.id", event.id)
            span.set_attribute("event.type", event.event_type.value)

            await call_with_deadline(
                self._admission.admit(event), self._timeout, "checking availability"
            )
            stored = await call_with_deadline(
                self._store.append_ledger_entry(event), self._timeout, "appending to ledger"
            )
            logger.info(
                f"{event.event_type.value} event appended to ledger",
                extra={
                    "partition_key": event.pk,
                    "event_id": event.id,
                    "sequence_token": stored.sequence_token,
                },
            )
            return stored

    async def get_snapshot(self, partition_key: str) -> InventorySnapshot:
        snapshot = await call_with_deadline(
            self._store.get_snapshot(partition_key), self._timeout, "reading snapshot"
        )
        if snapshot is None:
            raise SnapshotNotFoundError(f"Inventory snapshot for item '{partition_key}' not found")
        return snapshot
