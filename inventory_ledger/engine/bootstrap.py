from typing import List, Sequence

from inventory_ledger.exceptions import SnapshotAlreadyExistsError
from inventory_ledger.logging_config import get_child_logger, tracer
from inventory_ledger.models.event import InventoryEvent
from inventory_ledger.models.snapshot import InventorySnapshot
from inventory_ledger.store.base import DurableStore
from inventory_ledger.store.operations import (
    CreateItem,
    PatchOperation,
    PatchOutcome,
    Predicate,
    TransactionStep,
)

logger = get_child_logger("engine.bootstrap")


class SnapshotBootstrapper:
    """
    Lazily creates the snapshot of a partition on its first InventoryUpdated event.
    """

    def __init__(self, store: DurableStore):
        self._store = store

    async def bootstrap(
        self,
        event: InventoryEvent,
        operations: Sequence[PatchOperation],
        predicate: Predicate,
    ) -> PatchOutcome:
        """
        Create the snapshot from `event`. If another writer created it first,
        retry once as the regular conditional patch against the existing one.

        Returns:
            CREATED when the snapshot was created, otherwise the outcome of
            the fallback patch
        """
        with tracer.start_as_current_span("bootstrap_snapshot") as span:
            span.set_attribute("partition_key", event.pk)
            logger.info(
                "Inventory snapshot not found. Creating new snapshot.",
                extra={"partition_key": event.pk, "event_id": event.id},
            )
            snapshot = InventorySnapshot.bootstrap(
                event.pk,
                event.quantity,
                sequence_token=event.sequence_token,
                last_event_ts=event.commit_timestamp,
                last_event_id=event.id if event.commit_timestamp is not None else None,
            )
            try:
                await self._store.create_snapshot(snapshot)
                return PatchOutcome.CREATED
            except SnapshotAlreadyExistsError:
                span.set_attribute("bootstrap.conflict", True)
                logger.info(
                    "Snapshot created concurrently, retrying as patch",
                    extra={"partition_key": event.pk, "event_id": event.id},
                )
                return await self._store.conditional_patch(event.pk, operations, predicate)

    def bootstrap_transaction(self, event: InventoryEvent) -> List[TransactionStep]:
        """
        Transaction steps creating the ledger entry and the first snapshot together.
        """
        return [
            CreateItem(item=event),
            CreateItem(item=InventorySnapshot.bootstrap(event.pk, event.quantity)),
        ]
