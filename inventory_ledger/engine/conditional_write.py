from enum import Enum
from typing import List, Optional

from inventory_ledger.engine.bootstrap import SnapshotBootstrapper
from inventory_ledger.engine.mutations import build_patch_operations, build_predicate
from inventory_ledger.logging_config import get_child_logger, tracer
from inventory_ledger.models.event import EventType, InventoryEvent
from inventory_ledger.store.base import DurableStore
from inventory_ledger.store.operations import (
    CreateItem,
    PatchItem,
    PatchOutcome,
    TransactionStep,
)

logger = get_child_logger("engine.conditional_write")


class ApplyResult(str, Enum):
    """
    What happened when the projector folded one ledger event into a snapshot.
    APPLIED: Snapshot patched
    BOOTSTRAPPED: Snapshot created from this event
    DUPLICATE: Event was already applied (watermark at or past its token)
    RULE_VIOLATION: Business guard failed at apply time; needs reconciliation
    ORPHANED: No snapshot exists and the event cannot create one
    """

    APPLIED = "applied"
    BOOTSTRAPPED = "bootstrapped"
    DUPLICATE = "duplicate"
    RULE_VIOLATION = "rule_violation"
    ORPHANED = "orphaned"


class ConditionalWriteEngine:
    """
    Translates admitted events into conditional store mutations.

    Idempotency and the business rules are both encoded in the write
    predicate, so the store decides atomically whether an event applies.
    """

    def __init__(self, store: DurableStore, bootstrapper: Optional[SnapshotBootstrapper] = None):
        self._store = store
        self._bootstrapper = bootstrapper or SnapshotBootstrapper(store)

    @property
    def bootstrapper(self) -> SnapshotBootstrapper:
        return self._bootstrapper

    async def apply(self, event: InventoryEvent) -> ApplyResult:
        """
        Fold a committed ledger event into its partition's snapshot.

        Precondition failures are classified and logged, never raised;
        DatabaseError propagates so the caller does not advance past the event.
        """
        operations = build_patch_operations(event, with_watermark=True)
        predicate = build_predicate(event, with_watermark=True)

        with tracer.start_as_current_span("apply_event") as span:
            span.set_attribute("partition_key", event.pk)
            span.set_attribute("event.id", event.id)
            span.set_attribute("event.type", event.event_type.value)
            span.set_attribute("event.sequence_token", event.sequence_token)

            outcome = await self._store.conditional_patch(event.pk, operations, predicate)
            result = ApplyResult.APPLIED

            if outcome is PatchOutcome.NOT_FOUND:
                if event.event_type is not EventType.INVENTORY_UPDATED:
                    logger.error(
                        f"No inventory snapshot for item {event.pk}; {event.event_type.value} cannot be applied",
                        extra={"partition_key": event.pk, "event": event.to_document()},
                    )
                    span.set_attribute("apply.result", ApplyResult.ORPHANED.value)
                    return ApplyResult.ORPHANED
                outcome = await self._bootstrapper.bootstrap(event, operations, predicate)

            if outcome is PatchOutcome.CREATED:
                result = ApplyResult.BOOTSTRAPPED
            elif outcome is PatchOutcome.PRECONDITION_FAILED:
                result = await self._classify_precondition_failure(event)
            elif outcome is PatchOutcome.NOT_FOUND:
                # Bootstrap conflicted and the snapshot disappeared again
                result = ApplyResult.ORPHANED

            span.set_attribute("apply.result", result.value)
            return result

    def build_transaction(self, event: InventoryEvent) -> List[TransactionStep]:
        """
        Sync pipeline steps: business-guarded patch plus the ledger append,
        committed together so no watermark clause is needed.
        """
        return [
            PatchItem(
                item_id=event.pk,
                operations=build_patch_operations(event, with_watermark=False),
                predicate=build_predicate(event, with_watermark=False),
            ),
            CreateItem(item=event),
        ]

    async def _classify_precondition_failure(self, event: InventoryEvent) -> ApplyResult:
        snapshot = await self._store.get_snapshot(event.pk)
        if snapshot is not None and snapshot.last_applied_sequence_token >= (event.sequence_token or 0):
            logger.warning(
                f"Inventory snapshot not updated for item {event.pk} because of duplicated processing",
                extra={"partition_key": event.pk, "event_id": event.id, "sequence_token": event.sequence_token},
            )
            return ApplyResult.DUPLICATE

        logger.error(
            f"Inventory snapshot not updated for item {event.pk}: {event.event_type.value} violates inventory rules",
            extra={"partition_key": event.pk, "event": event.to_document()},
        )
        return ApplyResult.RULE_VIOLATION
