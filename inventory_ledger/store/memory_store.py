"""
In-memory Durable Store.

Holds ledger entries and snapshots the way a single Cosmos DB container does
for the sync pipeline (or a ledger/snapshot container pair for the async one).
Each partition is serialized by its own lock, which stands in for the
per-partition write serialization the real store provides.
"""

import asyncio
import copy
from collections import defaultdict
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from inventory_ledger.exceptions import SnapshotAlreadyExistsError
from inventory_ledger.logging_config import get_child_logger
from inventory_ledger.models.event import EventType, InventoryEvent
from inventory_ledger.models.snapshot import InventorySnapshot
from inventory_ledger.store.base import DurableStore, FeedBatch
from inventory_ledger.store.operations import (
    PatchItem,
    PatchOperation,
    PatchOutcome,
    Predicate,
    TransactionStep,
)

logger = get_child_logger("store.memory")


class InMemoryDurableStore(DurableStore):
    def __init__(self):
        self._snapshots: Dict[str, Dict[str, Any]] = {}
        self._ledger: List[InventoryEvent] = []  # Global commit order
        self._tokens: Dict[str, int] = defaultdict(int)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def ledger(self) -> List[InventoryEvent]:
        return list(self._ledger)

    def ledger_for(self, partition_key: str) -> List[InventoryEvent]:
        return [e for e in self._ledger if e.pk == partition_key]

    async def get_snapshot(self, partition_key: str) -> Optional[InventorySnapshot]:
        document = self._snapshots.get(partition_key)
        if document is None:
            return None
        return InventorySnapshot.model_validate(copy.deepcopy(document))

    async def create_snapshot(self, snapshot: InventorySnapshot) -> None:
        async with self._locks[snapshot.id]:
            self._create_snapshot_locked(snapshot)

    async def conditional_patch(
        self,
        partition_key: str,
        operations: Sequence[PatchOperation],
        predicate: Predicate,
    ) -> PatchOutcome:
        async with self._locks[partition_key]:
            # Yield inside the critical section so concurrent writers interleave
            await asyncio.sleep(0)
            outcome, patched = self._evaluate_patch(partition_key, operations, predicate)
            if outcome is PatchOutcome.APPLIED:
                self._snapshots[partition_key] = patched
            return outcome

    async def transactional_write(
        self, partition_key: str, steps: Sequence[TransactionStep]
    ) -> PatchOutcome:
        async with self._locks[partition_key]:
            await asyncio.sleep(0)
            snapshots = dict(self._snapshots)
            appended: List[InventoryEvent] = []
            token = self._tokens[partition_key]

            for step in steps:
                if isinstance(step, PatchItem):
                    outcome, patched = self._evaluate_patch(
                        step.item_id, step.operations, step.predicate, snapshots
                    )
                    if outcome is not PatchOutcome.APPLIED:
                        logger.debug(
                            "Transaction rolled back",
                            extra={"partition_key": partition_key, "outcome": outcome.value},
                        )
                        return outcome
                    snapshots[step.item_id] = patched
                elif isinstance(step.item, InventorySnapshot):
                    if step.item.id in snapshots:
                        logger.debug(
                            "Transaction rolled back",
                            extra={"partition_key": partition_key, "outcome": "conflict"},
                        )
                        return PatchOutcome.CONFLICT
                    snapshots[step.item.id] = step.item.to_document()
                else:
                    token += 1
                    appended.append(step.item.with_sequence_token(token))

            # Commit only after every step succeeded
            self._snapshots = snapshots
            self._ledger.extend(appended)
            self._tokens[partition_key] = token
            return PatchOutcome.APPLIED

    async def append_ledger_entry(self, event: InventoryEvent) -> InventoryEvent:
        async with self._locks[event.pk]:
            self._tokens[event.pk] += 1
            stored = event.with_sequence_token(self._tokens[event.pk])
            self._ledger.append(stored)
            return stored

    async def sum_in_flight_reservations(self, snapshot: InventorySnapshot) -> int:
        return sum(
            e.quantity
            for e in self._ledger
            if e.pk == snapshot.id
            and e.event_type is EventType.ITEM_RESERVED
            and (e.sequence_token or 0) > snapshot.last_applied_sequence_token
        )

    async def subscribe(
        self, checkpoint: Optional[str] = None, max_item_count: int = 20
    ) -> AsyncIterator[FeedBatch]:
        position = int(checkpoint) if checkpoint else 0
        while position < len(self._ledger):
            events = self._ledger[position:position + max_item_count]
            position += len(events)
            yield FeedBatch(events=events, checkpoint=str(position))

    def _create_snapshot_locked(self, snapshot: InventorySnapshot) -> None:
        if snapshot.id in self._snapshots:
            raise SnapshotAlreadyExistsError(
                f"Snapshot for partition '{snapshot.id}' already exists"
            )
        self._snapshots[snapshot.id] = snapshot.to_document()

    def _evaluate_patch(
        self,
        item_id: str,
        operations: Sequence[PatchOperation],
        predicate: Predicate,
        snapshots: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        snapshots = self._snapshots if snapshots is None else snapshots
        current = snapshots.get(item_id)
        if current is None:
            return PatchOutcome.NOT_FOUND, None
        if not predicate.holds(current):
            return PatchOutcome.PRECONDITION_FAILED, None

        patched = copy.deepcopy(current)
        for operation in operations:
            operation.apply(patched)
        return PatchOutcome.APPLIED, patched
