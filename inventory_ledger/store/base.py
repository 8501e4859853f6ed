from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional, Sequence

from pydantic import BaseModel

from inventory_ledger.models.event import InventoryEvent
from inventory_ledger.models.snapshot import InventorySnapshot
from inventory_ledger.store.operations import (
    PatchOperation,
    PatchOutcome,
    Predicate,
    TransactionStep,
)


class FeedBatch(BaseModel):
    """
    A page of ledger entries from the change feed, in commit order per
    partition, plus the checkpoint to persist once the page is handled.
    """

    events: List[InventoryEvent]
    checkpoint: Optional[str] = None


class DurableStore(ABC):
    """
    Partition-scoped store holding the ledger and the snapshots.

    Every mutation of a snapshot goes through a single conditional request so
    that the store, not this process, serializes writes per partition.
    Infrastructure failures raise DatabaseError; expected outcomes (missing
    snapshot, failed predicate) are returned as PatchOutcome values.
    """

    @abstractmethod
    async def get_snapshot(self, partition_key: str) -> Optional[InventorySnapshot]:
        """Point read of a partition's snapshot, or None if it does not exist yet."""

    @abstractmethod
    async def create_snapshot(self, snapshot: InventorySnapshot) -> None:
        """Create a snapshot. Raises SnapshotAlreadyExistsError on conflict."""

    @abstractmethod
    async def conditional_patch(
        self,
        partition_key: str,
        operations: Sequence[PatchOperation],
        predicate: Predicate,
    ) -> PatchOutcome:
        """Patch the partition's snapshot only if the predicate holds at apply time."""

    @abstractmethod
    async def transactional_write(
        self, partition_key: str, steps: Sequence[TransactionStep]
    ) -> PatchOutcome:
        """Execute all steps atomically within one partition, or none of them."""

    @abstractmethod
    async def append_ledger_entry(self, event: InventoryEvent) -> InventoryEvent:
        """Append an event to the ledger and return it with the commit position the store reports."""

    @abstractmethod
    async def sum_in_flight_reservations(self, snapshot: InventorySnapshot) -> int:
        """
        Sum of ItemReserved quantities in the snapshot's partition that the
        snapshot does not reflect yet. May over-count, never under-count.
        """

    @abstractmethod
    def subscribe(
        self, checkpoint: Optional[str] = None, max_item_count: int = 20
    ) -> AsyncIterator[FeedBatch]:
        """Ordered, at-least-once change feed of ledger appends."""

    async def close(self) -> None:
        return None
