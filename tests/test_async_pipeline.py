import asyncio

import pytest

from inventory_ledger.engine.projector import Projector
from inventory_ledger.exceptions import (
    InsufficientInventoryError,
    SnapshotNotFoundError,
    StoreTimeoutError,
)
from inventory_ledger.pipelines.async_pipeline import AsyncPipeline
from inventory_ledger.store.memory_store import InMemoryDurableStore


def test_submit_only_appends_to_ledger(store, make_payload):
    pipeline = AsyncPipeline(store, low_availability_threshold=0)

    async def scenario():
        stored = await pipeline.submit(make_payload("InventoryUpdated", 100))
        return stored, await store.get_snapshot("item-1")

    stored, snapshot = asyncio.run(scenario())

    assert stored.sequence_token == 1
    assert store.ledger == [stored]
    assert snapshot is None


def test_snapshot_catches_up_after_projection(store, make_payload):
    pipeline = AsyncPipeline(store, low_availability_threshold=0)

    async def scenario():
        await pipeline.submit(make_payload("InventoryUpdated", 100))
        with pytest.raises(SnapshotNotFoundError):
            await pipeline.get_snapshot("item-1")
        await Projector(store).run()
        return await pipeline.get_snapshot("item-1")

    snapshot = asyncio.run(scenario())

    assert snapshot.on_hand == 100
    assert snapshot.last_applied_sequence_token == 1


def test_oversized_reservation_is_not_admitted(store, make_payload):
    pipeline = AsyncPipeline(store, low_availability_threshold=0)

    async def scenario():
        await pipeline.submit(make_payload("InventoryUpdated", 10))
        await Projector(store).run()
        with pytest.raises(InsufficientInventoryError):
            await pipeline.submit(make_payload("ItemReserved", 11))

    asyncio.run(scenario())

    assert len(store.ledger) == 1


def test_reservation_before_first_projection_is_not_admitted(store, make_payload):
    pipeline = AsyncPipeline(store, low_availability_threshold=0)

    async def scenario():
        await pipeline.submit(make_payload("InventoryUpdated", 10))
        await pipeline.submit(make_payload("ItemReserved", 1))

    with pytest.raises(InsufficientInventoryError):
        asyncio.run(scenario())


def test_admitted_oversell_is_caught_by_projector(store, make_payload):
    # Admission is advisory; both reservations pass and the projector settles it
    pipeline = AsyncPipeline(store, low_availability_threshold=0)

    async def scenario():
        await pipeline.submit(make_payload("InventoryUpdated", 100))
        await Projector(store).run()
        await asyncio.gather(
            pipeline.submit(make_payload("ItemReserved", 60)),
            pipeline.submit(make_payload("ItemReserved", 60)),
        )
        await Projector(store).run(checkpoint="1")
        return await pipeline.get_snapshot("item-1")

    snapshot = asyncio.run(scenario())

    assert len(store.ledger) == 3
    assert snapshot.available_to_sell == 40
    assert snapshot.active_customer_reservations == 60


class SlowLedgerStore(InMemoryDurableStore):
    async def append_ledger_entry(self, event):
        await asyncio.sleep(1)
        return await super().append_ledger_entry(event)


def test_ledger_append_deadline_surfaces_unknown_outcome(make_payload):
    pipeline = AsyncPipeline(SlowLedgerStore(), low_availability_threshold=0, timeout=0.01)

    with pytest.raises(StoreTimeoutError, match="appending to ledger"):
        asyncio.run(pipeline.submit(make_payload("InventoryUpdated", 1)))
