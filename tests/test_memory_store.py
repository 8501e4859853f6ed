import asyncio

import pytest

from inventory_ledger.exceptions import SnapshotAlreadyExistsError
from inventory_ledger.models.event import parse_event
from inventory_ledger.store.operations import (
    Condition,
    CreateItem,
    PatchItem,
    PatchOperation,
    PatchOutcome,
    Predicate,
)


def test_conditional_patch_outcomes(store, make_snapshot):
    async def scenario():
        ops = [PatchOperation(op="incr", path="/availableToSell", value=-5)]
        guard = Predicate(conditions=(Condition(field="availableToSell", comparator=">=", value=5),))

        assert await store.conditional_patch("item-1", ops, guard) is PatchOutcome.NOT_FOUND

        await store.create_snapshot(make_snapshot(available=7))
        assert await store.conditional_patch("item-1", ops, guard) is PatchOutcome.APPLIED
        assert await store.conditional_patch("item-1", ops, guard) is PatchOutcome.PRECONDITION_FAILED

        snapshot = await store.get_snapshot("item-1")
        assert snapshot.available_to_sell == 2

    asyncio.run(scenario())


def test_create_snapshot_conflict(store, make_snapshot):
    async def scenario():
        await store.create_snapshot(make_snapshot())
        with pytest.raises(SnapshotAlreadyExistsError):
            await store.create_snapshot(make_snapshot())

    asyncio.run(scenario())


def test_failed_transaction_leaves_no_trace(store, make_snapshot, make_payload):
    async def scenario():
        await store.create_snapshot(make_snapshot(available=1))
        event = parse_event(make_payload("ItemReserved", 2))
        steps = [
            PatchItem(
                item_id="item-1",
                operations=[PatchOperation(op="incr", path="/availableToSell", value=-2)],
                predicate=Predicate(conditions=(Condition(field="availableToSell", comparator=">=", value=2),)),
            ),
            CreateItem(item=event),
        ]

        assert await store.transactional_write("item-1", steps) is PatchOutcome.PRECONDITION_FAILED
        assert store.ledger == []
        assert (await store.get_snapshot("item-1")).available_to_sell == 1

    asyncio.run(scenario())


def test_ledger_tokens_increase_per_partition(store, make_payload):
    async def scenario():
        a1 = await store.append_ledger_entry(parse_event(make_payload("InventoryUpdated", 1, pk="a")))
        b1 = await store.append_ledger_entry(parse_event(make_payload("InventoryUpdated", 1, pk="b")))
        a2 = await store.append_ledger_entry(parse_event(make_payload("ItemReserved", 1, pk="a")))
        return a1, b1, a2

    a1, b1, a2 = asyncio.run(scenario())

    assert (a1.sequence_token, a2.sequence_token) == (1, 2)
    assert b1.sequence_token == 1


def test_in_flight_sum_counts_only_later_reservations(store, make_payload, make_snapshot):
    async def scenario():
        for payload in [
            make_payload("ItemReserved", 4),
            make_payload("InventoryUpdated", 50),
            make_payload("ItemReserved", 2),
            make_payload("ItemReserved", 3),
            make_payload("ItemReserved", 100, pk="other"),
        ]:
            await store.append_ledger_entry(parse_event(payload))
        return (
            await store.sum_in_flight_reservations(make_snapshot(token=0)),
            await store.sum_in_flight_reservations(make_snapshot(token=2)),
            await store.sum_in_flight_reservations(make_snapshot(token=4)),
        )

    assert asyncio.run(scenario()) == (9, 5, 0)


def test_subscribe_pages_from_checkpoint(store, make_payload):
    async def scenario():
        for quantity in range(1, 6):
            await store.append_ledger_entry(parse_event(make_payload("InventoryUpdated", quantity)))
        return [batch async for batch in store.subscribe("1", max_item_count=2)]

    batches = asyncio.run(scenario())

    assert [[e.quantity for e in b.events] for b in batches] == [[2, 3], [4, 5]]
    assert batches[-1].checkpoint == "5"
