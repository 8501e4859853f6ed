from datetime import datetime, timezone

import pytest

from inventory_ledger.engine.mutations import (
    MUTATIONS,
    build_patch_operations,
    build_predicate,
    rejection_message,
)
from inventory_ledger.models.event import EventType, parse_event

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _committed(payload, token=5):
    return parse_event(payload).with_sequence_token(token)


def _increments(operations):
    return {op.field: op.value for op in operations if op.op == "incr"}


def test_every_event_type_has_a_rule():
    assert set(MUTATIONS) == set(EventType)


@pytest.mark.parametrize(
    "event_type, expected",
    [
        ("InventoryUpdated", {"onHand": 8, "availableToSell": 8}),
        ("ItemReserved", {"activeCustomerReservations": 8, "availableToSell": -8}),
        ("OrderShipped", {"onHand": -8, "activeCustomerReservations": -8}),
        ("OrderCancelled", {"activeCustomerReservations": -8, "availableToSell": 8}),
        ("OrderReturned", {"onHand": 8, "returned": 8}),
    ],
)
def test_deltas_per_event_type(make_payload, event_type, expected):
    operations = build_patch_operations(_committed(make_payload(event_type, 8)), with_watermark=True, now=NOW)
    assert _increments(operations) == expected


def test_async_operations_advance_watermark(make_payload):
    operations = build_patch_operations(_committed(make_payload("ItemReserved", 2), token=11), with_watermark=True, now=NOW)
    sets = {op.field: op.value for op in operations if op.op == "set"}
    assert sets == {"lastAppliedSequenceToken": 11, "lastUpdated": NOW.isoformat()}


def test_sync_operations_leave_watermark_alone(make_payload):
    operations = build_patch_operations(parse_event(make_payload("ItemReserved", 2)), with_watermark=False, now=NOW)
    assert "lastAppliedSequenceToken" not in {op.field for op in operations}


def test_reservation_predicate(make_payload):
    event = _committed(make_payload("ItemReserved", 9), token=5)

    assert build_predicate(event, with_watermark=True).to_sql() == (
        "FROM c WHERE c.availableToSell >= 9 AND c.lastAppliedSequenceToken < 5"
    )
    assert build_predicate(event, with_watermark=False).to_sql() == (
        "FROM c WHERE c.availableToSell >= 9"
    )


@pytest.mark.parametrize("event_type", ["OrderShipped", "OrderCancelled"])
def test_release_predicates_guard_reservations(make_payload, event_type):
    predicate = build_predicate(_committed(make_payload(event_type, 4), token=3), with_watermark=True)

    assert predicate.holds({"activeCustomerReservations": 4, "lastAppliedSequenceToken": 2})
    assert not predicate.holds({"activeCustomerReservations": 3, "lastAppliedSequenceToken": 2})
    assert not predicate.holds({"activeCustomerReservations": 4, "lastAppliedSequenceToken": 3})


def test_unguarded_types_only_check_watermark(make_payload):
    event = _committed(make_payload("OrderReturned", 4), token=3)

    assert build_predicate(event, with_watermark=True).to_sql() == (
        "FROM c WHERE c.lastAppliedSequenceToken < 3"
    )
    assert not build_predicate(event, with_watermark=False)
    assert build_predicate(event, with_watermark=False).to_sql() is None


def test_watermark_requires_committed_event(make_payload):
    with pytest.raises(ValueError):
        build_predicate(parse_event(make_payload("InventoryUpdated", 1)), with_watermark=True)


def test_rejection_messages(make_payload):
    assert rejection_message(parse_event(make_payload("ItemReserved", 9, pk="sku-1"))) == (
        "Cannot reserve 9 of item sku-1!"
    )
    assert "not enough reservations" in rejection_message(
        parse_event(make_payload("OrderCancelled", 1))
    )


def test_projected_event_records_its_ledger_position(make_payload):
    event = _committed(make_payload("ItemReserved", 2), token=11).model_copy(
        update={"commit_timestamp": 1700000000}
    )

    operations = build_patch_operations(event, with_watermark=True, now=NOW)

    sets = {op.field: op.value for op in operations if op.op == "set"}
    assert sets["lastEventTs"] == 1700000000
    assert sets["lastEventId"] == event.id
    assert "lastEventTs" not in {
        op.field for op in build_patch_operations(event, with_watermark=False, now=NOW)
    }
