from datetime import datetime, timezone

import pytest

from inventory_ledger.models.snapshot import InventorySnapshot
from inventory_ledger.store.memory_store import InMemoryDurableStore

QUANTITY_FIELDS = {
    "InventoryUpdated": "onHandQuantity",
    "ItemReserved": "reservedQuantity",
    "OrderShipped": "shippedQuantity",
    "OrderCancelled": "cancelledQuantity",
    "OrderReturned": "returnedQuantity",
}


@pytest.fixture()
def store():
    return InMemoryDurableStore()


@pytest.fixture()
def make_payload():
    def _make(event_type, quantity, pk="item-1", **details):
        return {
            "pk": pk,
            "eventType": event_type,
            "eventDetails": {QUANTITY_FIELDS[event_type]: quantity, **details},
        }

    return _make


@pytest.fixture()
def make_snapshot():
    def _make(pk="item-1", on_hand=0, reservations=0, available=0, returned=0, token=0):
        return InventorySnapshot(
            id=pk,
            pk=pk,
            on_hand=on_hand,
            active_customer_reservations=reservations,
            available_to_sell=available,
            returned=returned,
            last_applied_sequence_token=token,
            last_updated=datetime.now(timezone.utc),
        )

    return _make
