import json

import pytest

from inventory_ledger.exceptions import InvalidPayloadError
from inventory_ledger.models.event import (
    EventType,
    InventoryEvent,
    ItemReservedDetails,
    OrderReturnedDetails,
    parse_event,
)


class TestParseEvent:
    def test_parses_each_event_type(self, make_payload):
        expected = {
            "InventoryUpdated": EventType.INVENTORY_UPDATED,
            "ItemReserved": EventType.ITEM_RESERVED,
            "OrderShipped": EventType.ORDER_SHIPPED,
            "OrderCancelled": EventType.ORDER_CANCELLED,
            "OrderReturned": EventType.ORDER_RETURNED,
        }
        for wire_name, event_type in expected.items():
            event = parse_event(make_payload(wire_name, 4))
            assert event.event_type is event_type
            assert event.quantity == 4

    def test_event_type_is_case_insensitive(self, make_payload):
        payload = make_payload("ItemReserved", 3)
        payload["eventType"] = "ITEMRESERVED"

        event = parse_event(payload)

        assert event.event_type is EventType.ITEM_RESERVED
        assert isinstance(event.event_details, ItemReservedDetails)
        assert event.to_document()["eventType"] == "ItemReserved"

    def test_server_assigns_id_and_time(self, make_payload):
        payload = make_payload("OrderReturned", 2)
        payload["id"] = "client-chosen"
        payload["eventTime"] = "2001-01-01T00:00:00Z"
        payload["sequenceToken"] = 999

        event = parse_event(payload)

        assert event.id != "client-chosen"
        assert event.event_time.year != 2001
        assert event.sequence_token is None
        assert isinstance(event.event_details, OrderReturnedDetails)

    def test_ids_are_unique(self, make_payload):
        payload = make_payload("InventoryUpdated", 1)
        assert parse_event(payload).id != parse_event(payload).id

    def test_accepts_partition_key_alias_and_raw_json(self, make_payload):
        payload = make_payload("InventoryUpdated", 7)
        payload["partitionKey"] = payload.pop("pk")

        event = parse_event(json.dumps(payload).encode())

        assert event.pk == "item-1"

    def test_keeps_product_and_node(self, make_payload):
        event = parse_event(
            make_payload("InventoryUpdated", 1, productId="sku-1", nodeId="dc-9")
        )
        assert event.event_details.product_id == "sku-1"
        assert event.event_details.node_id == "dc-9"

    @pytest.mark.parametrize("body", [None, b"", "null", "[]", "not json", 42])
    def test_rejects_invalid_bodies(self, body):
        with pytest.raises(InvalidPayloadError):
            parse_event(body)

    def test_rejects_unknown_event_type(self, make_payload):
        payload = make_payload("InventoryUpdated", 1)
        payload["eventType"] = "StockTeleported"

        with pytest.raises(InvalidPayloadError, match="Unknown eventType"):
            parse_event(payload)

    def test_rejects_missing_event_type(self):
        with pytest.raises(InvalidPayloadError):
            parse_event({"pk": "item-1", "eventDetails": {"onHandQuantity": 1}})

    def test_rejects_details_for_another_type(self):
        payload = {
            "pk": "item-1",
            "eventType": "ItemReserved",
            "eventDetails": {"shippedQuantity": 3},
        }
        with pytest.raises(InvalidPayloadError):
            parse_event(payload)

    def test_rejects_missing_details_or_partition(self, make_payload):
        with pytest.raises(InvalidPayloadError):
            parse_event({"pk": "item-1", "eventType": "ItemReserved"})

        payload = make_payload("ItemReserved", 1)
        del payload["pk"]
        with pytest.raises(InvalidPayloadError):
            parse_event(payload)

    def test_rejects_negative_quantity(self, make_payload):
        with pytest.raises(InvalidPayloadError):
            parse_event(make_payload("OrderCancelled", -1))


class TestLedgerDocuments:
    def test_document_round_trip_keeps_token_from_store(self, make_payload):
        event = parse_event(make_payload("OrderShipped", 5))
        document = event.to_document()
        document["_lsn"] = 17
        document["_rid"] = "abc=="

        assert "sequenceToken" not in document

        restored = InventoryEvent.from_document(document, sequence_token=17)

        assert restored.id == event.id
        assert restored.event_type is EventType.ORDER_SHIPPED
        assert restored.quantity == 5
        assert restored.sequence_token == 17

    def test_unreadable_document_is_invalid_payload(self):
        with pytest.raises(InvalidPayloadError):
            InventoryEvent.from_document({"id": "x", "docType": "InventorySnapshot"})

    def test_commit_timestamp_is_read_but_never_written(self, make_payload):
        payload = make_payload("ItemReserved", 1)
        payload["_ts"] = 1
        event = parse_event(payload)
        assert event.commit_timestamp is None

        document = {**event.to_document(), "_ts": 1700000000}
        restored = InventoryEvent.from_document(document)

        assert restored.commit_timestamp == 1700000000
        assert "_ts" not in restored.to_document()
