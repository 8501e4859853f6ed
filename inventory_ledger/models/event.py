import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)

from inventory_ledger.exceptions import InvalidPayloadError


class EventType(str, Enum):
    """
    Inventory ledger event types.
    INVENTORY_UPDATED: Stock received or counted for an item/node
    ITEM_RESERVED: A customer reservation against available stock
    ORDER_SHIPPED: Reserved stock leaves the node
    ORDER_CANCELLED: A reservation is released back to available stock
    ORDER_RETURNED: Shipped stock comes back on hand
    """

    INVENTORY_UPDATED = "InventoryUpdated"
    ITEM_RESERVED = "ItemReserved"
    ORDER_SHIPPED = "OrderShipped"
    ORDER_CANCELLED = "OrderCancelled"
    ORDER_RETURNED = "OrderReturned"


class EventDetails(BaseModel):
    """
    Fields shared by every event details variant.
    """

    product_id: Optional[str] = Field(default=None, alias="productId")
    node_id: Optional[str] = Field(default=None, alias="nodeId")

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    @property
    def quantity(self) -> int:
        raise NotImplementedError


class InventoryUpdatedDetails(EventDetails):
    on_hand_quantity: int = Field(alias="onHandQuantity", ge=0)

    @property
    def quantity(self) -> int:
        return self.on_hand_quantity


class ItemReservedDetails(EventDetails):
    reserved_quantity: int = Field(alias="reservedQuantity", ge=0)

    @property
    def quantity(self) -> int:
        return self.reserved_quantity


class OrderShippedDetails(EventDetails):
    shipped_quantity: int = Field(alias="shippedQuantity", ge=0)

    @property
    def quantity(self) -> int:
        return self.shipped_quantity


class OrderCancelledDetails(EventDetails):
    cancelled_quantity: int = Field(alias="cancelledQuantity", ge=0)

    @property
    def quantity(self) -> int:
        return self.cancelled_quantity


class OrderReturnedDetails(EventDetails):
    returned_quantity: int = Field(alias="returnedQuantity", ge=0)

    @property
    def quantity(self) -> int:
        return self.returned_quantity


AnyEventDetails = Union[
    InventoryUpdatedDetails,
    ItemReservedDetails,
    OrderShippedDetails,
    OrderCancelledDetails,
    OrderReturnedDetails,
]

# Keyed by the lower-cased wire tag
EVENT_TYPES: Dict[str, Tuple[EventType, Type[EventDetails]]] = {
    "inventoryupdated": (EventType.INVENTORY_UPDATED, InventoryUpdatedDetails),
    "itemreserved": (EventType.ITEM_RESERVED, ItemReservedDetails),
    "ordershipped": (EventType.ORDER_SHIPPED, OrderShippedDetails),
    "ordercancelled": (EventType.ORDER_CANCELLED, OrderCancelledDetails),
    "orderreturned": (EventType.ORDER_RETURNED, OrderReturnedDetails),
}

DETAILS_BY_TYPE: Dict[EventType, Type[EventDetails]] = {
    event_type: details_model for event_type, details_model in EVENT_TYPES.values()
}


class InventoryEvent(BaseModel):
    """
    An immutable ledger entry.

    `id` and `event_time` are assigned at admission; `sequence_token` and
    `commit_timestamp` are assigned by the store when the entry is committed.
    """

    id: str
    pk: str = Field(
        alias="pk",
        validation_alias=AliasChoices("pk", "partitionKey"),
        min_length=1,
    )  # Item/node the event affects - partition key in Cosmos DB
    event_type: EventType = Field(alias="eventType")
    event_details: AnyEventDetails = Field(alias="eventDetails")
    event_time: datetime = Field(alias="eventTime")
    sequence_token: Optional[int] = Field(default=None, alias="sequenceToken")
    commit_timestamp: Optional[int] = Field(default=None, alias="_ts")  # Cosmos DB commit time, seconds
    doc_type: str = Field(default="InventoryEvent", alias="docType")

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    @model_validator(mode="after")
    def _details_match_type(self) -> "InventoryEvent":
        expected = DETAILS_BY_TYPE[self.event_type]
        if type(self.event_details) is not expected:
            raise ValueError(
                f"eventDetails for {self.event_type.value} must be {expected.__name__}"
            )
        return self

    @property
    def quantity(self) -> int:
        return self.event_details.quantity

    def with_sequence_token(self, sequence_token: int) -> "InventoryEvent":
        return self.model_copy(update={"sequence_token": sequence_token})

    def to_document(self) -> Dict[str, Any]:
        """
        Serialize for storage. Store-assigned fields are never written by us.
        """
        return self.model_dump(
            by_alias=True,
            mode="json",
            exclude={"sequence_token", "commit_timestamp"},
            exclude_none=True,
        )

    @classmethod
    def from_document(
        cls, document: Dict[str, Any], sequence_token: Optional[int] = None
    ) -> "InventoryEvent":
        """
        Rebuild an event read back from the ledger or the change feed.
        """
        event_type, details_model = _resolve_event_type(document.get("eventType"))
        try:
            details = details_model.model_validate(document.get("eventDetails"))
            return cls.model_validate(
                {
                    **document,
                    "eventType": event_type,
                    "eventDetails": details,
                    "sequenceToken": sequence_token
                    if sequence_token is not None
                    else document.get("sequenceToken"),
                }
            )
        except ValidationError as e:
            raise InvalidPayloadError(f"Invalid ledger document: {e}") from e


def _resolve_event_type(raw_type: Any) -> Tuple[EventType, Type[EventDetails]]:
    if not isinstance(raw_type, str):
        raise InvalidPayloadError("eventType is required.")
    entry = EVENT_TYPES.get(raw_type.lower())
    if entry is None:
        raise InvalidPayloadError(f"Unknown eventType: {raw_type}")
    return entry


def parse_event(payload: Any) -> InventoryEvent:
    """
    Turn a raw request payload into a typed InventoryEvent.

    Args:
        payload: Request body as a dict, or raw JSON (str/bytes)

    Returns:
        The event with a fresh server-side id and event time

    Raises:
        InvalidPayloadError: If the body is empty, not an object, has an
            unknown eventType, or eventDetails does not match the type
    """
    if isinstance(payload, (bytes, str)):
        if not payload:
            raise InvalidPayloadError("Invalid request body")
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise InvalidPayloadError("Invalid request body") from e

    if not isinstance(payload, dict):
        raise InvalidPayloadError("Invalid request body")

    event_type, details_model = _resolve_event_type(payload.get("eventType"))

    try:
        details = details_model.model_validate(payload.get("eventDetails"))
        # id and eventTime are always server-assigned; sequenceToken is dropped
        return InventoryEvent(
            id=str(uuid.uuid4()),
            pk=payload.get("pk", payload.get("partitionKey")),
            event_type=event_type,
            event_details=details,
            event_time=datetime.now(timezone.utc),
        )
    except ValidationError as e:
        raise InvalidPayloadError(
            f"Invalid {event_type.value} event: {e.errors()}"
        ) from e
