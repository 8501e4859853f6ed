"""
Per-event-type mutation table shared by the sync and async pipelines.

Each rule lists the snapshot fields an event moves (as the sign applied to the
event quantity) and, where the business rule needs one, the field that must
still hold at least the event quantity when the store applies the patch.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

from inventory_ledger.models.event import EventType, InventoryEvent
from inventory_ledger.store.operations import Condition, PatchOperation, Predicate

ON_HAND = "onHand"
RESERVATIONS = "activeCustomerReservations"
AVAILABLE = "availableToSell"
RETURNED = "returned"
WATERMARK = "lastAppliedSequenceToken"
LAST_EVENT_TS = "lastEventTs"
LAST_EVENT_ID = "lastEventId"
LAST_UPDATED = "lastUpdated"


@dataclass(frozen=True)
class MutationRule:
    deltas: Mapping[str, int]
    guarded_field: Optional[str] = None
    rejection: str = "Inventory snapshot not updated for item {pk}."


MUTATIONS: Dict[EventType, MutationRule] = {
    EventType.INVENTORY_UPDATED: MutationRule(
        deltas={ON_HAND: 1, AVAILABLE: 1},
    ),
    EventType.ITEM_RESERVED: MutationRule(
        deltas={RESERVATIONS: 1, AVAILABLE: -1},
        guarded_field=AVAILABLE,
        rejection="Cannot reserve {quantity} of item {pk}!",
    ),
    EventType.ORDER_SHIPPED: MutationRule(
        deltas={ON_HAND: -1, RESERVATIONS: -1},
        guarded_field=RESERVATIONS,
        rejection="Inventory snapshot not updated for item {pk} because of not enough reservations.",
    ),
    EventType.ORDER_CANCELLED: MutationRule(
        deltas={RESERVATIONS: -1, AVAILABLE: 1},
        guarded_field=RESERVATIONS,
        rejection="Inventory snapshot not updated for item {pk} because of not enough reservations.",
    ),
    EventType.ORDER_RETURNED: MutationRule(
        deltas={ON_HAND: 1, RETURNED: 1},
    ),
}

if set(MUTATIONS) != set(EventType):
    raise RuntimeError("Every event type needs a mutation rule")


def rule_for(event: InventoryEvent) -> MutationRule:
    return MUTATIONS[event.event_type]


def build_patch_operations(
    event: InventoryEvent, with_watermark: bool, now: Optional[datetime] = None
) -> List[PatchOperation]:
    """
    Increment/set operations for one event. The watermark and the last event
    position are only advanced by the async projector; the sync pipeline has
    no separate watermark lag.
    """
    now = now or datetime.now(timezone.utc)
    operations = [
        PatchOperation(op="incr", path=f"/{field}", value=sign * event.quantity)
        for field, sign in rule_for(event).deltas.items()
    ]
    if with_watermark:
        operations.append(
            PatchOperation(op="set", path=f"/{WATERMARK}", value=_token(event))
        )
        if event.commit_timestamp is not None:
            operations.append(
                PatchOperation(op="set", path=f"/{LAST_EVENT_TS}", value=event.commit_timestamp)
            )
            operations.append(PatchOperation(op="set", path=f"/{LAST_EVENT_ID}", value=event.id))
    operations.append(PatchOperation(op="set", path=f"/{LAST_UPDATED}", value=now.isoformat()))
    return operations


def build_predicate(event: InventoryEvent, with_watermark: bool) -> Predicate:
    rule = rule_for(event)
    conditions = []
    if rule.guarded_field:
        conditions.append(Condition(field=rule.guarded_field, comparator=">=", value=event.quantity))
    if with_watermark:
        # Idempotency guard: never re-apply at or below the applied watermark
        conditions.append(Condition(field=WATERMARK, comparator="<", value=_token(event)))
    return Predicate(conditions=tuple(conditions))


def rejection_message(event: InventoryEvent) -> str:
    return rule_for(event).rejection.format(pk=event.pk, quantity=event.quantity)


def _token(event: InventoryEvent) -> int:
    if event.sequence_token is None:
        raise ValueError(f"Event {event.id} has no sequence token; it was never committed")
    return event.sequence_token
