from inventory_ledger.exceptions import InsufficientInventoryError
from inventory_ledger.logging_config import get_child_logger, tracer
from inventory_ledger.models.event import EventType, InventoryEvent
from inventory_ledger.store.base import DurableStore

logger = get_child_logger("engine.admission")


class AdmissionController:
    """
    Pre-commit check for reservations in the async pipeline.

    The snapshot lags the ledger, so when a reservation would leave stock at
    or below the low-availability threshold the reservations already in the
    ledger but not yet projected are subtracted as well. The check is
    advisory: the projector's write predicate is the final authority.
    """

    def __init__(self, store: DurableStore, low_availability_threshold: int):
        if low_availability_threshold < 0:
            raise ValueError("low_availability_threshold must be non-negative")
        self._store = store
        self._threshold = low_availability_threshold

    async def admit(self, event: InventoryEvent) -> None:
        """
        Raises:
            InsufficientInventoryError: If the reservation cannot be covered
            DatabaseError: If the snapshot or ledger cannot be read
        """
        if event.event_type is not EventType.ITEM_RESERVED:
            return

        requested = event.quantity
        with tracer.start_as_current_span("admit_reservation") as span:
            span.set_attribute("partition_key", event.pk)
            span.set_attribute("reserved_quantity", requested)

            snapshot = await self._store.get_snapshot(event.pk)
            if snapshot is None:
                logger.warning(
                    "Reservation for item without inventory snapshot",
                    extra={"partition_key": event.pk, "reserved_quantity": requested},
                )
                raise InsufficientInventoryError("Not enough inventory to reserve")

            available = snapshot.available_to_sell
            if available < requested:
                raise InsufficientInventoryError("Not enough inventory to reserve")

            if available - requested <= self._threshold:
                in_flight = await self._store.sum_in_flight_reservations(snapshot)
                span.set_attribute("reservations_in_flight", in_flight)
                logger.info(
                    "Low availability, checked in-flight reservations",
                    extra={
                        "partition_key": event.pk,
                        "available_to_sell": available,
                        "reservations_in_flight": in_flight,
                    },
                )
                if available - in_flight < requested:
                    raise InsufficientInventoryError("Not enough inventory to reserve")
