import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from azure.cosmos.aio import ContainerProxy
from azure.cosmos.exceptions import CosmosBatchOperationError, CosmosHttpResponseError

from inventory_ledger.exceptions import DatabaseError, SnapshotAlreadyExistsError
from inventory_ledger.logging_config import get_child_logger, tracer
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

logger = get_child_logger("store.cosmos")

# Per-partition logical sequence number; only change-feed documents carry it
SEQUENCE_TOKEN_FIELD = "_lsn"
# Commit time in epoch seconds; returned on writes and queryable
COMMIT_TIMESTAMP_FIELD = "_ts"

_STATUS_OUTCOMES = {
    404: PatchOutcome.NOT_FOUND,
    409: PatchOutcome.CONFLICT,
    412: PatchOutcome.PRECONDITION_FAILED,
}


def ledger_event_from_document(
    document: Dict[str, Any], token_field: str = SEQUENCE_TOKEN_FIELD
) -> InventoryEvent:
    """
    Rebuild a ledger event from a Cosmos DB document (read or change feed).
    """
    token = document.get(token_field)
    return InventoryEvent.from_document(
        document, sequence_token=int(token) if token is not None else None
    )


class CosmosDurableStore(DurableStore):
    """
    Durable Store over Cosmos DB containers.

    The async pipeline uses separate ledger and snapshot containers; the sync
    pipeline passes the same container twice so ledger entries and the
    snapshot share a partition and can be written in one transactional batch.
    """

    def __init__(
        self,
        snapshot_container: ContainerProxy,
        ledger_container: Optional[ContainerProxy] = None,
        token_field: str = SEQUENCE_TOKEN_FIELD,
        poll_delay: float = 1.0,
    ):
        self._snapshots = snapshot_container
        self._ledger = ledger_container or snapshot_container
        self._token_field = token_field
        self._poll_delay = poll_delay

    async def get_snapshot(self, partition_key: str) -> Optional[InventorySnapshot]:
        with tracer.start_as_current_span("cosmos_get_snapshot") as span:
            span.set_attribute("partition_key", partition_key)
            try:
                item = await self._snapshots.read_item(
                    item=partition_key, partition_key=partition_key
                )
            except CosmosHttpResponseError as e:
                if e.status_code == 404:
                    return None
                raise self._database_error("reading snapshot", partition_key, e) from e
            return InventorySnapshot.model_validate(item)

    async def create_snapshot(self, snapshot: InventorySnapshot) -> None:
        try:
            await self._snapshots.create_item(body=snapshot.to_document())
        except CosmosHttpResponseError as e:
            if e.status_code == 409:
                raise SnapshotAlreadyExistsError(
                    f"Snapshot for partition '{snapshot.id}' already exists"
                ) from e
            raise self._database_error("creating snapshot", snapshot.id, e) from e

    async def conditional_patch(
        self,
        partition_key: str,
        operations: Sequence[PatchOperation],
        predicate: Predicate,
    ) -> PatchOutcome:
        with tracer.start_as_current_span("cosmos_conditional_patch") as span:
            span.set_attribute("partition_key", partition_key)
            kwargs = {}
            if predicate:
                kwargs["filter_predicate"] = predicate.to_sql()
                span.set_attribute("filter_predicate", kwargs["filter_predicate"])
            try:
                await self._snapshots.patch_item(
                    item=partition_key,
                    partition_key=partition_key,
                    patch_operations=[op.to_cosmos() for op in operations],
                    **kwargs,
                )
                return PatchOutcome.APPLIED
            except CosmosHttpResponseError as e:
                span.set_attribute("error.status_code", e.status_code)
                if e.status_code in (404, 412):
                    return _STATUS_OUTCOMES[e.status_code]
                raise self._database_error("patching snapshot", partition_key, e) from e

    async def transactional_write(
        self, partition_key: str, steps: Sequence[TransactionStep]
    ) -> PatchOutcome:
        with tracer.start_as_current_span("cosmos_transactional_write") as span:
            span.set_attribute("partition_key", partition_key)
            span.set_attribute("batch.size", len(steps))
            batch_operations = [self._batch_operation(step) for step in steps]
            try:
                await self._snapshots.execute_item_batch(
                    batch_operations=batch_operations, partition_key=partition_key
                )
                return PatchOutcome.APPLIED
            except CosmosBatchOperationError as e:
                status_code = self._failed_status(e)
                span.set_attribute("error.status_code", status_code)
                if status_code in _STATUS_OUTCOMES:
                    return _STATUS_OUTCOMES[status_code]
                logger.error(
                    "Cosmos DB batch failed",
                    extra={
                        "partition_key": partition_key,
                        "error_index": e.error_index,
                        "status_code": status_code,
                    },
                    exc_info=True,
                )
                raise DatabaseError(
                    f"Cosmos DB batch error for partition '{partition_key}': Status Code {status_code}",
                    original_exception=e,
                ) from e
            except CosmosHttpResponseError as e:
                raise self._database_error("executing batch", partition_key, e) from e

    async def append_ledger_entry(self, event: InventoryEvent) -> InventoryEvent:
        with tracer.start_as_current_span("cosmos_append_ledger_entry") as span:
            span.set_attribute("partition_key", event.pk)
            span.set_attribute("event.id", event.id)
            try:
                created = await self._ledger.create_item(body=event.to_document())
            except CosmosHttpResponseError as e:
                raise self._database_error("appending ledger entry", event.pk, e) from e
            committed_at = created.get(COMMIT_TIMESTAMP_FIELD) if isinstance(created, dict) else None
            if committed_at is None:
                return event
            return event.model_copy(update={"commit_timestamp": int(committed_at)})

    async def sum_in_flight_reservations(self, snapshot: InventorySnapshot) -> int:
        # _ts has one-second resolution: entries committed in the same second as
        # the last applied one are counted unless they are that entry itself
        query = (
            "SELECT VALUE SUM(c.eventDetails.reservedQuantity) FROM c "
            "WHERE c.pk = @pk AND c.eventType = @eventType "
            "AND c._ts >= @lastEventTs AND c.id != @lastEventId"
        )
        partition_key = snapshot.id
        params = [
            {"name": "@pk", "value": partition_key},
            {"name": "@eventType", "value": EventType.ITEM_RESERVED.value},
            {"name": "@lastEventTs", "value": snapshot.last_event_ts},
            {"name": "@lastEventId", "value": snapshot.last_event_id or ""},
        ]
        with tracer.start_as_current_span("cosmos_sum_in_flight_reservations") as span:
            span.set_attribute("partition_key", partition_key)
            try:
                results = [
                    value
                    async for value in self._ledger.query_items(
                        query=query, parameters=params, partition_key=partition_key
                    )
                ]
            except CosmosHttpResponseError as e:
                raise self._database_error("aggregating reservations", partition_key, e) from e
            # SUM over an empty set yields no row
            total = results[0] if results and results[0] is not None else 0
            span.set_attribute("reservations_in_flight", total)
            return int(total)

    async def subscribe(
        self, checkpoint: Optional[str] = None, max_item_count: int = 20
    ) -> AsyncIterator[FeedBatch]:
        continuation = checkpoint
        while True:
            if continuation:
                feed = self._ledger.query_items_change_feed(
                    continuation=continuation, max_item_count=max_item_count
                )
            else:
                feed = self._ledger.query_items_change_feed(
                    start_time="Beginning", max_item_count=max_item_count
                )
            try:
                page_iterator = feed.by_page()
                async for page in page_iterator:
                    documents = [doc async for doc in page]
                    continuation = page_iterator.continuation_token or continuation
                    if documents:
                        yield FeedBatch(
                            events=[
                                ledger_event_from_document(doc, self._token_field)
                                for doc in documents
                            ],
                            checkpoint=continuation,
                        )
            except CosmosHttpResponseError as e:
                raise self._database_error("reading change feed", "*", e) from e
            await asyncio.sleep(self._poll_delay)

    def _batch_operation(self, step: TransactionStep) -> Tuple[str, Tuple[Any, ...], Dict[str, Any]]:
        if isinstance(step, PatchItem):
            kwargs = {}
            if step.predicate:
                kwargs["filter_predicate"] = step.predicate.to_sql()
            return (
                "patch",
                (step.item_id, [op.to_cosmos() for op in step.operations]),
                kwargs,
            )
        return ("create", (step.item.to_document(),), {})

    @staticmethod
    def _failed_status(error: CosmosBatchOperationError) -> Optional[int]:
        responses: List[Dict[str, Any]] = error.operation_responses or []
        if 0 <= error.error_index < len(responses):
            return responses[error.error_index].get("statusCode")
        return getattr(error, "status_code", None)

    @staticmethod
    def _database_error(action: str, partition_key: str, e: CosmosHttpResponseError) -> DatabaseError:
        logger.error(
            f"Cosmos DB error {action}",
            extra={
                "partition_key": partition_key,
                "status_code": e.status_code,
                "message": e.message,
            },
            exc_info=True,
        )
        return DatabaseError(
            f"Cosmos DB error {action} for partition '{partition_key}': Status Code {e.status_code}, Message: {e.message}",
            original_exception=e,
        )
