import asyncio
from collections import Counter
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from inventory_ledger.engine.conditional_write import ApplyResult, ConditionalWriteEngine
from inventory_ledger.exceptions import DatabaseError
from inventory_ledger.logging_config import get_child_logger, mark_span_error, tracer
from inventory_ledger.models.event import InventoryEvent
from inventory_ledger.store.base import DurableStore

logger = get_child_logger("engine.projector")


class Projector:
    """
    Folds ledger events from the change feed into snapshots.

    Events of one partition are applied one at a time in delivery order;
    partitions run in parallel, bounded by `max_concurrency`.
    """

    def __init__(
        self,
        store: DurableStore,
        max_concurrency: int = 20,
        engine: Optional[ConditionalWriteEngine] = None,
    ):
        self._store = store
        self._max_concurrency = max_concurrency
        self._engine = engine or ConditionalWriteEngine(store)

    async def handle_batch(self, events: Iterable[InventoryEvent]) -> Counter:
        """
        Apply a batch of feed events.

        Returns:
            Count of events per ApplyResult

        Raises:
            DatabaseError: If any partition hit a store failure. Events of
                other partitions are still applied; the whole batch must be
                redelivered, which the watermark guard makes safe.
        """
        by_partition: Dict[str, List[InventoryEvent]] = {}
        for event in events:
            by_partition.setdefault(event.pk, []).append(event)

        if not by_partition:
            return Counter()

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def process_partition(events_for_partition: List[InventoryEvent]) -> Counter:
            results: Counter = Counter()
            async with semaphore:
                for event in events_for_partition:
                    result = await self._engine.apply(event)
                    results[result] += 1
            return results

        with tracer.start_as_current_span("project_batch") as span:
            span.set_attribute("batch.events", sum(len(v) for v in by_partition.values()))
            span.set_attribute("batch.partitions", len(by_partition))

            outcomes = await asyncio.gather(
                *(process_partition(items) for items in by_partition.values()),
                return_exceptions=True,
            )

            totals: Counter = Counter()
            failure: Optional[BaseException] = None
            for partition_key, outcome in zip(by_partition, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "Projection failed for partition; batch will be redelivered",
                        extra={"partition_key": partition_key, "error_type": type(outcome).__name__},
                    )
                    failure = failure or outcome
                    continue
                totals.update(outcome)

            span.set_attribute("batch.applied", totals[ApplyResult.APPLIED] + totals[ApplyResult.BOOTSTRAPPED])
            span.set_attribute("batch.skipped", totals[ApplyResult.DUPLICATE] + totals[ApplyResult.RULE_VIOLATION])

            if failure is not None:
                mark_span_error(span, failure)
                if isinstance(failure, DatabaseError):
                    raise failure
                raise DatabaseError(
                    "Unexpected error while projecting ledger events.",
                    original_exception=failure,
                ) from failure

            logger.info(
                f"Projected {sum(totals.values())} events",
                extra={"results": {k.value: v for k, v in totals.items()}},
            )
            return totals

    async def run(
        self,
        checkpoint: Optional[str] = None,
        save_checkpoint: Optional[Callable[[str], Awaitable[None]]] = None,
    ) -> Optional[str]:
        """
        Consume the store's change feed from `checkpoint`.

        The checkpoint is persisted only after a batch is fully handled, so a
        failed batch is read again on restart. Returns the last checkpoint
        when the feed ends.
        """
        async for batch in self._store.subscribe(checkpoint, max_item_count=self._max_concurrency):
            await self.handle_batch(batch.events)
            if batch.checkpoint is not None:
                checkpoint = batch.checkpoint
                if save_checkpoint is not None:
                    await save_checkpoint(checkpoint)
        return checkpoint
