from fastapi import APIRouter, Depends, HTTPException, Path, Request, status

from inventory_ledger.config import Settings, get_settings
from inventory_ledger.db import get_async_store, get_sync_store
from inventory_ledger.exceptions import (
    DatabaseError,
    InsufficientInventoryError,
    InvalidPayloadError,
    PreconditionFailedError,
    SnapshotNotFoundError,
    StoreTimeoutError,
)
from inventory_ledger.logging_config import get_child_logger, tracer
from inventory_ledger.models.event import InventoryEvent
from inventory_ledger.models.snapshot import InventorySnapshot
from inventory_ledger.pipelines.async_pipeline import AsyncPipeline
from inventory_ledger.pipelines.sync_pipeline import SyncPipeline
from inventory_ledger.store.base import DurableStore

logger = get_child_logger("routes.inventory")

router = APIRouter(prefix="/inventory", tags=["inventory"])


async def get_sync_pipeline(
    store: DurableStore = Depends(get_sync_store),
    settings: Settings = Depends(get_settings),
) -> SyncPipeline:
    return SyncPipeline(store, timeout=settings.store_timeout_seconds)


async def get_async_pipeline(
    store: DurableStore = Depends(get_async_store),
    settings: Settings = Depends(get_settings),
) -> AsyncPipeline:
    return AsyncPipeline(
        store,
        low_availability_threshold=settings.low_availability_threshold,
        timeout=settings.store_timeout_seconds,
    )


def _database_exception(e: DatabaseError) -> HTTPException:
    logger.error(f"Database error: {e}", exc_info=e.original_exception)
    if isinstance(e, StoreTimeoutError):
        return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(e))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="A database error occurred.",
    )


@router.post("/sync/events", response_model=InventoryEvent)
async def create_sync_inventory_event(
    request: Request,
    pipeline: SyncPipeline = Depends(get_sync_pipeline),
):
    """
    Commit an event and its snapshot mutation in one transaction.
    """
    with tracer.start_as_current_span("api_create_sync_inventory_event"):
        try:
            return await pipeline.submit(await request.body())
        except InvalidPayloadError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except PreconditionFailedError as e:
            raise HTTPException(status_code=status.HTTP_412_PRECONDITION_FAILED, detail=str(e))
        except SnapshotNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except DatabaseError as e:
            raise _database_exception(e)
        except Exception as e:
            logger.error(f"Unexpected error processing sync event: {e}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="An unexpected internal server error occurred.",
            )


@router.post("/async/events", response_model=InventoryEvent, status_code=status.HTTP_202_ACCEPTED)
async def create_async_inventory_event(
    request: Request,
    pipeline: AsyncPipeline = Depends(get_async_pipeline),
):
    """
    Admit an event and append it to the ledger; the projector applies it later.
    """
    with tracer.start_as_current_span("api_create_async_inventory_event"):
        try:
            return await pipeline.submit(await request.body())
        except (InvalidPayloadError, InsufficientInventoryError) as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except DatabaseError as e:
            raise _database_exception(e)
        except Exception as e:
            logger.error(f"Unexpected error processing async event: {e}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="An unexpected internal server error occurred.",
            )


@router.get("/sync/snapshots/{partition_key}", response_model=InventorySnapshot)
async def get_sync_snapshot(
    partition_key: str = Path(..., title="The item/node whose snapshot to retrieve"),
    pipeline: SyncPipeline = Depends(get_sync_pipeline),
):
    try:
        return await pipeline.get_snapshot(partition_key)
    except SnapshotNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DatabaseError as e:
        raise _database_exception(e)


@router.get("/async/snapshots/{partition_key}", response_model=InventorySnapshot)
async def get_async_snapshot(
    partition_key: str = Path(..., title="The item/node whose snapshot to retrieve"),
    pipeline: AsyncPipeline = Depends(get_async_pipeline),
):
    try:
        return await pipeline.get_snapshot(partition_key)
    except SnapshotNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DatabaseError as e:
        raise _database_exception(e)
