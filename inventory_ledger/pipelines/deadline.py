import asyncio
from typing import Awaitable, Optional, TypeVar

from inventory_ledger.exceptions import StoreTimeoutError
from inventory_ledger.logging_config import get_child_logger

logger = get_child_logger("pipelines.deadline")

T = TypeVar("T")


async def call_with_deadline(awaitable: Awaitable[T], timeout: Optional[float], action: str) -> T:
    """
    Await a store call under a deadline. A timed-out write has an unknown
    outcome; it is reported, never retried here.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        logger.error(f"Store call timed out while {action}", extra={"timeout": timeout})
        raise StoreTimeoutError(
            f"Timed out after {timeout}s while {action}; outcome unknown.",
            original_exception=e,
        ) from e
