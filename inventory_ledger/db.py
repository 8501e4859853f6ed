from enum import Enum
from typing import Optional

from azure.cosmos.aio import ContainerProxy, CosmosClient
from azure.identity.aio import DefaultAzureCredential

from inventory_ledger.config import Settings, get_settings
from inventory_ledger.logging_config import get_child_logger
from inventory_ledger.store.cosmos_store import CosmosDurableStore

logger = get_child_logger("db")


class ContainerType(str, Enum):
    LEDGER = "ledger"
    SNAPSHOT = "snapshot"
    SYNC = "sync"


_client: Optional[CosmosClient] = None
_credential: Optional[DefaultAzureCredential] = None


async def _ensure_client(settings: Settings) -> CosmosClient:
    global _client, _credential
    if _client is None:
        endpoint = settings.require_cosmos_endpoint()
        logger.info("Creating CosmosDB client with DefaultAzureCredential")
        _credential = DefaultAzureCredential()
        _client = CosmosClient(endpoint, _credential)
    return _client


async def get_container(
    container_type: ContainerType, settings: Optional[Settings] = None
) -> ContainerProxy:
    settings = settings or get_settings()
    container_name = {
        ContainerType.LEDGER: settings.ledger_container,
        ContainerType.SNAPSHOT: settings.snapshot_container,
        ContainerType.SYNC: settings.sync_container,
    }.get(container_type)
    if not container_name:
        raise ValueError(
            f"Container '{container_type}' not configured. "
            f"Valid options: {[c.value for c in ContainerType]}"
        )

    client = await _ensure_client(settings)
    database = client.get_database_client(settings.database_name)
    return database.get_container_client(container_name)


async def get_sync_store() -> CosmosDurableStore:
    """Ledger entries and snapshots share the sync container."""
    container = await get_container(ContainerType.SYNC)
    return CosmosDurableStore(container, container)


async def get_async_store() -> CosmosDurableStore:
    return CosmosDurableStore(
        await get_container(ContainerType.SNAPSHOT),
        await get_container(ContainerType.LEDGER),
    )


async def close_client() -> None:
    global _client, _credential
    if _client is not None:
        await _client.close()
        _client = None
    if _credential is not None:
        await _credential.close()
        _credential = None
