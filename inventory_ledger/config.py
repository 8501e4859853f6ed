"""
Service configuration.

Every setting is read from the environment exactly once, when the host starts,
and passed explicitly to the components that need it.
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from inventory_ledger.exceptions import ConfigurationError


class Settings(BaseModel):
    """
    Settings consumed by the pipelines and the Cosmos DB store.
    """

    cosmos_endpoint: Optional[str] = None  # Required by the Functions host, see require_cosmos_endpoint
    database_name: str = "inventory"
    ledger_container: str = "ledger"  # Async pipeline ledger (change feed source)
    snapshot_container: str = "snapshot"  # Async pipeline snapshots
    sync_container: str = "syncInventory"  # Sync pipeline: ledger + snapshot side by side
    low_availability_threshold: int = Field(default=0, ge=0)
    projector_batch_size: int = Field(default=20, ge=1)
    store_timeout_seconds: float = Field(default=10.0, gt=0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def from_environment(cls, environ=None) -> "Settings":
        """
        Build settings from environment variables.

        Unset variables fall back to the field defaults; invalid values raise
        a pydantic ValidationError so misconfiguration fails at startup.
        """
        environ = os.environ if environ is None else environ
        mapping = {
            "cosmos_endpoint": "COSMOSDB_ENDPOINT",
            "database_name": "COSMOSDB_DATABASE",
            "ledger_container": "COSMOSDB_CONTAINER_LEDGER",
            "snapshot_container": "COSMOSDB_CONTAINER_SNAPSHOT",
            "sync_container": "COSMOSDB_CONTAINER_SYNC",
            "low_availability_threshold": "LOW_AVAILABILITY_THRESHOLD",
            "projector_batch_size": "PROJECTOR_BATCH_SIZE",
            "store_timeout_seconds": "STORE_TIMEOUT_SECONDS",
        }
        values = {
            field: environ[variable]
            for field, variable in mapping.items()
            if environ.get(variable) not in (None, "")
        }
        return cls.model_validate(values)

    def require_cosmos_endpoint(self) -> str:
        """
        Raises:
            ConfigurationError: If no Cosmos DB endpoint is configured
        """
        if not self.cosmos_endpoint:
            raise ConfigurationError("COSMOSDB_ENDPOINT environment variable must be set")
        return self.cosmos_endpoint


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
