from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class InventorySnapshot(BaseModel):
    """
    Materialized counts for one partition, derived from the ledger.
    The document id is the partition key itself.
    """

    id: str
    pk: Optional[str] = None
    on_hand: int = Field(default=0, alias="onHand")
    active_customer_reservations: int = Field(default=0, alias="activeCustomerReservations")
    available_to_sell: int = Field(default=0, alias="availableToSell")
    returned: int = 0
    last_applied_sequence_token: int = Field(default=0, alias="lastAppliedSequenceToken")
    # Queryable position of the last applied ledger entry (Cosmos DB _ts and id)
    last_event_ts: int = Field(default=0, alias="lastEventTs")
    last_event_id: Optional[str] = Field(default=None, alias="lastEventId")
    last_updated: datetime = Field(alias="lastUpdated")
    doc_type: str = Field(default="InventorySnapshot", alias="docType")
    ttl: int = -1  # Never expires
    etag: Optional[str] = Field(default=None, alias="_etag")  # Cosmos DB concurrency token

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @classmethod
    def bootstrap(
        cls,
        partition_key: str,
        quantity: int,
        sequence_token: Optional[int] = None,
        last_event_ts: Optional[int] = None,
        last_event_id: Optional[str] = None,
    ) -> "InventorySnapshot":
        """
        Build the first snapshot of a partition from its first InventoryUpdated event.
        """
        return cls(
            id=partition_key,
            pk=partition_key,
            on_hand=quantity,
            active_customer_reservations=0,
            available_to_sell=quantity,
            returned=0,
            last_applied_sequence_token=sequence_token or 0,
            last_event_ts=last_event_ts or 0,
            last_event_id=last_event_id,
            last_updated=datetime.now(timezone.utc),
        )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude={"etag"}, exclude_none=True)
