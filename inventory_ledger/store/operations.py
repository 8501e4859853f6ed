"""
Store-neutral write primitives.

Patch operations and predicates are plain values: the Cosmos DB store renders
them into patch bodies and SQL filter predicates, the in-memory store
evaluates them directly against the stored document.
"""

import operator
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from inventory_ledger.models.event import InventoryEvent
from inventory_ledger.models.snapshot import InventorySnapshot


class PatchOutcome(str, Enum):
    """
    Result of a conditional write. CREATED is only reported when a snapshot
    bootstrap created the document rather than patching an existing one.
    """

    APPLIED = "applied"
    CREATED = "created"
    NOT_FOUND = "not_found"
    PRECONDITION_FAILED = "precondition_failed"
    CONFLICT = "conflict"


class PatchOperation(BaseModel):
    op: Literal["incr", "set"]
    path: str  # Top-level document field, e.g. "/onHand"
    value: Any

    model_config = ConfigDict(frozen=True)

    @property
    def field(self) -> str:
        return self.path.lstrip("/")

    def to_cosmos(self) -> Dict[str, Any]:
        return {"op": self.op, "path": self.path, "value": self.value}

    def apply(self, document: Dict[str, Any]) -> None:
        if self.op == "incr":
            document[self.field] = document.get(self.field, 0) + self.value
        else:
            document[self.field] = self.value


_COMPARATORS = {
    ">=": operator.ge,
    ">": operator.gt,
    "<": operator.lt,
    "<=": operator.le,
}


class Condition(BaseModel):
    """
    A single `c.<field> <comparator> <value>` clause.
    """

    field: str
    comparator: Literal[">=", ">", "<", "<="]
    value: int

    model_config = ConfigDict(frozen=True)

    def to_sql(self) -> str:
        return f"c.{self.field} {self.comparator} {int(self.value)}"

    def holds(self, document: Dict[str, Any]) -> bool:
        return _COMPARATORS[self.comparator](document.get(self.field, 0), self.value)


class Predicate(BaseModel):
    """
    Conjunction of conditions evaluated by the store at apply time.
    """

    conditions: Tuple[Condition, ...] = ()

    model_config = ConfigDict(frozen=True)

    def __bool__(self) -> bool:
        return bool(self.conditions)

    def to_sql(self) -> Optional[str]:
        if not self.conditions:
            return None
        return "FROM c WHERE " + " AND ".join(c.to_sql() for c in self.conditions)

    def holds(self, document: Dict[str, Any]) -> bool:
        return all(c.holds(document) for c in self.conditions)


class PatchItem(BaseModel):
    """
    Transactional step: conditionally patch an existing item.
    """

    item_id: str
    operations: List[PatchOperation]
    predicate: Predicate = Predicate()

    model_config = ConfigDict(frozen=True)


class CreateItem(BaseModel):
    """
    Transactional step: create a ledger entry or a snapshot.
    """

    item: Union[InventoryEvent, InventorySnapshot]

    model_config = ConfigDict(frozen=True)


TransactionStep = Union[PatchItem, CreateItem]
