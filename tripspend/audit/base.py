import enum
from typing import Any, Protocol

from pydantic import BaseModel


class EventType(str, enum.Enum):
    SPEND_CREATED = "SPEND_CREATED"
    SPEND_UPDATED = "SPEND_UPDATED"
    SPEND_DELETED = "SPEND_DELETED"
    SPEND_RECALCULATED = "SPEND_RECALCULATED"
    SPEND_CLOSED = "SPEND_CLOSED"
    SPEND_REOPENED = "SPEND_REOPENED"
    SPEND_ITEM_CREATED = "SPEND_ITEM_CREATED"
    SPEND_ITEM_UPDATED = "SPEND_ITEM_UPDATED"
    SPEND_ITEM_DELETED = "SPEND_ITEM_DELETED"
    ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
    ASSIGNMENT_UPDATED = "ASSIGNMENT_UPDATED"
    ASSIGNMENT_DELETED = "ASSIGNMENT_DELETED"
    ASSIGNMENT_MOVED = "ASSIGNMENT_MOVED"
    ASSIGNMENTS_SPLIT = "ASSIGNMENTS_SPLIT"
    TRIP_SPEND_CLOSED = "TRIP_SPEND_CLOSED"
    TRIP_SPEND_REOPENED = "TRIP_SPEND_REOPENED"
    SETTLEMENT_VERIFIED = "SETTLEMENT_VERIFIED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    PAYMENT_DELETED = "PAYMENT_DELETED"
    CHOICE_SELECTION_CREATED = "CHOICE_SELECTION_CREATED"
    CHOICE_SELECTION_UPDATED = "CHOICE_SELECTION_UPDATED"


class AuditEntry(BaseModel):
    entity: str  # e.g. "Assignment", "Expense", "Trip"
    entity_id: str
    event_type: EventType
    actor_id: str
    payload: dict[str, Any] = {}


class AuditSink(Protocol):
    def record(self, entry: AuditEntry) -> None: ...
