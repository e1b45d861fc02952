import logging

from sqlalchemy.orm import Session

from tripspend.audit.base import AuditEntry
from tripspend.models import EventLog

logger = logging.getLogger("tripspend")


class DatabaseAuditSink:
    """Writes EventLog rows into the caller's session.

    The row shares the operation's transaction, so a rolled-back
    operation leaves no audit entry behind.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(self, entry: AuditEntry) -> None:
        self.db.add(
            EventLog(
                entity=entry.entity,
                entity_id=entry.entity_id,
                event_type=entry.event_type.value,
                actor_id=entry.actor_id,
                payload=entry.model_dump(mode="json")["payload"],
            )
        )
        self.db.flush()


class LoggingAuditSink:
    """Emits audit entries as structured log lines only."""

    def record(self, entry: AuditEntry) -> None:
        logger.info(
            f"{entry.entity} {entry.event_type.value}",
            extra={"extra_data": {"audit": entry.model_dump(mode="json")}},
        )


class MemoryAuditSink:
    """Collects entries in a list; useful for callers that batch audit writes."""

    def __init__(self):
        self.entries: list[AuditEntry] = []

    def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)
