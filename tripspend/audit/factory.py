from sqlalchemy.orm import Session

from tripspend.audit.base import AuditEntry, AuditSink, EventType
from tripspend.audit.sinks import DatabaseAuditSink, LoggingAuditSink
from tripspend.config import get_settings


def get_audit_sink(db: Session, kind: str | None = None) -> AuditSink:
    """Return the configured audit sink."""
    sink = kind or get_settings().audit_sink
    if sink == "database":
        return DatabaseAuditSink(db)
    if sink == "log":
        return LoggingAuditSink()
    raise ValueError(f"Unknown audit sink: {sink}")


def record_event(
    db: Session,
    audit: AuditSink | None,
    entity: str,
    entity_id: str,
    event_type: EventType,
    actor_id: str,
    payload: dict | None = None,
) -> AuditEntry:
    """Build one audit entry and hand it to ``audit`` (or the configured sink)."""
    entry = AuditEntry(
        entity=entity,
        entity_id=str(entity_id),
        event_type=event_type,
        actor_id=str(actor_id),
        payload=payload or {},
    )
    (audit or get_audit_sink(db)).record(entry)
    return entry
