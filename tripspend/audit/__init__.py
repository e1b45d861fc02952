from tripspend.audit.base import AuditEntry, AuditSink, EventType
from tripspend.audit.factory import get_audit_sink, record_event
from tripspend.audit.sinks import DatabaseAuditSink, LoggingAuditSink, MemoryAuditSink

__all__ = [
    "AuditEntry",
    "AuditSink",
    "EventType",
    "get_audit_sink",
    "record_event",
    "DatabaseAuditSink",
    "LoggingAuditSink",
    "MemoryAuditSink",
]
