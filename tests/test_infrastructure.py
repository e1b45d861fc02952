import json
import logging
from unittest.mock import MagicMock

import pytest
import sentry_sdk

from tripspend.audit import (
    AuditEntry,
    DatabaseAuditSink,
    EventType,
    LoggingAuditSink,
    get_audit_sink,
    record_event,
)
from tripspend.config import get_settings
from tripspend.database import create_schema, make_engine, make_session_factory, session_scope
from tripspend.exceptions import DuplicateAssignmentError, IntegrityFailure
from tripspend.ledger import find_assignment
from tripspend.logging_config import JSONFormatter, init_observability, setup_logging
from tripspend.models import EventLog


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_URL", "FX_CACHE_HOURS", "AUDIT_SINK", "SENTRY_DSN"):
            monkeypatch.delenv(name, raising=False)

        settings = get_settings()

        assert settings.database_url.startswith("sqlite:///")
        assert settings.fx_cache_hours == 24
        assert settings.audit_sink == "database"
        assert settings.sentry_dsn is None

    def test_postgres_scheme_is_rewritten(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@host/db")
        assert get_settings().database_url == "postgresql://u:p@host/db"


class TestAuditSinks:
    def test_factory(self, db):
        assert isinstance(get_audit_sink(db, "database"), DatabaseAuditSink)
        assert isinstance(get_audit_sink(db, "log"), LoggingAuditSink)
        with pytest.raises(ValueError):
            get_audit_sink(db, "carrier-pigeon")

    def test_record_event_uses_configured_sink(self, db, monkeypatch):
        monkeypatch.setenv("AUDIT_SINK", "database")

        entry = record_event(db, None, "Expense", "exp1", EventType.SPEND_CREATED, "alice", {"n": 1})

        row = db.query(EventLog).one()
        assert row.entity_id == "exp1"
        assert row.event_type == "SPEND_CREATED"
        assert row.payload == {"n": 1}
        assert entry.actor_id == "alice"

    def test_logging_sink(self, caplog):
        caplog.set_level(logging.INFO, logger="tripspend")
        LoggingAuditSink().record(AuditEntry(
            entity="Trip", entity_id="trip1", event_type=EventType.TRIP_SPEND_CLOSED, actor_id="alice",
        ))
        assert "Trip TRIP_SPEND_CLOSED" in caplog.text


class TestLogging:
    def test_json_formatter_includes_extra_data(self):
        record = logging.LogRecord("tripspend", logging.WARNING, __file__, 1, "Expense over-assigned", None, None)
        record.extra_data = {"expense_id": "exp1"}

        payload = json.loads(JSONFormatter().format(record))

        assert payload["level"] == "WARNING"
        assert payload["message"] == "Expense over-assigned"
        assert payload["expense_id"] == "exp1"

    def test_setup_logging_is_idempotent(self):
        logger = setup_logging("DEBUG")
        handlers = len(logger.handlers)
        setup_logging("DEBUG")
        assert len(logger.handlers) == handlers

    def test_sentry_only_with_dsn(self, monkeypatch):
        calls = []
        monkeypatch.setattr(sentry_sdk, "init", lambda **kw: calls.append(kw))
        monkeypatch.delenv("SENTRY_DSN", raising=False)

        init_observability(get_settings())
        assert calls == []

        monkeypatch.setenv("SENTRY_DSN", "https://key@sentry.example/1")
        init_observability(get_settings())
        assert calls[0]["dsn"] == "https://key@sentry.example/1"


class TestSessionScope:
    def test_yields_and_closes_session(self):
        engine = make_engine("sqlite://")
        create_schema(engine)
        scope = session_scope(make_session_factory(engine))

        session = next(scope)
        assert session.query(EventLog).count() == 0

        with pytest.raises(StopIteration):
            next(scope)
        engine.dispose()


class TestDuplicateAssignments:
    def test_two_rows_for_one_pair_is_an_integrity_failure(self):
        db = MagicMock()
        db.query.return_value.filter.return_value.all.return_value = [object(), object()]

        with pytest.raises(DuplicateAssignmentError) as exc:
            find_assignment(db, "exp1", "bob")

        assert isinstance(exc.value, IntegrityFailure)
        assert exc.value.member_id == "bob"
