from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from tripspend.audit import MemoryAuditSink
from tripspend.database import create_schema, make_engine, make_session_factory
from tripspend.models import Assignment, Expense, Member, SpendStatus, SplitType, Trip


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    engine = make_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(engine)
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def audit():
    return MemoryAuditSink()


@pytest.fixture
def trip(db):
    trip = Trip(id="trip1", name="Lisbon", base_currency="USD", spend_status=SpendStatus.OPEN)
    db.add(trip)
    db.flush()
    return trip


@pytest.fixture
def members(db, trip):
    """Alice, Bob and Carol, keyed by name."""
    result = {}
    for name in ("alice", "bob", "carol"):
        member = Member(id=name, trip_id=trip.id, name=name.title())
        db.add(member)
        result[name] = member
    db.flush()
    return result


@pytest.fixture
def outsider(db):
    other = Trip(id="trip2", name="Oslo", base_currency="NOK")
    db.add(other)
    member = Member(id="dave", trip_id=other.id, name="Dave")
    db.add(member)
    db.flush()
    return member


@pytest.fixture
def make_expense(db, trip, members):
    """Insert an expense directly, bypassing the service layer."""
    counter = {"n": 0}

    def _make(amount, payer="alice", currency="USD", fx_rate="1", on=None, shares=None):
        counter["n"] += 1
        amount = Decimal(str(amount))
        rate = Decimal(fx_rate)
        expense = Expense(
            id=f"exp{counter['n']}",
            trip_id=trip.id,
            description=f"Expense {counter['n']}",
            amount=amount,
            currency=currency,
            fx_rate=rate,
            normalized_amount=(amount * rate).quantize(Decimal("0.01")),
            paid_by_id=payer,
            status=SpendStatus.OPEN,
            date=on or date(2024, 5, counter["n"]),
        )
        db.add(expense)
        for member_id, share in (shares or {}).items():
            share = Decimal(str(share))
            db.add(Assignment(
                expense_id=expense.id,
                member_id=member_id,
                share_amount=share,
                normalized_share_amount=(share * rate).quantize(Decimal("0.01")),
                split_type=SplitType.EXACT,
            ))
        db.flush()
        return expense

    return _make
