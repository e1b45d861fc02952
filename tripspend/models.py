import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, Column, String, Integer, Numeric, Date, DateTime, Enum, ForeignKey, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from tripspend.database import Base


def new_uuid():
    return str(uuid.uuid4())


class SpendStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class SplitType(str, enum.Enum):
    EQUAL = "EQUAL"
    PERCENTAGE = "PERCENTAGE"
    EXACT = "EXACT"
    SHARE = "SHARE"


class SettlementStatus(str, enum.Enum):
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    VERIFIED = "VERIFIED"


class CompletionSource(str, enum.Enum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"


class ChoiceStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class Trip(Base):
    __tablename__ = "trips"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String(255), nullable=False)
    base_currency = Column(String(3), nullable=False, default="USD")
    spend_status = Column(Enum(SpendStatus), nullable=False, default=SpendStatus.OPEN)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    members = relationship("Member", back_populates="trip", cascade="all, delete-orphan")
    expenses = relationship("Expense", back_populates="trip", cascade="all, delete-orphan")
    settlements = relationship("Settlement", back_populates="trip", cascade="all, delete-orphan")
    milestones = relationship("Milestone", back_populates="trip", cascade="all, delete-orphan")


class Member(Base):
    __tablename__ = "members"

    id = Column(String, primary_key=True, default=new_uuid)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    trip = relationship("Trip", back_populates="members")


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(String, primary_key=True, default=new_uuid)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    description = Column(String(500), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    fx_rate = Column(Numeric(18, 8), nullable=False, default=1)
    normalized_amount = Column(Numeric(12, 2), nullable=False)
    paid_by_id = Column(String, ForeignKey("members.id", ondelete="RESTRICT"), nullable=False)
    status = Column(Enum(SpendStatus), nullable=False, default=SpendStatus.OPEN)
    date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    trip = relationship("Trip", back_populates="expenses")
    items = relationship("ExpenseItem", back_populates="expense", cascade="all, delete-orphan")
    assignments = relationship("Assignment", back_populates="expense", cascade="all, delete-orphan")


class ExpenseItem(Base):
    __tablename__ = "expense_items"

    id = Column(String, primary_key=True, default=new_uuid)
    expense_id = Column(String, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(String(500), nullable=True)
    cost = Column(Numeric(12, 2), nullable=False)
    assigned_member_id = Column(String, ForeignKey("members.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    expense = relationship("Expense", back_populates="items")


class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(String, primary_key=True, default=new_uuid)
    expense_id = Column(String, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False)
    member_id = Column(String, ForeignKey("members.id", ondelete="RESTRICT"), nullable=False)
    item_id = Column(String, ForeignKey("expense_items.id", ondelete="SET NULL"), nullable=True)
    share_amount = Column(Numeric(12, 2), nullable=False)
    normalized_share_amount = Column(Numeric(12, 2), nullable=False)
    split_type = Column(Enum(SplitType), nullable=False, default=SplitType.EXACT)
    split_value = Column(Numeric(12, 4), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("expense_id", "member_id"),)

    expense = relationship("Expense", back_populates="assignments")


class Settlement(Base):
    __tablename__ = "settlements"

    id = Column(String, primary_key=True, default=new_uuid)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    from_member_id = Column(String, ForeignKey("members.id", ondelete="RESTRICT"), nullable=False)
    to_member_id = Column(String, ForeignKey("members.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(SettlementStatus), nullable=False, default=SettlementStatus.PENDING)
    position = Column(Integer, nullable=False, default=0)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    trip = relationship("Trip", back_populates="settlements")
    payments = relationship("Payment", back_populates="settlement", cascade="all, delete-orphan")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=new_uuid)
    settlement_id = Column(String, ForeignKey("settlements.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    paid_at = Column(DateTime, nullable=False)
    payment_method = Column(String(50), nullable=True)
    payment_reference = Column(String(255), nullable=True)
    notes = Column(String(500), nullable=True)
    recorded_by_id = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    settlement = relationship("Settlement", back_populates="payments")


class Milestone(Base):
    __tablename__ = "milestones"

    id = Column(String, primary_key=True, default=new_uuid)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    date = Column(DateTime, nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)
    completion_source = Column(Enum(CompletionSource), nullable=True)

    trip = relationship("Trip", back_populates="milestones")


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    entity = Column(String(50), nullable=False)
    entity_id = Column(String, nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    actor_id = Column(String, nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ExchangeRate(Base):
    __tablename__ = "exchange_rates"

    id = Column(String, primary_key=True, default=new_uuid)
    date = Column(Date, nullable=False)
    base_currency = Column(String(3), nullable=False)
    target_currency = Column(String(3), nullable=False)
    rate = Column(Numeric(18, 8), nullable=False)
    fetched_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("date", "base_currency", "target_currency"),)


class Choice(Base):
    __tablename__ = "choices"

    id = Column(String, primary_key=True, default=new_uuid)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    status = Column(Enum(ChoiceStatus), nullable=False, default=ChoiceStatus.OPEN)
    deadline = Column(DateTime, nullable=True)
    archived_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    items = relationship("ChoiceItem", back_populates="choice", cascade="all, delete-orphan")


class ChoiceItem(Base):
    __tablename__ = "choice_items"

    id = Column(String, primary_key=True, default=new_uuid)
    choice_id = Column(String, ForeignKey("choices.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 2), nullable=True)
    max_per_user = Column(Integer, nullable=True)
    max_total = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    choice = relationship("Choice", back_populates="items")


class ChoiceSelection(Base):
    __tablename__ = "choice_selections"

    id = Column(String, primary_key=True, default=new_uuid)
    choice_id = Column(String, ForeignKey("choices.id", ondelete="CASCADE"), nullable=False)
    member_id = Column(String, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("choice_id", "member_id"),)

    lines = relationship("ChoiceSelectionLine", back_populates="selection", cascade="all, delete-orphan")


class ChoiceSelectionLine(Base):
    __tablename__ = "choice_selection_lines"

    id = Column(String, primary_key=True, default=new_uuid)
    selection_id = Column(String, ForeignKey("choice_selections.id", ondelete="CASCADE"), nullable=False)
    item_id = Column(String, ForeignKey("choice_items.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False)
    note = Column(String(255), nullable=True)

    selection = relationship("ChoiceSelection", back_populates="lines")
