import logging

from sqlalchemy.orm import Session

from tripspend.exceptions import (
    ExpenseClosedError,
    MembershipError,
    NotFoundError,
    TripSpendClosedError,
)
from tripspend.models import Expense, ExpenseItem, Member, Settlement, SpendStatus, Trip

logger = logging.getLogger("tripspend")


def get_trip(db: Session, trip_id: str) -> Trip:
    trip = db.query(Trip).filter(Trip.id == trip_id, Trip.is_deleted == False).first()  # noqa: E712
    if not trip:
        raise NotFoundError("Trip", trip_id)
    return trip


def get_expense(db: Session, expense_id: str) -> Expense:
    expense = db.query(Expense).filter(
        Expense.id == expense_id, Expense.deleted_at.is_(None)
    ).first()
    if not expense:
        raise NotFoundError("Expense", expense_id)
    return expense


def get_item(db: Session, expense: Expense, item_id: str) -> ExpenseItem:
    item = db.query(ExpenseItem).filter(
        ExpenseItem.id == item_id, ExpenseItem.expense_id == expense.id
    ).first()
    if not item:
        raise NotFoundError("Item", item_id)
    return item


def verify_member(db: Session, trip_id: str, member_id: str) -> Member:
    """Check that the member belongs to the trip."""
    member = db.query(Member).filter(Member.id == member_id).first()
    if not member or member.trip_id != trip_id:
        logger.warning(
            "Member not in trip",
            extra={"extra_data": {"trip_id": trip_id, "member_id": member_id}},
        )
        raise MembershipError(f"Member {member_id} is not in this trip")
    return member


def ensure_trip_spend_open(trip: Trip) -> None:
    if trip.spend_status == SpendStatus.CLOSED:
        raise TripSpendClosedError("The trip organizer has closed spending for this trip")


def get_open_expense(db: Session, expense_id: str) -> Expense:
    """Load an expense that may still change.

    Fails when either the trip's spending period or the expense itself is closed.
    """
    expense = get_expense(db, expense_id)
    ensure_trip_spend_open(get_trip(db, expense.trip_id))
    if expense.status == SpendStatus.CLOSED:
        raise ExpenseClosedError(f"Expense {expense_id} is closed")
    return expense


def get_settlement(db: Session, settlement_id: str) -> Settlement:
    settlement = db.query(Settlement).filter(Settlement.id == settlement_id).first()
    if not settlement:
        raise NotFoundError("Settlement", settlement_id)
    return settlement
