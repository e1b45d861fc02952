import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from tripspend import exchange
from tripspend.audit import AuditSink, EventType, record_event
from tripspend.config import MONEY_TOLERANCE
from tripspend.currency import default_fx_rate, normalize_amount, quantize, validate_amount, validate_rate
from tripspend.deps import ensure_trip_spend_open, get_expense, get_open_expense, get_trip, verify_member
from tripspend.exceptions import IncompleteAssignmentError, ValidationError
from tripspend.ledger import expense_summary, renormalize_shares
from tripspend.models import Assignment, Expense, ExpenseItem, SpendStatus
from tripspend.serializers import serialize_expense

logger = logging.getLogger("tripspend")


def _resolve_rate(db: Session, currency: str, base_currency: str, fx_rate=None) -> Decimal:
    if fx_rate is not None:
        return validate_rate(fx_rate)
    rate = default_fx_rate(currency, base_currency)
    if rate is None:
        rate, _ = exchange.get_rate(db, currency, base_currency)
    return rate


def _renormalize(db: Session, expense: Expense, base_currency: str) -> None:
    expense.normalized_amount = normalize_amount(expense.amount, expense.fx_rate, base_currency)
    renormalize_shares(db, expense, base_currency)


def create_expense(
    db: Session,
    trip_id: str,
    payer_id: str,
    description: str,
    amount,
    actor_id: str,
    currency: str | None = None,
    fx_rate=None,
    expense_date: date | None = None,
    notes: str | None = None,
    audit: AuditSink | None = None,
) -> Expense:
    """Record a new expense paid by ``payer_id``.

    Without an explicit ``fx_rate`` a foreign-currency expense is converted at
    the current exchange rate.
    """
    trip = get_trip(db, trip_id)
    ensure_trip_spend_open(trip)
    verify_member(db, trip.id, payer_id)
    currency = (currency or trip.base_currency).upper()
    amount = quantize(validate_amount(amount), currency)
    rate = _resolve_rate(db, currency, trip.base_currency, fx_rate)

    expense = Expense(
        trip_id=trip.id,
        description=description,
        amount=amount,
        currency=currency,
        fx_rate=rate,
        normalized_amount=normalize_amount(amount, rate, trip.base_currency),
        paid_by_id=payer_id,
        status=SpendStatus.OPEN,
        date=expense_date or date.today(),
        notes=notes,
    )
    db.add(expense)
    db.flush()

    logger.info(
        "Expense created",
        extra={"extra_data": {"trip_id": trip.id, "expense_id": expense.id, "amount": str(amount), "currency": currency}},
    )
    record_event(
        db, audit, "Expense", expense.id, EventType.SPEND_CREATED, actor_id,
        {"after": serialize_expense(expense)},
    )
    return expense


def update_expense(
    db: Session,
    expense_id: str,
    actor_id: str,
    description: str | None = None,
    amount=None,
    currency: str | None = None,
    fx_rate=None,
    payer_id: str | None = None,
    expense_date: date | None = None,
    notes: str | None = None,
    audit: AuditSink | None = None,
) -> Expense:
    """Update expense fields. Normalized amounts follow any amount or rate change."""
    expense = get_open_expense(db, expense_id)
    trip = get_trip(db, expense.trip_id)
    before = serialize_expense(expense)

    if description is not None:
        expense.description = description
    if payer_id is not None:
        verify_member(db, trip.id, payer_id)
        expense.paid_by_id = payer_id
    if expense_date is not None:
        expense.date = expense_date
    if notes is not None:
        expense.notes = notes
    if currency is not None and currency.upper() != expense.currency:
        expense.currency = currency.upper()
        expense.fx_rate = _resolve_rate(db, expense.currency, trip.base_currency, fx_rate)
    elif fx_rate is not None:
        expense.fx_rate = validate_rate(fx_rate)
    if amount is not None:
        new_amount = quantize(validate_amount(amount), expense.currency)
        costs = [Decimal(i.cost) for i in db.query(ExpenseItem).filter(ExpenseItem.expense_id == expense.id).all()]
        # Items own the amount once they exist
        if costs and new_amount != quantize(sum(costs, Decimal(0)), expense.currency):
            raise ValidationError(
                f"Expense {expense.id} is itemised; its amount is the sum of item costs"
            )
        expense.amount = new_amount

    _renormalize(db, expense, trip.base_currency)
    db.flush()

    record_event(
        db, audit, "Expense", expense.id, EventType.SPEND_UPDATED, actor_id,
        {"before": before, "after": serialize_expense(expense)},
    )
    return expense


def delete_expense(
    db: Session,
    expense_id: str,
    actor_id: str,
    audit: AuditSink | None = None,
) -> Expense:
    """Soft delete. The expense drops out of balances but keeps its rows."""
    expense = get_open_expense(db, expense_id)
    before = serialize_expense(expense)
    expense.deleted_at = datetime.utcnow()
    db.flush()

    record_event(
        db, audit, "Expense", expense.id, EventType.SPEND_DELETED, actor_id,
        {"before": before},
    )
    return expense


def close_expense(
    db: Session,
    expense_id: str,
    actor_id: str,
    force: bool = False,
    audit: AuditSink | None = None,
) -> Expense:
    """Lock one expense against further changes.

    The expense must be fully assigned unless ``force`` is set.
    """
    expense = get_open_expense(db, expense_id)
    summary = expense_summary(db, expense.id)
    if not force and not summary.is_fully_assigned:
        raise IncompleteAssignmentError(
            f"Expense {expense.id} is {summary.percent_assigned}% assigned "
            f"({summary.remainder} left)",
            [expense.id],
        )
    expense.status = SpendStatus.CLOSED
    db.flush()

    record_event(
        db, audit, "Expense", expense.id, EventType.SPEND_CLOSED, actor_id,
        {
            "forced": force,
            "assignedTotal": str(summary.assigned_total),
            "remainder": str(summary.remainder),
        },
    )
    return expense


def reopen_expense(
    db: Session,
    expense_id: str,
    actor_id: str,
    audit: AuditSink | None = None,
) -> Expense:
    expense = get_expense(db, expense_id)
    ensure_trip_spend_open(get_trip(db, expense.trip_id))
    if expense.status != SpendStatus.CLOSED:
        raise ValidationError(f"Expense {expense.id} is not closed")
    expense.status = SpendStatus.OPEN
    db.flush()

    record_event(db, audit, "Expense", expense.id, EventType.SPEND_REOPENED, actor_id, {})
    return expense


def unassigned_expenses(db: Session, trip_id: str) -> list[Expense]:
    """Non-deleted expenses whose shares do not add up to their amount."""
    expenses = (
        db.query(Expense)
        .filter(Expense.trip_id == trip_id, Expense.deleted_at.is_(None))
        .order_by(Expense.date, Expense.id)
        .all()
    )
    incomplete = []
    for expense in expenses:
        assigned = sum(
            (Decimal(a.share_amount) for a in db.query(Assignment).filter(Assignment.expense_id == expense.id).all()),
            Decimal(0),
        )
        if abs(Decimal(expense.amount) - assigned) > MONEY_TOLERANCE:
            incomplete.append(expense)
    return incomplete
