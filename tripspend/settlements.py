"""
Spend period and settlement tracking.

Closing a trip's spending freezes every expense and stores the settlement
plan as PENDING Settlement rows; payments are then recorded against those
rows until each is PAID and finally VERIFIED by the recipient.
"""
import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from tripspend.audit import AuditSink, EventType, record_event
from tripspend.balances import aggregate_balances, compute_settlement_plan, trip_ledger
from tripspend.config import MONEY_TOLERANCE
from tripspend.currency import ZERO, quantize, validate_amount
from tripspend.deps import get_settlement, get_trip
from tripspend.exceptions import (
    IncompleteAssignmentError,
    InvalidSettlementStatusError,
    NotFoundError,
    ValidationError,
)
from tripspend.expenses import unassigned_expenses
from tripspend.models import (
    CompletionSource,
    Milestone,
    Payment,
    Settlement,
    SettlementStatus,
    SpendStatus,
    Trip,
)
from tripspend.schemas import ReopenOutcome
from tripspend.serializers import serialize_payment, serialize_settlement

logger = logging.getLogger("tripspend")

SPEND_MILESTONE_TITLE = "Spending Window Closes"


def _trip_settlements(db: Session, trip_id: str) -> list[Settlement]:
    return (
        db.query(Settlement)
        .filter(Settlement.trip_id == trip_id)
        .order_by(Settlement.position, Settlement.id)
        .all()
    )


def _payment_count(db: Session, trip_id: str) -> int:
    return (
        db.query(Payment)
        .join(Settlement, Payment.settlement_id == Settlement.id)
        .filter(Settlement.trip_id == trip_id)
        .count()
    )


def _spend_milestone(db: Session, trip: Trip) -> Milestone | None:
    return db.query(Milestone).filter(
        Milestone.trip_id == trip.id, Milestone.title == SPEND_MILESTONE_TITLE
    ).first()


def _clear_settlements(db: Session, trip_id: str) -> tuple[int, int]:
    settlements = _trip_settlements(db, trip_id)
    payments = _payment_count(db, trip_id)
    for settlement in settlements:
        db.delete(settlement)
    db.flush()
    return len(settlements), payments


def close_spend(
    db: Session,
    trip_id: str,
    actor_id: str,
    source: CompletionSource = CompletionSource.MANUAL,
    audit: AuditSink | None = None,
) -> list[Settlement]:
    """Close the trip's spending period and store its settlement plan.

    Every non-deleted expense must be fully assigned. Closing an already
    closed trip rebuilds the same plan, as long as no payment has been
    recorded against the current one.
    """
    trip = get_trip(db, trip_id)

    incomplete = unassigned_expenses(db, trip.id)
    if incomplete:
        logger.warning(
            "Close blocked by unassigned expenses",
            extra={"extra_data": {"trip_id": trip.id, "expense_ids": [e.id for e in incomplete]}},
        )
        raise IncompleteAssignmentError(
            f"{len(incomplete)} expense(s) are not fully assigned",
            [e.id for e in incomplete],
        )
    if _payment_count(db, trip.id):
        raise InvalidSettlementStatusError("Settlements already have payments; reopen spending first")

    expenses, assignments = trip_ledger(db, trip.id)
    balances, debt_ages = aggregate_balances(expenses, assignments)
    plan = compute_settlement_plan(balances, debt_ages)

    previous_status = trip.spend_status
    _clear_settlements(db, trip.id)
    settlements = []
    for position, planned in enumerate(plan):
        settlement = Settlement(
            trip_id=trip.id,
            from_member_id=planned.from_member_id,
            to_member_id=planned.to_member_id,
            amount=planned.amount,
            status=SettlementStatus.PENDING,
            position=position,
            notes=f"Debt since {planned.oldest_debt_date.isoformat()}" if planned.oldest_debt_date else None,
        )
        db.add(settlement)
        settlements.append(settlement)

    trip.spend_status = SpendStatus.CLOSED
    milestone = _spend_milestone(db, trip)
    if milestone is None:
        milestone = Milestone(trip_id=trip.id, title=SPEND_MILESTONE_TITLE)
        db.add(milestone)
    now = datetime.utcnow()
    milestone.is_completed = True
    milestone.completed_at = now
    milestone.completion_source = source
    if milestone.date is None:
        milestone.date = now
    db.flush()

    logger.info(
        "Trip spending closed",
        extra={"extra_data": {"trip_id": trip.id, "settlements": len(settlements), "source": source.value}},
    )
    record_event(
        db, audit, "Trip", trip.id, EventType.TRIP_SPEND_CLOSED, actor_id,
        {
            "previousStatus": previous_status.value if previous_status else None,
            "source": source.value,
            "balances": [b.model_dump(mode="json") for b in balances],
            "settlements": [serialize_settlement(s) for s in settlements],
        },
    )
    return settlements


def reopen_spend(
    db: Session,
    trip_id: str,
    actor_id: str,
    confirm: bool = False,
    audit: AuditSink | None = None,
) -> ReopenOutcome:
    """Reopen spending and discard the settlement plan.

    When payments were already recorded nothing changes unless ``confirm``
    is set; the outcome then asks the caller for confirmation.
    """
    trip = get_trip(db, trip_id)
    payments = _payment_count(db, trip.id)
    if payments and not confirm:
        logger.info(
            "Reopen needs confirmation",
            extra={"extra_data": {"trip_id": trip.id, "payments": payments}},
        )
        return ReopenOutcome(reopened=False, confirmation_required=True)

    before = [serialize_settlement(s) for s in _trip_settlements(db, trip.id)]
    settlements_deleted, payments_deleted = _clear_settlements(db, trip.id)
    trip.spend_status = SpendStatus.OPEN
    milestone = _spend_milestone(db, trip)
    if milestone is not None:
        milestone.is_completed = False
        milestone.completed_at = None
        milestone.completion_source = None
    db.flush()

    record_event(
        db, audit, "Trip", trip.id, EventType.TRIP_SPEND_REOPENED, actor_id,
        {
            "confirmed": confirm,
            "settlements": before,
            "settlementsDeleted": settlements_deleted,
            "paymentsDeleted": payments_deleted,
        },
    )
    return ReopenOutcome(
        reopened=True,
        settlements_deleted=settlements_deleted,
        payments_deleted=payments_deleted,
    )


def _total_paid(settlement: Settlement) -> Decimal:
    return sum((Decimal(p.amount) for p in settlement.payments), ZERO)


def _status_for(settlement: Settlement, paid: Decimal) -> SettlementStatus:
    if paid >= Decimal(settlement.amount) - MONEY_TOLERANCE:
        return SettlementStatus.PAID
    if paid > 0:
        return SettlementStatus.PARTIALLY_PAID
    return SettlementStatus.PENDING


def record_payment(
    db: Session,
    settlement_id: str,
    amount,
    actor_id: str,
    paid_at: datetime | None = None,
    payment_method: str | None = None,
    payment_reference: str | None = None,
    notes: str | None = None,
    audit: AuditSink | None = None,
) -> Payment:
    """Record a payment (in the trip base currency) against a settlement."""
    settlement = get_settlement(db, settlement_id)
    if settlement.status == SettlementStatus.VERIFIED:
        raise InvalidSettlementStatusError("Settlement is already verified")
    amount = quantize(validate_amount(amount, "Payment amount"))
    if amount == 0:
        raise ValidationError("Payment amount must be greater than zero")

    paid = _total_paid(settlement)
    if paid + amount > Decimal(settlement.amount) + MONEY_TOLERANCE:
        raise ValidationError(
            f"Payment exceeds the remaining amount ({quantize(Decimal(settlement.amount) - paid)})"
        )

    old_status = settlement.status
    payment = Payment(
        amount=amount,
        paid_at=paid_at or datetime.utcnow(),
        payment_method=payment_method,
        payment_reference=payment_reference,
        notes=notes,
        recorded_by_id=actor_id,
    )
    settlement.payments.append(payment)
    settlement.status = _status_for(settlement, paid + amount)
    db.flush()

    record_event(
        db, audit, "Settlement", settlement.id, EventType.PAYMENT_RECORDED, actor_id,
        {
            "payment": serialize_payment(payment),
            "oldStatus": old_status.value,
            "newStatus": settlement.status.value,
            "totalPaid": str(paid + amount),
        },
    )
    return payment


def delete_payment(
    db: Session,
    payment_id: str,
    actor_id: str,
    audit: AuditSink | None = None,
) -> Settlement:
    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if not payment:
        raise NotFoundError("Payment", payment_id)
    settlement = payment.settlement
    if settlement.status == SettlementStatus.VERIFIED:
        raise InvalidSettlementStatusError("Cannot remove a payment from a verified settlement")

    removed = serialize_payment(payment)
    old_status = settlement.status
    settlement.payments.remove(payment)
    db.delete(payment)
    settlement.status = _status_for(settlement, _total_paid(settlement))
    db.flush()

    record_event(
        db, audit, "Settlement", settlement.id, EventType.PAYMENT_DELETED, actor_id,
        {"payment": removed, "oldStatus": old_status.value, "newStatus": settlement.status.value},
    )
    return settlement


def verify_settlement(
    db: Session,
    settlement_id: str,
    actor_id: str,
    audit: AuditSink | None = None,
) -> Settlement:
    """Confirm receipt of a fully paid settlement."""
    settlement = get_settlement(db, settlement_id)
    if settlement.status != SettlementStatus.PAID:
        raise InvalidSettlementStatusError(
            f"Only paid settlements can be verified (status is {settlement.status.value})"
        )
    settlement.status = SettlementStatus.VERIFIED
    db.flush()

    record_event(
        db, audit, "Settlement", settlement.id, EventType.SETTLEMENT_VERIFIED, actor_id,
        {"settlement": serialize_settlement(settlement)},
    )
    return settlement
