"""Balance computation and debt simplification."""
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from tripspend.config import MONEY_TOLERANCE
from tripspend.currency import ZERO, quantize
from tripspend.deps import get_trip
from tripspend.exceptions import ImbalancedLedgerError
from tripspend.models import Assignment, Expense
from tripspend.schemas import Balance, PlannedSettlement, TripBalanceSummary

DebtAges = dict[tuple[str, str], date]


def aggregate_balances(
    expenses: list[Expense],
    assignments: list[Assignment],
) -> tuple[list[Balance], DebtAges]:
    """Credit each payer and debit each assignee, in the base currency.

    Returns balances sorted by member id, and the oldest expense date behind
    every (debtor, creditor) pair.
    """
    paid: dict[str, Decimal] = {}
    owed: dict[str, Decimal] = {}
    debt_ages: DebtAges = {}
    by_id = {e.id: e for e in expenses}

    def ensure(member_id: str) -> None:
        paid.setdefault(member_id, ZERO)
        owed.setdefault(member_id, ZERO)

    for expense in expenses:
        ensure(expense.paid_by_id)
        paid[expense.paid_by_id] += Decimal(expense.normalized_amount)

    for assignment in assignments:
        expense = by_id.get(assignment.expense_id)
        if expense is None:
            continue
        share = Decimal(assignment.normalized_share_amount)
        ensure(assignment.member_id)
        owed[assignment.member_id] += share

        if assignment.member_id != expense.paid_by_id and share > 0:
            key = (assignment.member_id, expense.paid_by_id)
            if key not in debt_ages or expense.date < debt_ages[key]:
                debt_ages[key] = expense.date

    balances = [
        Balance(
            member_id=member_id,
            total_paid=quantize(paid[member_id]),
            total_owed=quantize(owed[member_id]),
            net_balance=quantize(paid[member_id] - owed[member_id]),
        )
        for member_id in sorted(paid)
    ]
    return balances, debt_ages


def trip_ledger(db: Session, trip_id: str) -> tuple[list[Expense], list[Assignment]]:
    expenses = (
        db.query(Expense)
        .filter(Expense.trip_id == trip_id, Expense.deleted_at.is_(None))
        .order_by(Expense.date, Expense.id)
        .all()
    )
    expense_ids = [e.id for e in expenses]
    if not expense_ids:
        return expenses, []
    assignments = (
        db.query(Assignment)
        .filter(Assignment.expense_id.in_(expense_ids))
        .order_by(Assignment.expense_id, Assignment.member_id)
        .all()
    )
    return expenses, assignments


def compute_balances(db: Session, trip_id: str) -> list[Balance]:
    """Net balance per member over the trip's non-deleted expenses.

    Positive means the member is owed money, negative means they owe.
    """
    trip = get_trip(db, trip_id)
    balances, _ = aggregate_balances(*trip_ledger(db, trip.id))
    return balances


def _largest(parties: list[dict]) -> dict:
    return min(parties, key=lambda p: (-p["amount"], p["id"]))


def compute_settlement_plan(
    balances: list[Balance],
    debt_ages: DebtAges | None = None,
) -> list[PlannedSettlement]:
    """Greedy debt simplification.

    Repeatedly matches the largest creditor with the largest debtor (ties go
    to the lower member id) and settles the smaller of the two amounts.
    Produces at most N-1 transfers whose total equals the positive balances.
    """
    debt_ages = debt_ages or {}
    total = sum((b.net_balance for b in balances), ZERO)
    if abs(total) > MONEY_TOLERANCE * max(len(balances), 1):
        raise ImbalancedLedgerError(total)

    creditors = []
    debtors = []
    for b in balances:
        if b.net_balance > MONEY_TOLERANCE:
            creditors.append({"id": b.member_id, "amount": b.net_balance})
        elif b.net_balance < -MONEY_TOLERANCE:
            debtors.append({"id": b.member_id, "amount": -b.net_balance})

    plan = []
    while creditors and debtors:
        creditor = _largest(creditors)
        debtor = _largest(debtors)
        transfer = quantize(min(creditor["amount"], debtor["amount"]))
        if transfer > 0:
            plan.append(PlannedSettlement(
                from_member_id=debtor["id"],
                to_member_id=creditor["id"],
                amount=transfer,
                oldest_debt_date=debt_ages.get((debtor["id"], creditor["id"])),
            ))
        creditor["amount"] -= transfer
        debtor["amount"] -= transfer
        if creditor["amount"] < MONEY_TOLERANCE:
            creditors.remove(creditor)
        if debtor["amount"] < MONEY_TOLERANCE:
            debtors.remove(debtor)

    return plan


def trip_balance_summary(db: Session, trip_id: str) -> TripBalanceSummary:
    trip = get_trip(db, trip_id)
    expenses, assignments = trip_ledger(db, trip.id)
    balances, debt_ages = aggregate_balances(expenses, assignments)
    return TripBalanceSummary(
        trip_id=trip.id,
        base_currency=trip.base_currency,
        total_spent=quantize(sum((Decimal(e.normalized_amount) for e in expenses), ZERO), trip.base_currency),
        balances=balances,
        settlements=compute_settlement_plan(balances, debt_ages),
        calculated_at=datetime.utcnow(),
    )
