from decimal import Decimal

from tripspend.models import Assignment, Expense, ExpenseItem, Payment, Settlement


def _money(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def serialize_assignment(assignment: Assignment | None) -> dict | None:
    if assignment is None:
        return None
    return {
        "id": str(assignment.id),
        "memberId": str(assignment.member_id),
        "itemId": str(assignment.item_id) if assignment.item_id is not None else None,
        "shareAmount": _money(assignment.share_amount),
        "normalizedShareAmount": _money(assignment.normalized_share_amount),
        "splitType": assignment.split_type.value if assignment.split_type else None,
        "splitValue": _money(assignment.split_value),
    }


def serialize_item(item: ExpenseItem | None) -> dict | None:
    if item is None:
        return None
    return {
        "id": str(item.id),
        "name": item.name,
        "cost": _money(item.cost),
        "assignedMemberId": str(item.assigned_member_id) if item.assigned_member_id is not None else None,
    }


def serialize_expense(expense: Expense) -> dict:
    return {
        "id": str(expense.id),
        "description": expense.description,
        "amount": _money(expense.amount),
        "currency": expense.currency,
        "fxRate": _money(expense.fx_rate),
        "normalizedAmount": _money(expense.normalized_amount),
        "paidBy": str(expense.paid_by_id),
        "status": expense.status.value if expense.status else None,
        "date": expense.date.isoformat() if expense.date else None,
    }


def serialize_settlement(settlement: Settlement) -> dict:
    return {
        "id": str(settlement.id),
        "from": str(settlement.from_member_id),
        "to": str(settlement.to_member_id),
        "amount": _money(settlement.amount),
        "status": settlement.status.value if settlement.status else None,
    }


def serialize_payment(payment: Payment) -> dict:
    return {
        "id": str(payment.id),
        "settlementId": str(payment.settlement_id),
        "amount": _money(payment.amount),
        "paidAt": payment.paid_at.isoformat(),
        "paymentMethod": payment.payment_method,
        "paymentReference": payment.payment_reference,
    }
