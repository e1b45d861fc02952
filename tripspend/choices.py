"""Group menu choices and the itemised expenses built from them."""
import enum
import logging
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from tripspend.audit import AuditSink, EventType, record_event
from tripspend.currency import ZERO, quantize
from tripspend.deps import get_trip, verify_member
from tripspend.exceptions import ChoiceClosedError, NotFoundError, StockLimitError, ValidationError
from tripspend.expenses import create_expense
from tripspend.ledger import add_item
from tripspend.models import (
    Choice,
    ChoiceItem,
    ChoiceSelection,
    ChoiceSelectionLine,
    ChoiceStatus,
    Expense,
    Member,
)
from tripspend.schemas import SelectionLineIn

logger = logging.getLogger("tripspend")


class ExpenseMode(str, enum.Enum):
    BY_ITEM = "BY_ITEM"  # one item per member per menu item
    BY_USER = "BY_USER"  # one item per member's whole order


def get_choice(db: Session, choice_id: str) -> Choice:
    choice = db.query(Choice).filter(Choice.id == choice_id).first()
    if not choice:
        raise NotFoundError("Choice", choice_id)
    return choice


def _ensure_selectable(choice: Choice) -> None:
    if choice.status == ChoiceStatus.CLOSED:
        raise ChoiceClosedError("Choice is closed for selections")
    if choice.archived_at is not None:
        raise ChoiceClosedError("Choice is archived")
    if choice.deadline and datetime.utcnow() > choice.deadline:
        raise ChoiceClosedError("Choice deadline has passed")


def _selected_quantities(db: Session, item_id: str, exclude_member_id: str | None = None) -> int:
    query = (
        db.query(ChoiceSelectionLine, ChoiceSelection)
        .join(ChoiceSelection, ChoiceSelectionLine.selection_id == ChoiceSelection.id)
        .filter(ChoiceSelectionLine.item_id == item_id)
    )
    if exclude_member_id is not None:
        query = query.filter(ChoiceSelection.member_id != exclude_member_id)
    return sum(line.quantity for line, _ in query.all())


def select_items(
    db: Session,
    choice_id: str,
    member_id: str,
    lines: list,
    actor_id: str,
    audit: AuditSink | None = None,
) -> ChoiceSelection:
    """Replace a member's selection on a choice.

    Each item's per-user cap applies to the member's total quantity; the
    total cap applies to that quantity plus everyone else's.
    """
    choice = get_choice(db, choice_id)
    _ensure_selectable(choice)
    verify_member(db, choice.trip_id, member_id)
    lines = [SelectionLineIn.model_validate(line) for line in lines]

    requested: dict[str, int] = defaultdict(int)
    for line in lines:
        requested[line.item_id] += line.quantity

    for item_id, quantity in requested.items():
        item = db.query(ChoiceItem).filter(
            ChoiceItem.id == item_id, ChoiceItem.choice_id == choice.id
        ).first()
        if not item:
            raise NotFoundError("ChoiceItem", item_id)
        if not item.is_active:
            raise ValidationError(f'Item "{item.name}" is no longer active')
        if item.max_per_user and quantity > item.max_per_user:
            raise StockLimitError(f'Item "{item.name}" exceeds per-user limit of {item.max_per_user}')
        if item.max_total:
            current = _selected_quantities(db, item.id, exclude_member_id=member_id)
            if current + quantity > item.max_total:
                logger.info(
                    "Stock limit reached",
                    extra={"extra_data": {"item_id": item.id, "current": current, "requested": quantity}},
                )
                raise StockLimitError(
                    f'Item "{item.name}" would exceed total stock limit of {item.max_total} '
                    f"(current: {current}, requested: {quantity})"
                )

    selection = db.query(ChoiceSelection).filter(
        ChoiceSelection.choice_id == choice.id, ChoiceSelection.member_id == member_id
    ).first()
    is_new = selection is None
    if is_new:
        selection = ChoiceSelection(choice_id=choice.id, member_id=member_id)
        db.add(selection)
    else:
        selection.lines.clear()
        selection.updated_at = datetime.utcnow()
    for line in lines:
        selection.lines.append(
            ChoiceSelectionLine(item_id=line.item_id, quantity=line.quantity, note=line.note)
        )
    db.flush()

    record_event(
        db, audit, "ChoiceSelection", selection.id,
        EventType.CHOICE_SELECTION_CREATED if is_new else EventType.CHOICE_SELECTION_UPDATED,
        actor_id,
        {
            "tripId": choice.trip_id,
            "choiceId": choice.id,
            "lines": [line.model_dump(mode="json") for line in lines],
        },
    )
    return selection


def member_orders(db: Session, choice_id: str) -> dict[str, list[tuple[ChoiceItem, int]]]:
    """Priced quantities per member, merged per item, in item order."""
    choice = get_choice(db, choice_id)
    items = {
        item.id: item
        for item in db.query(ChoiceItem)
        .filter(ChoiceItem.choice_id == choice.id)
        .order_by(ChoiceItem.created_at, ChoiceItem.id)
        .all()
    }
    quantities: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    rows = (
        db.query(ChoiceSelectionLine, ChoiceSelection)
        .join(ChoiceSelection, ChoiceSelectionLine.selection_id == ChoiceSelection.id)
        .filter(ChoiceSelection.choice_id == choice.id)
        .order_by(ChoiceSelection.member_id)
        .all()
    )
    for line, selection in rows:
        item = items.get(line.item_id)
        if item is None or not item.price:
            continue
        quantities[selection.member_id][item.id] += line.quantity

    orders = {}
    for member_id, per_item in quantities.items():
        orders[member_id] = [(item, per_item[item.id]) for item in items.values() if item.id in per_item]
    return orders


def create_expense_from_choice(
    db: Session,
    choice_id: str,
    payer_id: str,
    actor_id: str,
    mode: ExpenseMode = ExpenseMode.BY_ITEM,
    audit: AuditSink | None = None,
) -> Expense:
    """Turn a choice's selections into an itemised expense paid by ``payer_id``.

    Every member ends up with one assignment worth the total of what they ordered.
    """
    choice = get_choice(db, choice_id)
    trip = get_trip(db, choice.trip_id)
    mode = ExpenseMode(mode)
    orders = member_orders(db, choice.id)

    grand_total = sum(
        (Decimal(item.price) * qty for lines in orders.values() for item, qty in lines), ZERO
    )
    if grand_total == 0:
        raise ValidationError("Cannot create an expense with zero total")

    expense = create_expense(
        db,
        trip.id,
        payer_id,
        f"{choice.name} - Menu Order",
        quantize(grand_total, trip.base_currency),
        actor_id,
        currency=trip.base_currency,
        expense_date=date.today(),
        notes=f"Auto-generated from choice: {choice.name}",
        audit=audit,
    )

    for member_id, lines in orders.items():
        if mode == ExpenseMode.BY_ITEM:
            for item, qty in lines:
                add_item(
                    db, expense.id, item.name, Decimal(item.price) * qty, actor_id,
                    member_id=member_id, description=f"Qty: {qty}", audit=audit,
                )
        else:
            member = db.query(Member).filter(Member.id == member_id).first()
            name = member.name if member else member_id
            total = sum((Decimal(item.price) * qty for item, qty in lines), ZERO)
            summary = ", ".join(f"{qty}x {item.name}" for item, qty in lines)
            add_item(
                db, expense.id, f"{name}'s order", total, actor_id,
                member_id=member_id, description=summary[:280], audit=audit,
            )

    logger.info(
        "Expense created from choice",
        extra={"extra_data": {"choice_id": choice.id, "expense_id": expense.id, "mode": mode.value}},
    )
    return expense
