"""
Assignment ledger.

Keeps every expense's assignments consistent with its items and amount.
Each (expense, member) pair has at most one Assignment row, which is in one
of three states:

    ABSENT        no row
    FREESTANDING  a row without an item link (whole-expense split, or kept
                  at zero after the member's last item went away)
    ITEM_LINKED   a row whose share is the summed cost of every item the
                  member holds on the expense

Every change goes through ``transition`` so the allowed moves between those
states are written down in one table instead of being implied by branches.

Operations take the caller's session, flush their changes and never commit:
wrap them in ``database.unit_of_work`` so a failure rolls everything back.
Each public mutation records exactly one audit entry.
"""
import enum
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from tripspend.audit import AuditSink, EventType, record_event
from tripspend.config import MONEY_TOLERANCE
from tripspend.currency import ZERO, normalize_amount, normalize_shares, quantize, validate_amount
from tripspend.deps import get_expense, get_item, get_open_expense, get_trip, verify_member
from tripspend.exceptions import (
    DuplicateAssignmentError,
    InvalidTransitionError,
    NotFoundError,
    OverAssignedWarning,
    ValidationError,
)
from tripspend.models import Assignment, Expense, ExpenseItem, SplitType
from tripspend.schemas import SpendSummary
from tripspend.serializers import serialize_assignment, serialize_item
from tripspend.splits import calculate_split

logger = logging.getLogger("tripspend")

UNSET = object()


class AssignmentState(str, enum.Enum):
    ABSENT = "ABSENT"
    FREESTANDING = "FREESTANDING"
    ITEM_LINKED = "ITEM_LINKED"


class AssignmentEvent(str, enum.Enum):
    SET_SHARE = "SET_SHARE"
    LINK = "LINK"
    REPRICE = "REPRICE"
    UNLINK = "UNLINK"
    REMOVE = "REMOVE"


_ABSENT = AssignmentState.ABSENT
_FREE = AssignmentState.FREESTANDING
_LINKED = AssignmentState.ITEM_LINKED

# (state, event) -> next state. UNLINK out of ITEM_LINKED depends on whether
# the member still holds other items, so it maps to a pair.
_TRANSITIONS = {
    (_ABSENT, AssignmentEvent.SET_SHARE): _FREE,
    (_FREE, AssignmentEvent.SET_SHARE): _FREE,
    (_LINKED, AssignmentEvent.SET_SHARE): _LINKED,
    (_ABSENT, AssignmentEvent.LINK): _LINKED,
    (_FREE, AssignmentEvent.LINK): _LINKED,
    (_LINKED, AssignmentEvent.LINK): _LINKED,
    (_LINKED, AssignmentEvent.REPRICE): _LINKED,
    (_LINKED, AssignmentEvent.UNLINK): (_LINKED, _FREE),
    (_FREE, AssignmentEvent.REMOVE): _ABSENT,
    (_LINKED, AssignmentEvent.REMOVE): _ABSENT,
}


def assignment_state(assignment: Assignment | None) -> AssignmentState:
    if assignment is None:
        return AssignmentState.ABSENT
    if assignment.item_id is None:
        return AssignmentState.FREESTANDING
    return AssignmentState.ITEM_LINKED


def transition(
    state: AssignmentState,
    event: AssignmentEvent,
    items_remaining: bool = False,
) -> AssignmentState:
    """Return the state an assignment moves to, or raise if the move is not allowed."""
    target = _TRANSITIONS.get((state, event))
    if target is None:
        raise InvalidTransitionError(f"Cannot {event.value.lower()} an assignment that is {state.value.lower()}")
    if isinstance(target, tuple):
        return target[0] if items_remaining else target[1]
    return target


@dataclass
class LedgerResult:
    """Outcome of a ledger mutation."""
    expense: Expense
    assignment: Assignment | None = None
    state: AssignmentState | None = None
    item: ExpenseItem | None = None
    warning: OverAssignedWarning | None = None

    @property
    def over_assigned(self) -> bool:
        return self.warning is not None


# --- Row helpers ---

def _base_currency(db: Session, expense: Expense) -> str:
    return get_trip(db, expense.trip_id).base_currency


def find_assignment(db: Session, expense_id: str, member_id: str) -> Assignment | None:
    rows = db.query(Assignment).filter(
        Assignment.expense_id == expense_id, Assignment.member_id == member_id
    ).all()
    if len(rows) > 1:
        logger.error(
            "Duplicate assignments",
            extra={"extra_data": {"expense_id": expense_id, "member_id": member_id, "count": len(rows)}},
        )
        raise DuplicateAssignmentError(expense_id, member_id)
    return rows[0] if rows else None


def _expense_assignments(db: Session, expense_id: str) -> list[Assignment]:
    return (
        db.query(Assignment)
        .filter(Assignment.expense_id == expense_id)
        .order_by(Assignment.member_id)
        .all()
    )


def _expense_items(db: Session, expense_id: str) -> list[ExpenseItem]:
    return (
        db.query(ExpenseItem)
        .filter(ExpenseItem.expense_id == expense_id)
        .order_by(ExpenseItem.created_at, ExpenseItem.id)
        .all()
    )


def _member_items(db: Session, expense_id: str, member_id: str) -> list[ExpenseItem]:
    return [i for i in _expense_items(db, expense_id) if i.assigned_member_id == member_id]


def _apply_share(assignment: Assignment, share: Decimal, expense: Expense, base_currency: str) -> None:
    assignment.share_amount = quantize(share, expense.currency)
    assignment.normalized_share_amount = normalize_amount(assignment.share_amount, expense.fx_rate, base_currency)


def renormalize_shares(db: Session, expense: Expense, base_currency: str | None = None) -> None:
    """Re-derive every normalized share so they sum to the normalized assigned total.

    A fully assigned expense therefore debits exactly its ``normalized_amount``.
    """
    base_currency = base_currency or _base_currency(db, expense)
    assignments = _expense_assignments(db, expense.id)
    normalized = normalize_shares([a.share_amount for a in assignments], expense.fx_rate, base_currency)
    for assignment, value in zip(assignments, normalized):
        assignment.normalized_share_amount = value
    db.flush()


def _assigned_total(db: Session, expense_id: str) -> Decimal:
    return sum((Decimal(a.share_amount) for a in _expense_assignments(db, expense_id)), ZERO)


def _check_over_assigned(db: Session, expense: Expense) -> OverAssignedWarning | None:
    total = _assigned_total(db, expense.id)
    amount = Decimal(expense.amount)
    if total - amount > MONEY_TOLERANCE:
        warning = OverAssignedWarning(expense.id, amount, total)
        logger.warning(
            "Expense over-assigned",
            extra={"extra_data": {
                "expense_id": expense.id,
                "amount": str(amount),
                "assigned_total": str(total),
            }},
        )
        return warning
    return None


def _set_expense_amount(db: Session, expense: Expense, amount: Decimal) -> None:
    expense.amount = quantize(amount, expense.currency)
    expense.normalized_amount = normalize_amount(expense.amount, expense.fx_rate, _base_currency(db, expense))


def _items_total(items: list[ExpenseItem]) -> Decimal:
    return sum((Decimal(i.cost) for i in items), ZERO)


def _sync_member(
    db: Session,
    expense: Expense,
    member_id: str,
    event: AssignmentEvent,
    preferred_item_id: str | None = None,
) -> tuple[Assignment | None, AssignmentState]:
    """Re-derive one member's assignment from the items they hold."""
    assignment = find_assignment(db, expense.id, member_id)
    items = _member_items(db, expense.id, member_id)
    state = transition(assignment_state(assignment), event, items_remaining=bool(items))
    base_currency = _base_currency(db, expense)

    if state is AssignmentState.ITEM_LINKED:
        item_ids = [i.id for i in items]
        if preferred_item_id in item_ids:
            link_id = preferred_item_id
        elif assignment is not None and assignment.item_id in item_ids:
            link_id = assignment.item_id
        else:
            link_id = item_ids[-1]
        if assignment is None:
            assignment = Assignment(expense_id=expense.id, member_id=member_id)
            db.add(assignment)
        assignment.item_id = link_id
        assignment.split_type = SplitType.EXACT
        assignment.split_value = None
        _apply_share(assignment, _items_total(items), expense, base_currency)
    elif state is AssignmentState.FREESTANDING:
        # Last item gone: keep the member on the expense without an owed amount
        assignment.item_id = None
        assignment.split_type = SplitType.EXACT
        assignment.split_value = None
        _apply_share(assignment, ZERO, expense, base_currency)

    db.flush()
    return assignment, state


def _release_item(db: Session, expense: Expense, item: ExpenseItem) -> tuple[str | None, dict | None, dict | None]:
    """Take an item away from its holder and re-derive the holder's share.

    Returns (holder id, holder assignment before, holder assignment after).
    """
    holder = item.assigned_member_id
    if holder is None:
        return None, None, None
    before = serialize_assignment(find_assignment(db, expense.id, holder))
    item.assigned_member_id = None
    db.flush()
    assignment, _ = _sync_member(db, expense, holder, AssignmentEvent.UNLINK)
    return holder, before, serialize_assignment(assignment)


def _link_item(db: Session, expense: Expense, item: ExpenseItem, member_id: str) -> dict:
    """Give ``item`` to ``member_id``. Returns the audit payload fragment."""
    verify_member(db, expense.trip_id, member_id)
    previous = item.assigned_member_id
    existing = find_assignment(db, expense.id, member_id)
    # Validate before touching rows
    transition(assignment_state(existing), AssignmentEvent.LINK)
    before = serialize_assignment(existing)

    moved_from = None
    if previous is not None and previous != member_id:
        holder, holder_before, holder_after = _release_item(db, expense, item)
        moved_from = {"memberId": holder, "before": holder_before, "after": holder_after}

    item.assigned_member_id = member_id
    db.flush()
    assignment, state = _sync_member(db, expense, member_id, AssignmentEvent.LINK, preferred_item_id=item.id)
    return {
        "assignment": assignment,
        "state": state,
        "created": existing is None,
        "before": before,
        "movedFrom": moved_from,
    }


def _recalculate_if_itemised(db: Session, expense: Expense) -> tuple[str, str]:
    old_amount = str(expense.amount)
    items = _expense_items(db, expense.id)
    if items:
        _set_expense_amount(db, expense, _items_total(items))
        db.flush()
    return old_amount, str(expense.amount)


# --- Whole-expense shares ---

def set_whole_expense_share(
    db: Session,
    expense_id: str,
    member_id: str,
    share_amount,
    split_type: SplitType,
    actor_id: str,
    split_value=None,
    audit: AuditSink | None = None,
) -> LedgerResult:
    """Create or update the single assignment for (expense, member).

    The write goes through even when the expense ends up over-assigned;
    the result then carries an ``OverAssignedWarning``.
    """
    expense = get_open_expense(db, expense_id)
    verify_member(db, expense.trip_id, member_id)
    share = validate_amount(share_amount, "Share amount")
    split_type = SplitType(split_type)

    assignment = find_assignment(db, expense.id, member_id)
    state = transition(assignment_state(assignment), AssignmentEvent.SET_SHARE)
    before = serialize_assignment(assignment)

    if assignment is None:
        assignment = Assignment(expense_id=expense.id, member_id=member_id)
        db.add(assignment)
    assignment.split_type = split_type
    assignment.split_value = split_value
    _apply_share(assignment, share, expense, _base_currency(db, expense))
    db.flush()

    renormalize_shares(db, expense)
    warning = _check_over_assigned(db, expense)
    record_event(
        db, audit, "Assignment", assignment.id,
        EventType.ASSIGNMENT_CREATED if before is None else EventType.ASSIGNMENT_UPDATED,
        actor_id,
        {
            "expenseId": expense.id,
            "memberId": member_id,
            "before": before,
            "after": serialize_assignment(assignment),
            "overAssigned": warning is not None,
        },
    )
    return LedgerResult(expense=expense, assignment=assignment, state=state, warning=warning)


def split_expense(
    db: Session,
    expense_id: str,
    split_type: SplitType,
    member_ids: list[str],
    actor_id: str,
    split_values: dict | None = None,
    audit: AuditSink | None = None,
) -> LedgerResult:
    """Split the whole expense amount among ``member_ids``.

    Freestanding assignments of members left out are removed. Item-linked
    assignments of members left out stay; any overlap shows up as an
    over-assignment warning.
    """
    expense = get_open_expense(db, expense_id)
    split_type = SplitType(split_type)
    if not member_ids:
        raise ValidationError("At least one member is required for a split")
    for mid in member_ids:
        verify_member(db, expense.trip_id, mid)
    values = split_values or {}
    shares = calculate_split(Decimal(expense.amount), split_type, member_ids, values, expense.currency)
    base_currency = _base_currency(db, expense)

    before = [serialize_assignment(a) for a in _expense_assignments(db, expense.id)]
    for assignment in _expense_assignments(db, expense.id):
        if assignment.member_id in shares:
            continue
        if assignment_state(assignment) is AssignmentState.FREESTANDING:
            transition(AssignmentState.FREESTANDING, AssignmentEvent.REMOVE)
            db.delete(assignment)
    db.flush()

    for mid in member_ids:
        assignment = find_assignment(db, expense.id, mid)
        transition(assignment_state(assignment), AssignmentEvent.SET_SHARE)
        if assignment is None:
            assignment = Assignment(expense_id=expense.id, member_id=mid)
            db.add(assignment)
        assignment.split_type = split_type
        assignment.split_value = values.get(mid) if split_type in (SplitType.PERCENTAGE, SplitType.SHARE) else None
        _apply_share(assignment, shares[mid], expense, base_currency)
    db.flush()

    renormalize_shares(db, expense)
    warning = _check_over_assigned(db, expense)
    record_event(
        db, audit, "Expense", expense.id, EventType.ASSIGNMENTS_SPLIT, actor_id,
        {
            "splitType": split_type.value,
            "memberIds": list(member_ids),
            "before": before,
            "after": [serialize_assignment(a) for a in _expense_assignments(db, expense.id)],
            "overAssigned": warning is not None,
        },
    )
    return LedgerResult(expense=expense, warning=warning)


def remainder(db: Session, expense_id: str) -> Decimal:
    """Amount still unassigned: expense amount minus the sum of shares."""
    expense = get_expense(db, expense_id)
    return quantize(Decimal(expense.amount) - _assigned_total(db, expense.id), expense.currency)


def split_remainder(
    db: Session,
    expense_id: str,
    member_ids: list[str],
    actor_id: str,
    audit: AuditSink | None = None,
) -> LedgerResult:
    """Spread the unassigned remainder equally over ``member_ids``, on top of their current shares."""
    expense = get_open_expense(db, expense_id)
    if not member_ids:
        raise ValidationError("At least one member is required to split the remainder")
    for mid in member_ids:
        verify_member(db, expense.trip_id, mid)
    left = remainder(db, expense.id)
    if left <= 0:
        raise ValidationError(f"Nothing left to split on expense {expense.id} (remainder {left})")

    extras = calculate_split(left, SplitType.EQUAL, member_ids, currency=expense.currency)
    base_currency = _base_currency(db, expense)
    before = [serialize_assignment(a) for a in _expense_assignments(db, expense.id)]
    for mid in member_ids:
        assignment = find_assignment(db, expense.id, mid)
        transition(assignment_state(assignment), AssignmentEvent.SET_SHARE)
        if assignment is None:
            assignment = Assignment(expense_id=expense.id, member_id=mid, split_type=SplitType.EQUAL)
            db.add(assignment)
            current = ZERO
        else:
            current = Decimal(assignment.share_amount)
        _apply_share(assignment, current + extras[mid], expense, base_currency)
    db.flush()

    renormalize_shares(db, expense)
    warning = _check_over_assigned(db, expense)
    record_event(
        db, audit, "Expense", expense.id, EventType.ASSIGNMENTS_SPLIT, actor_id,
        {
            "action": "split_remainder",
            "remainder": str(left),
            "memberIds": list(member_ids),
            "before": before,
            "after": [serialize_assignment(a) for a in _expense_assignments(db, expense.id)],
        },
    )
    return LedgerResult(expense=expense, warning=warning)


def remove_member_from_expense(
    db: Session,
    expense_id: str,
    member_id: str,
    actor_id: str,
    audit: AuditSink | None = None,
) -> LedgerResult:
    """Delete the member's assignment; items they held become unassigned."""
    expense = get_open_expense(db, expense_id)
    assignment = find_assignment(db, expense.id, member_id)
    if assignment is None:
        raise NotFoundError("Assignment", f"{expense_id}/{member_id}")
    state = transition(assignment_state(assignment), AssignmentEvent.REMOVE)
    before = serialize_assignment(assignment)

    released = _member_items(db, expense.id, member_id)
    for item in released:
        item.assigned_member_id = None
    db.delete(assignment)
    db.flush()
    renormalize_shares(db, expense)

    record_event(
        db, audit, "Assignment", before["id"], EventType.ASSIGNMENT_DELETED, actor_id,
        {
            "expenseId": expense.id,
            "memberId": member_id,
            "before": before,
            "releasedItemIds": [i.id for i in released],
        },
    )
    return LedgerResult(expense=expense, state=state)


# --- Itemised expenses ---

def link_item_to_member(
    db: Session,
    expense_id: str,
    item_id: str,
    member_id: str,
    actor_id: str,
    audit: AuditSink | None = None,
) -> LedgerResult:
    """Assign an item to a member.

    The member keeps a single assignment whose share is the summed cost of
    all items they hold; a freestanding assignment is converted in place.
    If the item belonged to someone else, that member's share is re-derived.
    """
    expense = get_open_expense(db, expense_id)
    item = get_item(db, expense, item_id)
    linked = _link_item(db, expense, item, member_id)
    assignment = linked["assignment"]

    renormalize_shares(db, expense)
    warning = _check_over_assigned(db, expense)
    if linked["movedFrom"] is not None:
        event_type = EventType.ASSIGNMENT_MOVED
    elif linked["created"]:
        event_type = EventType.ASSIGNMENT_CREATED
    else:
        event_type = EventType.ASSIGNMENT_UPDATED
    record_event(
        db, audit, "Assignment", assignment.id, event_type, actor_id,
        {
            "expenseId": expense.id,
            "itemId": item.id,
            "memberId": member_id,
            "before": linked["before"],
            "after": serialize_assignment(assignment),
            "movedFrom": linked["movedFrom"],
        },
    )
    return LedgerResult(expense=expense, assignment=assignment, state=linked["state"], item=item, warning=warning)


def add_item(
    db: Session,
    expense_id: str,
    name: str,
    cost,
    actor_id: str,
    member_id: str | None = None,
    description: str | None = None,
    audit: AuditSink | None = None,
) -> LedgerResult:
    """Add a receipt line, optionally assigned, and re-total the expense from its items."""
    expense = get_open_expense(db, expense_id)
    cost = quantize(validate_amount(cost, "Item cost"), expense.currency)

    item = ExpenseItem(expense_id=expense.id, name=name, description=description, cost=cost)
    db.add(item)
    db.flush()

    linked = _link_item(db, expense, item, member_id) if member_id is not None else None
    old_amount, new_amount = _recalculate_if_itemised(db, expense)

    renormalize_shares(db, expense)
    warning = _check_over_assigned(db, expense)
    record_event(
        db, audit, "ExpenseItem", item.id, EventType.SPEND_ITEM_CREATED, actor_id,
        {
            "expenseId": expense.id,
            "item": serialize_item(item),
            "assignmentBefore": linked["before"] if linked else None,
            "assignmentAfter": serialize_assignment(linked["assignment"]) if linked else None,
            "oldAmount": old_amount,
            "newAmount": new_amount,
        },
    )
    return LedgerResult(
        expense=expense,
        assignment=linked["assignment"] if linked else None,
        state=linked["state"] if linked else None,
        item=item,
        warning=warning,
    )


def update_item(
    db: Session,
    expense_id: str,
    item_id: str,
    actor_id: str,
    name: str | None = None,
    cost=None,
    member_id=UNSET,
    audit: AuditSink | None = None,
) -> LedgerResult:
    """Rename, re-cost or reassign an item. ``member_id=None`` unassigns it."""
    expense = get_open_expense(db, expense_id)
    item = get_item(db, expense, item_id)
    before_item = serialize_item(item)
    holder_before = item.assigned_member_id
    assignment_before = serialize_assignment(find_assignment(db, expense.id, holder_before)) if holder_before else None

    if name is not None:
        item.name = name
    if cost is not None:
        item.cost = quantize(validate_amount(cost, "Item cost"), expense.currency)
        db.flush()
        if holder_before is not None and (member_id is UNSET or member_id == holder_before):
            _sync_member(db, expense, holder_before, AssignmentEvent.REPRICE, preferred_item_id=item.id)

    assignment = None
    state = None
    if member_id is not UNSET and member_id != holder_before:
        if member_id is None:
            _release_item(db, expense, item)
        else:
            linked = _link_item(db, expense, item, member_id)
            assignment, state = linked["assignment"], linked["state"]
    elif item.assigned_member_id is not None:
        assignment = find_assignment(db, expense.id, item.assigned_member_id)
        state = assignment_state(assignment)

    old_amount, new_amount = _recalculate_if_itemised(db, expense)
    renormalize_shares(db, expense)
    warning = _check_over_assigned(db, expense)
    record_event(
        db, audit, "ExpenseItem", item.id, EventType.SPEND_ITEM_UPDATED, actor_id,
        {
            "expenseId": expense.id,
            "before": before_item,
            "after": serialize_item(item),
            "assignmentBefore": assignment_before,
            "assignmentAfter": serialize_assignment(assignment),
            "oldAmount": old_amount,
            "newAmount": new_amount,
        },
    )
    return LedgerResult(expense=expense, assignment=assignment, state=state, item=item, warning=warning)


def unlink_item(
    db: Session,
    expense_id: str,
    item_id: str,
    actor_id: str,
    keep_member: bool = True,
    audit: AuditSink | None = None,
) -> LedgerResult:
    """Delete an item and settle its holder's assignment.

    A holder with other items keeps an item-linked share of what remains.
    A holder left with no items keeps a zero-amount freestanding assignment
    unless ``keep_member`` is False, in which case the assignment is deleted.
    """
    expense = get_open_expense(db, expense_id)
    item = get_item(db, expense, item_id)
    removed = serialize_item(item)

    holder, assignment_before, _ = _release_item(db, expense, item)
    assignment = None
    state = None
    if holder is not None:
        assignment = find_assignment(db, expense.id, holder)
        state = assignment_state(assignment)
        if not keep_member and state is AssignmentState.FREESTANDING:
            state = transition(state, AssignmentEvent.REMOVE)
            db.delete(assignment)
            assignment = None

    # Nothing else may keep pointing at the deleted item
    for other in db.query(Assignment).filter(Assignment.item_id == item.id).all():
        other.item_id = None
    db.delete(item)
    db.flush()

    old_amount, new_amount = _recalculate_if_itemised(db, expense)
    renormalize_shares(db, expense)
    warning = _check_over_assigned(db, expense)
    record_event(
        db, audit, "ExpenseItem", removed["id"], EventType.SPEND_ITEM_DELETED, actor_id,
        {
            "expenseId": expense.id,
            "item": removed,
            "memberId": holder,
            "assignmentBefore": assignment_before,
            "assignmentAfter": serialize_assignment(assignment),
            "oldAmount": old_amount,
            "newAmount": new_amount,
        },
    )
    return LedgerResult(expense=expense, assignment=assignment, state=state, warning=warning)


def recalculate_expense_from_items(
    db: Session,
    expense_id: str,
    actor_id: str,
    audit: AuditSink | None = None,
) -> Expense:
    """Set the expense amount to the sum of its item costs (zero without items)."""
    expense = get_open_expense(db, expense_id)
    items = _expense_items(db, expense.id)
    old_amount = str(expense.amount)
    _set_expense_amount(db, expense, _items_total(items))
    db.flush()

    record_event(
        db, audit, "Expense", expense.id, EventType.SPEND_RECALCULATED, actor_id,
        {
            "action": "recalculated_from_items",
            "oldAmount": old_amount,
            "newAmount": str(expense.amount),
            "normalizedAmount": str(expense.normalized_amount),
            "itemCount": len(items),
        },
    )
    return expense


# --- Read-only summaries ---

def expense_summary(db: Session, expense_id: str) -> SpendSummary:
    expense = get_expense(db, expense_id)
    spend_total = Decimal(expense.amount)
    items_total = _items_total(_expense_items(db, expense.id))
    assigned_total = _assigned_total(db, expense.id)

    if spend_total == 0:
        percent = ZERO
    else:
        percent = quantize(assigned_total / spend_total * 100)

    return SpendSummary(
        expense_id=expense.id,
        spend_total=spend_total,
        items_total=items_total,
        assigned_total=assigned_total,
        difference=quantize(spend_total - items_total),
        remainder=quantize(spend_total - assigned_total),
        percent_assigned=percent,
        is_fully_assigned=abs(spend_total - assigned_total) <= MONEY_TOLERANCE,
    )
