"""
Assignment ledger tests.

Tests cover:
- The assignment state machine
- Whole-expense shares and splits
- Item linking, moving and removal
- Remainder handling
- Audit entries and transaction rollback
"""
from decimal import Decimal

import pytest

from tripspend.database import unit_of_work
from tripspend.exceptions import (
    ExpenseClosedError,
    InvalidTransitionError,
    MembershipError,
    NegativeAmountError,
    NotFoundError,
    TripSpendClosedError,
    ValidationError,
)
from tripspend.ledger import (
    AssignmentEvent,
    AssignmentState,
    add_item,
    expense_summary,
    find_assignment,
    link_item_to_member,
    recalculate_expense_from_items,
    remainder,
    remove_member_from_expense,
    set_whole_expense_share,
    split_expense,
    split_remainder,
    transition,
    unlink_item,
    update_item,
)
from tripspend.models import Assignment, EventLog, ExpenseItem, SpendStatus, SplitType


def _shares(db, expense_id):
    rows = db.query(Assignment).filter(Assignment.expense_id == expense_id).all()
    return {a.member_id: Decimal(a.share_amount) for a in rows}


# =============================================================================
# State machine
# =============================================================================

class TestTransitions:
    def test_allowed_moves(self):
        assert transition(AssignmentState.ABSENT, AssignmentEvent.SET_SHARE) is AssignmentState.FREESTANDING
        assert transition(AssignmentState.FREESTANDING, AssignmentEvent.LINK) is AssignmentState.ITEM_LINKED
        assert transition(AssignmentState.ITEM_LINKED, AssignmentEvent.REMOVE) is AssignmentState.ABSENT

    def test_unlink_depends_on_remaining_items(self):
        assert transition(
            AssignmentState.ITEM_LINKED, AssignmentEvent.UNLINK, items_remaining=True
        ) is AssignmentState.ITEM_LINKED
        assert transition(
            AssignmentState.ITEM_LINKED, AssignmentEvent.UNLINK, items_remaining=False
        ) is AssignmentState.FREESTANDING

    @pytest.mark.parametrize("state,event", [
        (AssignmentState.ABSENT, AssignmentEvent.UNLINK),
        (AssignmentState.ABSENT, AssignmentEvent.REMOVE),
        (AssignmentState.ABSENT, AssignmentEvent.REPRICE),
        (AssignmentState.FREESTANDING, AssignmentEvent.UNLINK),
        (AssignmentState.FREESTANDING, AssignmentEvent.REPRICE),
    ])
    def test_rejected_moves(self, state, event):
        with pytest.raises(InvalidTransitionError):
            transition(state, event)


# =============================================================================
# Whole-expense shares
# =============================================================================

class TestSetWholeExpenseShare:
    def test_creates_freestanding_assignment(self, db, make_expense, audit):
        expense = make_expense(100)

        result = set_whole_expense_share(db, expense.id, "bob", "40", SplitType.EXACT, "alice", audit=audit)

        assert result.state is AssignmentState.FREESTANDING
        assert result.assignment.item_id is None
        assert Decimal(result.assignment.share_amount) == Decimal("40.00")
        assert Decimal(result.assignment.normalized_share_amount) == Decimal("40.00")
        assert result.warning is None

    def test_updates_the_single_row(self, db, make_expense, audit):
        expense = make_expense(100)
        first = set_whole_expense_share(db, expense.id, "bob", 40, SplitType.EXACT, "alice", audit=audit)
        second = set_whole_expense_share(db, expense.id, "bob", 25, SplitType.EXACT, "alice", audit=audit)

        assert first.assignment.id == second.assignment.id
        assert _shares(db, expense.id) == {"bob": Decimal("25.00")}

    def test_normalizes_with_expense_rate(self, db, make_expense, audit):
        expense = make_expense(100, currency="EUR", fx_rate="1.1")

        result = set_whole_expense_share(db, expense.id, "bob", "33.33", SplitType.EXACT, "alice", audit=audit)

        assert Decimal(result.assignment.normalized_share_amount) == Decimal("36.66")

    def test_over_assignment_warns_but_writes(self, db, make_expense, audit):
        expense = make_expense(50, shares={"alice": 30})

        result = set_whole_expense_share(db, expense.id, "bob", 30, SplitType.EXACT, "alice", audit=audit)

        assert result.over_assigned
        assert result.warning.overage == Decimal("10.00")
        assert _shares(db, expense.id)["bob"] == Decimal("30.00")
        assert audit.entries[-1].payload["overAssigned"] is True

    def test_within_tolerance_is_not_over_assigned(self, db, make_expense, audit):
        expense = make_expense(50, shares={"alice": "25.01"})

        result = set_whole_expense_share(db, expense.id, "bob", 25, SplitType.EXACT, "alice", audit=audit)

        assert result.warning is None

    def test_rejects_negative_share(self, db, make_expense, audit):
        expense = make_expense(50)
        with pytest.raises(NegativeAmountError):
            set_whole_expense_share(db, expense.id, "bob", "-1", SplitType.EXACT, "alice", audit=audit)

    def test_rejects_member_of_other_trip(self, db, make_expense, outsider, audit):
        expense = make_expense(50)
        with pytest.raises(MembershipError):
            set_whole_expense_share(db, expense.id, outsider.id, 10, SplitType.EXACT, "alice", audit=audit)

    def test_closed_expense(self, db, make_expense, audit):
        expense = make_expense(50)
        expense.status = SpendStatus.CLOSED
        db.flush()

        with pytest.raises(ExpenseClosedError):
            set_whole_expense_share(db, expense.id, "bob", 10, SplitType.EXACT, "alice", audit=audit)
        assert audit.entries == []

    def test_closed_trip(self, db, trip, make_expense, audit):
        expense = make_expense(50)
        trip.spend_status = SpendStatus.CLOSED
        db.flush()

        with pytest.raises(TripSpendClosedError):
            set_whole_expense_share(db, expense.id, "bob", 10, SplitType.EXACT, "alice", audit=audit)

    def test_unknown_expense(self, db, members, audit):
        with pytest.raises(NotFoundError):
            set_whole_expense_share(db, "missing", "bob", 10, SplitType.EXACT, "alice", audit=audit)


class TestSplitExpense:
    def test_equal_split(self, db, make_expense, audit):
        expense = make_expense(100)

        split_expense(db, expense.id, SplitType.EQUAL, ["alice", "bob", "carol"], "alice", audit=audit)

        assert _shares(db, expense.id) == {
            "alice": Decimal("33.34"),
            "bob": Decimal("33.33"),
            "carol": Decimal("33.33"),
        }
        assert remainder(db, expense.id) == Decimal("0.00")

    def test_resplit_drops_unlisted_freestanding_members(self, db, make_expense, audit):
        expense = make_expense(100)
        split_expense(db, expense.id, SplitType.EQUAL, ["alice", "bob", "carol"], "alice", audit=audit)

        split_expense(
            db, expense.id, SplitType.PERCENTAGE, ["alice", "bob"], "alice",
            split_values={"alice": 70, "bob": 30}, audit=audit,
        )

        assert _shares(db, expense.id) == {"alice": Decimal("70.00"), "bob": Decimal("30.00")}
        assert len(audit.entries) == 2

    def test_requires_members(self, db, make_expense, audit):
        expense = make_expense(100)
        with pytest.raises(ValidationError):
            split_expense(db, expense.id, SplitType.EQUAL, [], "alice", audit=audit)


# =============================================================================
# Remainder
# =============================================================================

class TestRemainder:
    def test_split_remainder_between_existing_members(self, db, make_expense, audit):
        """100 with A=60 and B=30 leaves 10, split evenly on top."""
        expense = make_expense(100, shares={"alice": 60, "bob": 30})
        assert remainder(db, expense.id) == Decimal("10.00")

        split_remainder(db, expense.id, ["alice", "bob"], "alice", audit=audit)

        assert _shares(db, expense.id) == {"alice": Decimal("65.00"), "bob": Decimal("35.00")}
        assert remainder(db, expense.id) == Decimal("0.00")
        assert len(audit.entries) == 1
        assert audit.entries[0].payload["remainder"] == "10.00"

    def test_split_remainder_adds_new_members(self, db, make_expense, audit):
        expense = make_expense(100, shares={"alice": 70})

        split_remainder(db, expense.id, ["bob", "carol"], "alice", audit=audit)

        assert _shares(db, expense.id) == {
            "alice": Decimal("70.00"),
            "bob": Decimal("15.00"),
            "carol": Decimal("15.00"),
        }
        assert find_assignment(db, expense.id, "bob").split_type == SplitType.EQUAL

    def test_nothing_left(self, db, make_expense, audit):
        expense = make_expense(100, shares={"alice": 100})
        with pytest.raises(ValidationError):
            split_remainder(db, expense.id, ["bob"], "alice", audit=audit)

    def test_remainder_can_go_negative(self, db, make_expense):
        expense = make_expense(100, shares={"alice": 70, "bob": 40})
        assert remainder(db, expense.id) == Decimal("-10.00")

    def test_summary(self, db, make_expense):
        expense = make_expense(100, shares={"alice": 60, "bob": 30})

        summary = expense_summary(db, expense.id)

        assert summary.assigned_total == Decimal("90.00")
        assert summary.remainder == Decimal("10.00")
        assert summary.percent_assigned == Decimal("90.00")
        assert summary.is_fully_assigned is False


# =============================================================================
# Items
# =============================================================================

class TestItems:
    def test_member_holding_two_items_has_one_summed_assignment(self, db, make_expense, audit):
        expense = make_expense(0)
        add_item(db, expense.id, "Pizza", "12.50", "alice", member_id="bob", audit=audit)
        salad = add_item(db, expense.id, "Salad", "8.00", "alice", member_id="bob", audit=audit)

        rows = db.query(Assignment).filter(Assignment.expense_id == expense.id).all()
        assert len(rows) == 1
        assert Decimal(rows[0].share_amount) == Decimal("20.50")
        assert rows[0].item_id == salad.item.id
        assert salad.state is AssignmentState.ITEM_LINKED
        assert Decimal(expense.amount) == Decimal("20.50")

    def test_link_converts_freestanding_in_place(self, db, make_expense, audit):
        expense = make_expense(0)
        item = add_item(db, expense.id, "Wine", "30", "alice", audit=audit).item
        before = set_whole_expense_share(db, expense.id, "carol", 5, SplitType.EQUAL, "alice", audit=audit)

        result = link_item_to_member(db, expense.id, item.id, "carol", "alice", audit=audit)

        assert result.assignment.id == before.assignment.id
        assert result.assignment.item_id == item.id
        assert result.assignment.split_type == SplitType.EXACT
        assert Decimal(result.assignment.share_amount) == Decimal("30.00")

    def test_moving_an_item_re_derives_previous_holder(self, db, make_expense, audit):
        expense = make_expense(0)
        pizza = add_item(db, expense.id, "Pizza", "12.50", "alice", member_id="bob", audit=audit).item
        salad = add_item(db, expense.id, "Salad", "8.00", "alice", member_id="bob", audit=audit).item

        result = link_item_to_member(db, expense.id, salad.id, "carol", "alice", audit=audit)

        assert _shares(db, expense.id) == {"bob": Decimal("12.50"), "carol": Decimal("8.00")}
        assert find_assignment(db, expense.id, "bob").item_id == pizza.id
        assert audit.entries[-1].event_type.value == "ASSIGNMENT_MOVED"
        assert audit.entries[-1].payload["movedFrom"]["memberId"] == "bob"
        assert result.warning is None

    def test_unlink_last_item_keeps_zero_freestanding_assignment(self, db, make_expense, audit):
        expense = make_expense(0)
        pizza = add_item(db, expense.id, "Pizza", "12.50", "alice", member_id="bob", audit=audit).item
        add_item(db, expense.id, "Salad", "8.00", "alice", member_id="carol", audit=audit)

        result = unlink_item(db, expense.id, pizza.id, "alice", audit=audit)

        assert result.state is AssignmentState.FREESTANDING
        bob = find_assignment(db, expense.id, "bob")
        assert bob.item_id is None
        assert Decimal(bob.share_amount) == Decimal("0.00")
        assert Decimal(expense.amount) == Decimal("8.00")
        assert db.query(ExpenseItem).filter(ExpenseItem.id == pizza.id).first() is None

    def test_unlink_keeps_share_of_remaining_items(self, db, make_expense, audit):
        expense = make_expense(0)
        pizza = add_item(db, expense.id, "Pizza", "12.50", "alice", member_id="bob", audit=audit).item
        salad = add_item(db, expense.id, "Salad", "8.00", "alice", member_id="bob", audit=audit).item

        result = unlink_item(db, expense.id, salad.id, "alice", audit=audit)

        assert result.state is AssignmentState.ITEM_LINKED
        assert result.assignment.item_id == pizza.id
        assert Decimal(result.assignment.share_amount) == Decimal("12.50")

    def test_unlink_without_keeping_member(self, db, make_expense, audit):
        expense = make_expense(0)
        pizza = add_item(db, expense.id, "Pizza", "12.50", "alice", member_id="bob", audit=audit).item

        result = unlink_item(db, expense.id, pizza.id, "alice", keep_member=False, audit=audit)

        assert result.state is AssignmentState.ABSENT
        assert find_assignment(db, expense.id, "bob") is None

    def test_update_item_cost_reprices_holder(self, db, make_expense, audit):
        expense = make_expense(0)
        pizza = add_item(db, expense.id, "Pizza", "12.50", "alice", member_id="bob", audit=audit).item

        update_item(db, expense.id, pizza.id, "alice", cost="14.00", audit=audit)

        assert _shares(db, expense.id) == {"bob": Decimal("14.00")}
        assert Decimal(expense.amount) == Decimal("14.00")

    def test_update_item_unassigns(self, db, make_expense, audit):
        expense = make_expense(0)
        pizza = add_item(db, expense.id, "Pizza", "12.50", "alice", member_id="bob", audit=audit).item

        update_item(db, expense.id, pizza.id, "alice", member_id=None, audit=audit)

        assert pizza.assigned_member_id is None
        assert _shares(db, expense.id) == {"bob": Decimal("0.00")}

    def test_remove_member_releases_items(self, db, make_expense, audit):
        expense = make_expense(0)
        pizza = add_item(db, expense.id, "Pizza", "12.50", "alice", member_id="bob", audit=audit).item

        remove_member_from_expense(db, expense.id, "bob", "alice", audit=audit)

        assert find_assignment(db, expense.id, "bob") is None
        assert pizza.assigned_member_id is None
        assert audit.entries[-1].payload["releasedItemIds"] == [pizza.id]

    def test_remove_absent_member(self, db, make_expense, audit):
        expense = make_expense(10)
        with pytest.raises(NotFoundError):
            remove_member_from_expense(db, expense.id, "bob", "alice", audit=audit)

    def test_negative_cost_rejected(self, db, make_expense, audit):
        expense = make_expense(0)
        with pytest.raises(NegativeAmountError):
            add_item(db, expense.id, "Refund", "-5", "alice", audit=audit)


class TestRecalculate:
    def test_amount_follows_items(self, db, make_expense, audit):
        expense = make_expense(99, currency="EUR", fx_rate="2")
        add_item(db, expense.id, "Pizza", "12.50", "alice", audit=audit)
        add_item(db, expense.id, "Salad", "8.00", "alice", audit=audit)
        audit.entries.clear()

        recalculate_expense_from_items(db, expense.id, "alice", audit=audit)

        assert Decimal(expense.amount) == Decimal("20.50")
        assert Decimal(expense.normalized_amount) == Decimal("41.00")
        assert audit.entries[0].payload["itemCount"] == 2

    def test_without_items_amount_is_zero(self, db, make_expense, audit):
        expense = make_expense(99)

        recalculate_expense_from_items(db, expense.id, "alice", audit=audit)

        assert Decimal(expense.amount) == Decimal("0.00")
        assert Decimal(expense.normalized_amount) == Decimal("0.00")

    def test_closed_expense(self, db, make_expense, audit):
        expense = make_expense(99)
        expense.status = SpendStatus.CLOSED
        db.flush()
        with pytest.raises(ExpenseClosedError):
            recalculate_expense_from_items(db, expense.id, "alice", audit=audit)


# =============================================================================
# Audit and transactions
# =============================================================================

class TestAuditAndTransactions:
    def test_one_entry_per_mutation(self, db, make_expense, audit):
        expense = make_expense(0)
        add_item(db, expense.id, "Pizza", "12.50", "alice", member_id="bob", audit=audit)
        assert len(audit.entries) == 1

        entry = audit.entries[0]
        assert entry.actor_id == "alice"
        assert entry.payload["assignmentBefore"] is None
        assert entry.payload["assignmentAfter"]["shareAmount"] == "12.50"
        assert entry.payload["newAmount"] == "12.50"

    def test_default_sink_writes_event_log(self, db, make_expense, monkeypatch):
        monkeypatch.setenv("AUDIT_SINK", "database")
        expense = make_expense(100)

        set_whole_expense_share(db, expense.id, "bob", 50, SplitType.EXACT, "alice")

        rows = db.query(EventLog).all()
        assert len(rows) == 1
        assert rows[0].event_type == "ASSIGNMENT_CREATED"
        assert rows[0].payload["after"]["shareAmount"] == "50.00"

    def test_failed_unit_of_work_rolls_back(self, db, make_expense, outsider, monkeypatch):
        monkeypatch.setenv("AUDIT_SINK", "database")
        expense = make_expense(100)
        db.commit()

        with pytest.raises(MembershipError):
            with unit_of_work(db):
                set_whole_expense_share(db, expense.id, "bob", 50, SplitType.EXACT, "alice")
                set_whole_expense_share(db, expense.id, outsider.id, 50, SplitType.EXACT, "alice")

        assert db.query(Assignment).count() == 0
        assert db.query(EventLog).count() == 0

    def test_successful_unit_of_work_commits(self, db, make_expense, audit):
        expense = make_expense(100)

        with unit_of_work(db):
            set_whole_expense_share(db, expense.id, "bob", 50, SplitType.EXACT, "alice", audit=audit)
        db.rollback()

        assert _shares(db, expense.id) == {"bob": Decimal("50.00")}
