"""
Error taxonomy for the spend ledger.

Validation errors are caller-correctable and surface unchanged. Integrity
failures mean the stored ledger is inconsistent; they abort the unit of work
and must not be retried. Over-assignment is a warning carried on the result
of a ledger operation, never raised.
"""
from decimal import Decimal


class LedgerError(Exception):
    """Base exception for spend ledger errors."""
    pass


# --- Validation errors ---

class ValidationError(LedgerError):
    """Raised for input the caller can correct."""
    pass


class InvalidRateError(ValidationError):
    """Raised when an FX rate is non-finite, zero or negative."""
    pass


class NegativeAmountError(ValidationError):
    """Raised when an amount, cost or share is negative or non-finite."""
    pass


class NotFoundError(ValidationError):
    """Raised when a referenced trip, expense, item, member or settlement is missing."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class MembershipError(ValidationError):
    """Raised when a member does not belong to the expense's trip."""
    pass


class ExpenseClosedError(ValidationError):
    """Raised when mutating a closed expense."""
    pass


class TripSpendClosedError(ExpenseClosedError):
    """Raised when mutating spend on a trip whose spending period is closed."""
    pass


class IncompleteAssignmentError(ValidationError):
    """Raised when closing while expenses are not exactly 100% assigned."""

    def __init__(self, message: str, expense_ids: list[str] | None = None):
        self.expense_ids = expense_ids or []
        super().__init__(message)


class InvalidTransitionError(ValidationError):
    """Raised for an assignment state change the ledger does not allow."""
    pass


class InvalidSettlementStatusError(ValidationError):
    """Raised for a settlement status change that is not allowed."""
    pass


class ChoiceClosedError(ValidationError):
    """Raised when selecting on a closed or archived choice."""
    pass


class StockLimitError(ValidationError):
    """Raised when a selection exceeds an item's per-user or total cap."""
    pass


# --- Integrity failures ---

class IntegrityFailure(LedgerError):
    """Raised when stored ledger data is inconsistent. Indicates a bug."""
    pass


class ImbalancedLedgerError(IntegrityFailure):
    """Raised when trip balances do not net to zero."""

    def __init__(self, total: Decimal):
        self.total = total
        super().__init__(f"Balances do not net to zero (off by {total})")


class DuplicateAssignmentError(IntegrityFailure):
    """Raised when more than one assignment exists for an (expense, member) pair."""

    def __init__(self, expense_id: str, member_id: str):
        self.expense_id = expense_id
        self.member_id = member_id
        super().__init__(f"Duplicate assignments for member {member_id} on expense {expense_id}")


# --- Warnings ---

class OverAssignedWarning(UserWarning):
    """Assigned shares exceed the expense amount beyond tolerance."""

    def __init__(self, expense_id: str, amount: Decimal, assigned_total: Decimal):
        self.expense_id = expense_id
        self.amount = amount
        self.assigned_total = assigned_total
        self.overage = assigned_total - amount
        super().__init__(
            f"Expense {expense_id} is over-assigned: {assigned_total} assigned of {amount}"
        )
