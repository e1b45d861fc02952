from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


# --- Balances ---

class Balance(BaseModel):
    member_id: str
    total_paid: Decimal = Decimal(0)
    total_owed: Decimal = Decimal(0)
    net_balance: Decimal = Decimal(0)  # positive = owed to them, negative = they owe


class PlannedSettlement(BaseModel):
    from_member_id: str
    to_member_id: str
    amount: Decimal
    oldest_debt_date: date | None = None


class TripBalanceSummary(BaseModel):
    trip_id: str
    base_currency: str
    total_spent: Decimal
    balances: list[Balance]
    settlements: list[PlannedSettlement]
    calculated_at: datetime


# --- Expenses ---

class SpendSummary(BaseModel):
    expense_id: str
    spend_total: Decimal
    items_total: Decimal
    assigned_total: Decimal
    difference: Decimal  # spend_total - items_total
    remainder: Decimal  # spend_total - assigned_total
    percent_assigned: Decimal
    is_fully_assigned: bool


# --- Spend period ---

class ReopenOutcome(BaseModel):
    reopened: bool
    confirmation_required: bool = False
    settlements_deleted: int = 0
    payments_deleted: int = 0


# --- Choices ---

class SelectionLineIn(BaseModel):
    item_id: str
    quantity: int = Field(gt=0)
    note: str | None = None
