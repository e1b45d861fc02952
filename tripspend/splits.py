"""Whole-expense split arithmetic in integer minor units."""
from decimal import Decimal, ROUND_HALF_UP

from tripspend.currency import minor_unit, to_decimal
from tripspend.exceptions import NegativeAmountError, ValidationError
from tripspend.models import SplitType


def _to_units(amount: Decimal, currency: str | None) -> int:
    return int((to_decimal(amount) / minor_unit(currency)).to_integral_value(rounding=ROUND_HALF_UP))


def _from_units(units: int, currency: str | None) -> Decimal:
    return Decimal(units) * minor_unit(currency)


def _round_units(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def calculate_split(
    total: Decimal,
    split_type: SplitType,
    member_ids: list[str],
    split_values: dict[str, Decimal] | None = None,
    currency: str | None = None,
) -> dict[str, Decimal]:
    """Calculate how an amount is split among members.

    EQUAL hands leftover minor units to the first members in order.
    PERCENTAGE and SHARE give the last member whatever rounding left over,
    so the shares always add up to ``total``. EXACT takes the given values.
    """
    split_values = split_values or {}
    result: dict[str, Decimal] = {}
    if len(set(member_ids)) != len(member_ids):
        raise ValidationError("Members may only appear once in a split")
    for mid, value in split_values.items():
        if to_decimal(value) < 0:
            raise NegativeAmountError(f"Split value for {mid} must not be negative")

    units = _to_units(total, currency)

    if split_type == SplitType.EQUAL:
        count = len(member_ids)
        if count == 0:
            return result
        base = units // count
        remainder = units - base * count
        for i, mid in enumerate(member_ids):
            result[mid] = _from_units(base + (1 if i < remainder else 0), currency)

    elif split_type == SplitType.PERCENTAGE:
        allocated = 0
        for i, mid in enumerate(member_ids):
            if i == len(member_ids) - 1:
                share = units - allocated
            else:
                share = _round_units(units * to_decimal(split_values.get(mid, 0)) / 100)
                allocated += share
            result[mid] = _from_units(share, currency)

    elif split_type == SplitType.EXACT:
        for mid in member_ids:
            result[mid] = _from_units(_to_units(split_values.get(mid, 0), currency), currency)

    elif split_type == SplitType.SHARE:
        total_weight = sum((to_decimal(split_values.get(mid, 0)) for mid in member_ids), Decimal(0))
        if total_weight == 0:
            for mid in member_ids:
                result[mid] = _from_units(0, currency)
        else:
            allocated = 0
            for i, mid in enumerate(member_ids):
                if i == len(member_ids) - 1:
                    share = units - allocated
                else:
                    share = _round_units(units * to_decimal(split_values.get(mid, 0)) / total_weight)
                    allocated += share
                result[mid] = _from_units(share, currency)

    for mid, share in result.items():
        if share < 0:
            raise NegativeAmountError(f"Split gives {mid} a negative share; percentages exceed 100")

    return result
