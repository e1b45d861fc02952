"""Money rounding and conversion into a trip's base currency."""
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP, InvalidOperation

from tripspend.exceptions import InvalidRateError, NegativeAmountError

# Minor-unit precision per currency
CURRENCY_DECIMALS: dict[str, int] = {
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "JPY": 0,
    "CAD": 2,
    "AUD": 2,
    "CHF": 2,
    "HKD": 2,
    "SGD": 2,
    "THB": 2,
    "KRW": 0,
    "INR": 2,
    "CNY": 2,
    "NZD": 2,
    "MXN": 2,
}

SUPPORTED_CURRENCIES = tuple(CURRENCY_DECIMALS)

ONE = Decimal(1)
ZERO = Decimal(0)


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # Go through str so 12.5 becomes Decimal("12.5"), not its binary expansion
        return Decimal(str(value))
    return Decimal(value)


def minor_unit(currency: str | None) -> Decimal:
    decimals = CURRENCY_DECIMALS.get(currency or "", 2)
    return Decimal(1).scaleb(-decimals)


def quantize(amount, currency: str | None = None) -> Decimal:
    """Round half-up to the currency's minor unit (2 places if unknown)."""
    return to_decimal(amount).quantize(minor_unit(currency), rounding=ROUND_HALF_UP)


def validate_rate(fx_rate) -> Decimal:
    try:
        rate = to_decimal(fx_rate)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidRateError(f"FX rate {fx_rate!r} is not a number")
    if not rate.is_finite() or rate <= 0:
        raise InvalidRateError(f"FX rate must be a positive finite number, got {fx_rate}")
    return rate


def validate_amount(amount, what: str = "Amount") -> Decimal:
    try:
        value = to_decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise NegativeAmountError(f"{what} {amount!r} is not a number")
    if not value.is_finite() or value < 0:
        raise NegativeAmountError(f"{what} must be a non-negative finite number, got {amount}")
    return value


def normalize_amount(amount, fx_rate, currency: str | None = None) -> Decimal:
    """Convert an amount into the base currency with a fixed rate.

    ``currency`` is the base currency and decides the rounding precision.
    """
    rate = validate_rate(fx_rate)
    try:
        value = to_decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise NegativeAmountError(f"Amount {amount!r} is not a number")
    if not value.is_finite():
        raise NegativeAmountError(f"Amount must be finite, got {amount}")
    return quantize(value * rate, currency)


def normalize_shares(amounts: list, fx_rate, currency: str | None = None) -> list[Decimal]:
    """Convert several shares of one expense so they add up to the converted total.

    Each converted share is rounded down to the minor unit and the units left
    over go to the largest fractional parts, earlier shares winning ties.
    """
    rate = validate_rate(fx_rate)
    unit = minor_unit(currency)
    raw = [to_decimal(a) * rate / unit for a in amounts]
    target = int(normalize_amount(sum((to_decimal(a) for a in amounts), ZERO), rate, currency) / unit)
    units = [int(r.to_integral_value(rounding=ROUND_FLOOR)) for r in raw]

    leftover = target - sum(units)
    by_fraction = sorted(range(len(raw)), key=lambda i: (units[i] - raw[i], i))
    for i in by_fraction[:leftover]:
        units[i] += 1
    return [quantize(Decimal(u) * unit, currency) for u in units]


def default_fx_rate(currency: str | None, base_currency: str) -> Decimal | None:
    """Rate 1 when the expense is in the base currency, otherwise unknown."""
    if currency is None or currency == base_currency:
        return ONE
    return None
