"""
Money Utilities Module

Cent-precision Decimal helpers shared by the amortization engine, the loan
lifecycle and the cash ledger. NEVER uses float for monetary values: floats
coming from the outside are converted through their string representation.
"""

from decimal import Decimal, ROUND_HALF_UP, ROUND_CEILING, InvalidOperation, getcontext
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
EPSILON = Decimal('0.01')  # Tolerance under which a balance counts as settled
ZERO = Decimal('0')
HUNDRED = Decimal('100')

Amount = Union[Decimal, int, str, float]


def to_decimal(value: Amount) -> Decimal:
    """Convert an incoming amount to Decimal without float artefacts"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Invalid amount: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}")


def round_cents(value: Amount) -> Decimal:
    """Round half-up to two decimal places"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def ceil_cents(value: Amount) -> Decimal:
    """
    Round up (toward +infinity) to two decimal places.

    Only the installment amount is computed this way so the sum of the
    installments always covers the total owed.
    """
    return to_decimal(value).quantize(CENT, rounding=ROUND_CEILING)


def is_approximately_zero(value: Amount) -> bool:
    """True when the amount is within one cent of zero"""
    return abs(to_decimal(value)) <= EPSILON


def percent_of(amount: Amount, rate_percent: Amount) -> Decimal:
    """Unrounded `amount * rate / 100`"""
    return to_decimal(amount) * to_decimal(rate_percent) / HUNDRED


def format_amount(value: Amount, symbol: str = "$") -> str:
    """Human readable amount used in ledger descriptions"""
    amount = round_cents(value)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"
