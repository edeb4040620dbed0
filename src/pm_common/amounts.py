"""Decimal arithmetic utilities for shares, prices and money.

All amounts are `decimal.Decimal`. Floats are never accepted directly:
a binary float has already lost precision by the time it reaches us.
Scales match the DB column definitions (NUMERIC(20,4) shares,
NUMERIC(10,4) prices, NUMERIC(20,2) money).
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

SHARES_QUANT = Decimal("0.0001")
PRICE_QUANT = Decimal("0.0001")
MONEY_QUANT = Decimal("0.01")

ZERO = Decimal("0")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Parse an int, str or Decimal into a finite Decimal."""
    if isinstance(value, float):
        raise TypeError("float amounts are not accepted; pass a str or Decimal")
    try:
        result = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a decimal amount: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Amount must be finite, got {value!r}")
    return result


def quantize_shares(value: Decimal) -> Decimal:
    return value.quantize(SHARES_QUANT, rounding=ROUND_HALF_UP)


def quantize_price(value: Decimal) -> Decimal:
    return value.quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def weighted_average_price(total_cost: Decimal, shares: Decimal) -> Decimal:
    """Size-weighted average entry price: total_cost / shares."""
    if shares <= ZERO:
        raise ValueError(f"shares must be positive, got {shares}")
    return quantize_price(total_cost / shares)
