"""Fixed-point money helpers.

Amounts are ``Decimal`` values with exactly two fractional digits. Floats are
accepted at the edges (forms, CSV) but are converted through ``str`` so binary
representation error never leaks into balances.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Union

from ..errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyLike = Union[Decimal, int, float, str]


def to_money(value: MoneyLike) -> Decimal:
    """Return ``value`` as a Decimal quantized to cents (half-up)."""

    if isinstance(value, bool):
        raise ValidationError("Amount must be numeric", value=value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("Amount must be numeric", value=value) from exc
    if not amount.is_finite():
        raise ValidationError("Amount must be finite", value=value)
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def require_positive(value: MoneyLike, field: str = "amount") -> Decimal:
    """Normalize ``value`` and reject zero or negative amounts."""

    amount = to_money(value)
    if amount <= ZERO:
        raise ValidationError(f"{field} must be greater than zero", field=field, value=str(amount))
    return amount


def money_sum(values: Iterable[MoneyLike]) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value)
    return total


def format_money(amount: MoneyLike, currency: str) -> str:
    """Render ``CHF 1,234.50`` style strings; negatives keep the sign in front."""

    value = to_money(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}{currency.upper()} {abs(value):,.2f}"


__all__ = ["CENT", "ZERO", "MoneyLike", "format_money", "money_sum", "require_positive", "to_money"]
