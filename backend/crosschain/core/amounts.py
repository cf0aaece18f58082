"""
Decimal helpers for supply, reserve and price figures.

Amounts travel as decimal strings. Anything that does not parse to a finite,
non-negative number is rejected, never coerced to zero.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext
from typing import Iterable, Union

from .exceptions import InvalidAmountError

AmountLike = Union[str, int, Decimal]

ZERO = Decimal(0)

# Digits kept in intermediate arithmetic (uint256 fits in 78)
AMOUNT_PRECISION = 80


def parse_amount(value: AmountLike, field: str = "amount", allow_negative: bool = False) -> Decimal:
    """
    Parse a decimal amount.

    Args:
        value: String, int or Decimal
        field: Field name for the error message
        allow_negative: Accept values below zero

    Returns:
        Parsed Decimal

    Raises:
        InvalidAmountError: If the value is not a finite number, or is
            negative when negatives are not allowed
    """
    if isinstance(value, bool) or isinstance(value, float):
        # floats lose precision silently; callers must pass strings
        raise InvalidAmountError(
            f"{field} must be a decimal string, got {type(value).__name__}",
            details={"field": field, "value": repr(value)},
        )

    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(
            f"{field} is not a valid number: {value!r}",
            details={"field": field, "value": repr(value)},
        ) from e

    if not parsed.is_finite():
        raise InvalidAmountError(
            f"{field} must be finite: {value!r}",
            details={"field": field, "value": repr(value)},
        )

    if parsed < 0 and not allow_negative:
        raise InvalidAmountError(
            f"{field} must be non-negative: {value!r}",
            details={"field": field, "value": repr(value)},
        )

    return parsed


def format_amount(value: Decimal) -> str:
    """Render a Decimal as a plain (non-exponent) string for storage."""
    if value == 0:
        return "0"
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def sum_amounts(values: Iterable[Decimal]) -> Decimal:
    """Exact sum of amounts; uint256-sized figures fit within the precision."""
    with localcontext() as ctx:
        ctx.prec = AMOUNT_PRECISION
        return sum(values, ZERO)
