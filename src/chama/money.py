"""Fixed-point currency helpers.

Amounts are Decimal values with exactly two fractional digits. Inputs with
more precision are rejected rather than rounded so no minor unit is ever
dropped silently.
"""

from decimal import Decimal, InvalidOperation

from chama.errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value, field: str = "amount") -> Decimal:
    """Convert ``value`` to a two-place Decimal.

    Args:
        value: Decimal, int or numeric string. Floats are converted through
            ``str`` so ``0.1`` becomes ``Decimal("0.10")``.
        field: Field name used in the error message

    Returns:
        Quantized Decimal

    Raises:
        ValidationError: If the value is not a finite number or carries
            sub-cent precision
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} must be a number, got {value!r}") from e
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    try:
        quantized = amount.quantize(CENT)
    except InvalidOperation as e:
        raise ValidationError(f"{field} is out of range: {value}") from e
    if quantized != amount:
        raise ValidationError(f"{field} has more than two decimal places: {value}")
    return quantized


def positive_money(value, field: str = "amount") -> Decimal:
    """Like to_money() but requires a strictly positive amount."""
    amount = to_money(value, field)
    if amount <= ZERO:
        raise ValidationError(f"{field} must be greater than zero")
    return amount


def non_negative_money(value, field: str = "amount") -> Decimal:
    """Like to_money() but allows zero."""
    amount = to_money(value, field)
    if amount < ZERO:
        raise ValidationError(f"{field} must not be negative")
    return amount


__all__ = ["CENT", "ZERO", "to_money", "positive_money", "non_negative_money"]
