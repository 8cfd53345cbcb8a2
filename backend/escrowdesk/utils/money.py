from __future__ import annotations

from decimal import Decimal, InvalidOperation

from escrowdesk.errors import ValidationError

_CENT = Decimal("0.01")

# Amount columns are signed BigInteger.
MAX_MINOR = 2**63 - 1
_MAX_AMOUNT = Decimal(MAX_MINOR) / 100


def to_minor(value, field_name: str = "amount", *, allow_zero: bool = False) -> int:
    """Parse a currency amount into integer minor units.

    Anything finer than a cent is rejected; amounts are never rounded.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field_name} required")
    if isinstance(value, float):
        # Floats go through their shortest repr so 0.1 stays 0.1.
        value = repr(value)
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number")
    if not parsed.is_finite():
        raise ValidationError(f"{field_name} must be a number")
    if abs(parsed) > _MAX_AMOUNT:
        raise ValidationError(f"{field_name} is too large")
    if parsed != parsed.quantize(_CENT):
        raise ValidationError(f"{field_name} has more than two decimal places")
    minor = int(parsed * 100)
    if minor < 0 or (minor == 0 and not allow_zero):
        raise ValidationError(f"{field_name} must be positive")
    return minor


def from_minor(minor: int | None) -> str:
    return str((Decimal(int(minor or 0)) / 100).quantize(_CENT))
