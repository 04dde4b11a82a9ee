# backend/utils/money.py
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    """Coerce DB/JSON numbers to Decimal without float artifacts."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value) -> Decimal:
    # Round half-up to whole cents
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
