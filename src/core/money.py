"""Fixed-point helpers for currency arithmetic.

Intermediate products are kept at full ``Decimal`` precision; only the
final figure handed to storage goes through :func:`quantize_money`.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
RATE_PLACES = Decimal("0.000001")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value, default=ZERO) -> Decimal:
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        # str() avoids binary float artefacts such as 0.1 -> 0.1000000000000000055
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Montant invalide: {value!r}") from exc


def quantize_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_rate(value) -> Decimal:
    return to_decimal(value).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)


def percentage(part, whole) -> Decimal:
    """``part / whole * 100`` or zero when ``whole`` is not positive."""
    whole = to_decimal(whole)
    if whole <= ZERO:
        return ZERO
    return to_decimal(part) / whole * HUNDRED
