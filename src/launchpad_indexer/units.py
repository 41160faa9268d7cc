"""Fixed-point helpers for 18-decimal token and native amounts."""

from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Context, Decimal

AMOUNT_DECIMALS = 18
ZERO = Decimal(0)

# uint256 needs 78 significant digits; keep arithmetic exact at that width.
_CONTEXT = Context(prec=120, rounding=ROUND_HALF_EVEN)
_QUANTUM = Decimal(1).scaleb(-AMOUNT_DECIMALS)


def quantize(value: Decimal) -> Decimal:
    """Round to 18 decimal places."""
    return value.quantize(_QUANTUM, context=_CONTEXT)


def from_raw(raw: int) -> Decimal:
    """Convert a wei-scaled integer into an 18-decimal amount."""
    return quantize(_CONTEXT.divide(Decimal(raw), Decimal(10) ** AMOUNT_DECIMALS))


def price_from_raw(native_raw: int, token_raw: int) -> Decimal | None:
    """Native-per-token price, or None for a zero token amount.

    Both amounts carry 18 decimals, so the scale cancels out.
    """
    if token_raw == 0:
        return None
    return quantize(_CONTEXT.divide(Decimal(native_raw), Decimal(token_raw)))


def multiply(a: Decimal, b: Decimal) -> Decimal:
    return quantize(_CONTEXT.multiply(a, b))


def to_decimal(value: object) -> Decimal:
    """Coerce a database aggregate (Decimal, float, int or None) into a Decimal."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
