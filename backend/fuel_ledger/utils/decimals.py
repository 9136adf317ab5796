"""Decimal helpers: litres are kept at 2 places, efficiencies at 4."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

AMOUNT_QUANT = Decimal("0.01")
RATIO_QUANT = Decimal("0.0001")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """Parse *value* into a finite Decimal; anything else is a ``ValueError``."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            # str() first so floats like 0.1 don't drag binary noise along
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(f"not a number: {value!r}") from exc
    if not d.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return d


def _quantize(value, quant: Decimal) -> Decimal:
    d = to_decimal(value)
    try:
        return d.quantize(quant, rounding=ROUND_HALF_UP)
    except ArithmeticError as exc:
        raise ValueError(f"number out of range: {value!r}") from exc


def to_amount(value) -> Decimal:
    return _quantize(value, AMOUNT_QUANT)


def to_ratio(value) -> Decimal | None:
    if value is None:
        return None
    return _quantize(value, RATIO_QUANT)


def round_to(value, places: int) -> Decimal:
    return _quantize(value, Decimal(1).scaleb(-places))
