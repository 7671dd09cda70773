"""Satoshi and currency conversion.

``currency_to_satoshis`` floors, so converting a currency amount to satoshis
and back may come out up to one satoshi's worth short. Callers that mint
tokens from currency amounts accept that loss rather than rounding up.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from typing import Union

from ..errors import InvalidAmount

Number = Union[int, float, str, Decimal]


def to_decimal(value: Number) -> Decimal:
    """Convert through ``str`` so floats keep their shortest decimal repr."""
    if isinstance(value, bool):
        raise InvalidAmount("amount must be numeric")
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except ArithmeticError as exc:
        raise InvalidAmount(f"amount {value!r} is not numeric") from exc
    if not result.is_finite():
        raise InvalidAmount(f"amount {value!r} is not finite")
    return result


def satoshis_to_currency(satoshis: Number, rate: Number) -> Decimal:
    sats = to_decimal(satoshis)
    if sats < 0:
        raise InvalidAmount("satoshi amount must not be negative")
    return sats * to_decimal(rate)


def currency_to_satoshis(amount: Number, rate: Number) -> int:
    value = to_decimal(amount)
    if value < 0:
        raise InvalidAmount("currency amount must not be negative")
    per_satoshi = to_decimal(rate)
    if per_satoshi <= 0:
        return 0
    return int((value / per_satoshi).to_integral_value(rounding=ROUND_FLOOR))


def floor_units(amount: Decimal) -> int:
    return int(amount.to_integral_value(rounding=ROUND_FLOOR))
