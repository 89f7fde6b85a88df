from __future__ import annotations

from decimal import Decimal

from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator

from ..validation import DECIMAL_PLACES, DECIMAL_QUANTUM, MAX_DECIMAL


class FixedDecimal(TypeDecorator):
    """
    Decimal stored as a scaled BigInteger (value * 10**4).

    Same idea as *_cents integer columns, with four minor digits so
    sub-unit quantities (0.25 Dozen) and unit prices stay exact on every
    backend. SQLite has no native decimal and would otherwise round-trip
    Numeric through a binary float.

    Binding a value that is not exactly representable at four places raises
    ValueError instead of rounding; callers validate or quantize first.
    """

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        scaled = amount.scaleb(DECIMAL_PLACES)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"{amount} has more than {DECIMAL_PLACES} decimal places")
        if abs(amount) > MAX_DECIMAL:
            raise ValueError(f"{amount} exceeds {MAX_DECIMAL}")
        return int(scaled)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(int(value)).scaleb(-DECIMAL_PLACES).quantize(DECIMAL_QUANTUM)
