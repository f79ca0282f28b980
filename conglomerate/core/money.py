# conglomerate/core/money.py
"""
Fixed-point money helpers.

Every amount in the system is a ``Decimal`` with eight fractional digits,
the same precision the dashboard prints with ``toFixed(8)``. Rounding is
half-even and the rounding remainder is returned to the caller instead of
being dropped, so repeated small accruals add up to the same total as one
large accrual.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation, localcontext
from typing import Tuple, Union

from sqlalchemy import Numeric, String
from sqlalchemy.types import DateTime, TypeDecorator

SCALE = 8
QUANT = Decimal(1).scaleb(-SCALE)
CARRY_SCALE = 18
ZERO = Decimal("0")

# Enough digits for principal * rate * minutes before the division
PRECISION = 40

Number = Union[Decimal, int, str, float]


def to_money(value: Number) -> Decimal:
    """Parse ``value`` into a quantized Decimal amount."""
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(QUANT, rounding=ROUND_HALF_EVEN)


def quantize(value: Decimal, rounding: str = ROUND_HALF_EVEN) -> Tuple[Decimal, Decimal]:
    """Round to money scale, returning ``(rounded, remainder)``."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        rounded = value.quantize(QUANT, rounding=rounding)
        return rounded, value - rounded


def money_str(value: Decimal) -> str:
    return format(to_money(value), "f")


def prorate(principal: Decimal, rate_percent: Decimal, numerator: int, denominator: int) -> Decimal:
    """``principal * rate_percent / 100 * numerator / denominator`` without early rounding."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return principal * rate_percent * numerator / (Decimal(100) * denominator)


class Money(TypeDecorator):
    """NUMERIC(20, 8) column; stored as text on SQLite to avoid float conversion."""

    impl = Numeric
    cache_ok = True

    def __init__(self, scale: int = SCALE):
        super().__init__()
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(48))
        return dialect.type_descriptor(Numeric(20 + self.scale - SCALE, self.scale, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = Decimal(value).quantize(Decimal(1).scaleb(-self.scale), rounding=ROUND_HALF_EVEN)
        if dialect.name == "sqlite":
            return format(amount, "f")
        return amount

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class Carry(Money):
    """High-precision column for sub-cent rounding remainders."""

    cache_ok = True

    def __init__(self):
        super().__init__(scale=CARRY_SCALE)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime column that always comes back as UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
