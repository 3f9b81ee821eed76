"""Total and deposit arithmetic shared by quote previews and booking commits."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from backend.domain.models import PriceQuote, TariffUnit


Numeric = Union[Decimal, int, float, str]

_CENTS = Decimal("0.01")
_WHOLE = Decimal("1")
_HUNDRED = Decimal("100")
_ZERO = Decimal("0")

_MINUTES_PER_UNIT = {
    TariffUnit.HOUR: 60,
    TariffUnit.HALF_DAY: 4 * 60,
    TariffUnit.DAY: 8 * 60,
}


def to_decimal(value: Numeric) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps float inputs such as 0.1 from expanding to binary noise.
    return Decimal(str(value))


def compute_quote(
    unit_rate: Numeric,
    quantity: Numeric,
    deposit_percent: Optional[Numeric] = None,
) -> PriceQuote:
    """Return ``total = unit_rate * quantity`` and the rounded deposit.

    The deposit is rounded half-up to whole currency units and never exceeds
    the total. A non-positive quantity yields a zero quote because the
    duration may legitimately be unset while a form is being filled in.
    """
    rate = to_decimal(unit_rate)
    amount = to_decimal(quantity)
    percent = _ZERO if deposit_percent is None else to_decimal(deposit_percent)

    if rate < _ZERO:
        raise ValueError("unit_rate must be >= 0")
    if not _ZERO <= percent <= _HUNDRED:
        raise ValueError("deposit_percent must be between 0 and 100")

    if amount <= _ZERO:
        return PriceQuote(
            unit_rate=rate,
            quantity=amount,
            deposit_percent=percent,
            total=_ZERO,
            deposit=_ZERO,
        )

    total = (rate * amount).quantize(_CENTS, rounding=ROUND_HALF_UP)
    deposit = (total * percent / _HUNDRED).quantize(_WHOLE, rounding=ROUND_HALF_UP)
    return PriceQuote(
        unit_rate=rate,
        quantity=amount,
        deposit_percent=percent,
        total=total,
        deposit=min(deposit, total),
    )


def default_duration_minutes(
    tariff_unit: TariffUnit,
    session_hours: Optional[int] = None,
) -> int:
    """Duration pre-filled for a listing before the client picks one."""
    if tariff_unit in (TariffUnit.SESSION, TariffUnit.FLAT_RATE):
        return (session_hours or 1) * 60
    return _MINUTES_PER_UNIT[tariff_unit]


def quantity_for_duration(tariff_unit: TariffUnit, duration_minutes: int) -> Decimal:
    """Number of billable units a duration represents for a tariff unit."""
    if tariff_unit in (TariffUnit.SESSION, TariffUnit.FLAT_RATE):
        return _WHOLE if duration_minutes > 0 else _ZERO
    if duration_minutes <= 0:
        return _ZERO
    units = Decimal(duration_minutes) / Decimal(_MINUTES_PER_UNIT[tariff_unit])
    return units.quantize(_CENTS, rounding=ROUND_HALF_UP)
