"""Conversion between currency amounts and credits."""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

from seatpass.config.settings import settings

CENTS = Decimal("0.01")


def _unit_price(unit_price: Decimal | None) -> Decimal:
    price = settings.credit_unit_price if unit_price is None else Decimal(unit_price)
    if price <= 0:
        raise ValueError("unit price must be positive")
    return price


def currency_to_credits(amount: Decimal | int | str, unit_price: Decimal | None = None) -> int:
    """Credits bought by ``amount``; partial credits are dropped."""
    value = Decimal(str(amount))
    if value < 0:
        raise ValueError("amount must not be negative")
    return int((value / _unit_price(unit_price)).to_integral_value(rounding=ROUND_FLOOR))


def credits_to_currency(credits: int, unit_price: Decimal | None = None) -> Decimal:
    """Currency value of ``credits``, rounded half-up to cents."""
    if credits < 0:
        raise ValueError("credits must not be negative")
    return (Decimal(credits) * _unit_price(unit_price)).quantize(CENTS, rounding=ROUND_HALF_UP)
