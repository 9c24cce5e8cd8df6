"""
Money helpers.

Every amount the service stores or adds up is an ``int`` count of minor
currency units (cents). Decimal is only used to render amounts for API
responses.
"""
from decimal import Decimal

MINOR_UNITS_PER_MAJOR = 100
_CENT = Decimal("0.01")


def to_major_units(minor: int) -> Decimal:
    """Render minor units as a two-decimal Decimal (2448 -> Decimal('24.48'))."""
    return (Decimal(minor) / MINOR_UNITS_PER_MAJOR).quantize(_CENT)


def line_subtotal(quantity: int, unit_price: int) -> int:
    return quantity * unit_price


def total_of(subtotals) -> int:
    return sum(subtotals, 0)


def to_gateway_amount(minor: int, gateway_units_per_major: int = MINOR_UNITS_PER_MAJOR) -> int:
    """
    Express a stored amount in the gateway's smallest unit, rounding up.

    Stripe charges zero-decimal currencies (e.g. JPY) in whole units, so
    gateway_units_per_major is 1 there and a fractional total is ceiled.
    """
    return -(-minor * gateway_units_per_major // MINOR_UNITS_PER_MAJOR)
