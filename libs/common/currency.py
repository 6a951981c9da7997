"""Money helpers for the order pipeline.

Storage and API unit: rupees as ``Decimal`` with two places (e.g. ``Decimal("249.50")``).
Gateway unit: paise, the minor unit (100 paise = ₹1).

All rounding is ROUND_HALF_UP so our amounts agree with the gateway's.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

MINOR_UNITS_PER_MAJOR: int = 100

_CENT = Decimal("0.01")


def round_money(value: Decimal | int | float | str) -> Decimal:
    """Round to two decimal places, half-up."""
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal | int | float | str) -> int:
    """Convert rupees to paise (round half-up). ₹10.005 -> 1001."""
    return int(round_money(amount) * MINOR_UNITS_PER_MAJOR)


def from_minor_units(minor: int) -> Decimal:
    """Convert paise to rupees. 1001 -> ₹10.01."""
    return (Decimal(minor) / MINOR_UNITS_PER_MAJOR).quantize(_CENT)
