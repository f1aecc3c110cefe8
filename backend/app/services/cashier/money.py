"""Currency arithmetic helpers.

Every amount is a ``Decimal``. Two totals are considered equal when they
differ by at most one minor unit of the currency; nothing in the close
workflow compares money with ``==``.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

ZERO = Decimal("0")

DEFAULT_MINOR_UNITS = 2

# ISO 4217 exponents that differ from the two-decimal default
_MINOR_UNITS: dict[str, int] = {
    "BIF": 0,
    "CLP": 0,
    "ISK": 0,
    "JPY": 0,
    "KRW": 0,
    "UGX": 0,
    "VND": 0,
    "BHD": 3,
    "IQD": 3,
    "JOD": 3,
    "KWD": 3,
    "LYD": 3,
    "OMR": 3,
    "TND": 3,
}


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Convert *value* to ``Decimal`` going through ``str`` for floats."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Boolean is not a currency amount")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a currency amount: {value!r}") from exc


def minor_units(currency: str) -> int:
    return _MINOR_UNITS.get(currency.upper(), DEFAULT_MINOR_UNITS)


def tolerance_for(currency: str) -> Decimal:
    """One minor unit of *currency* (0.01 for INR, 1 for JPY, 0.001 for KWD)."""
    return Decimal(1).scaleb(-minor_units(currency))


def amounts_match(a: Decimal, b: Decimal, tolerance: Decimal) -> bool:
    return abs(a - b) <= tolerance


def quantize_money(amount: Decimal, currency: str) -> Decimal:
    return amount.quantize(tolerance_for(currency), rounding=ROUND_HALF_UP)


def format_currency(amount: Decimal, currency: str = "INR") -> str:
    """Render *amount* as ``"INR 5,000.00"`` (``"INR -1,000.00"`` when short)."""
    places = minor_units(currency)
    rounded = quantize_money(amount, currency)
    return f"{currency.upper()} {rounded:,.{places}f}"
