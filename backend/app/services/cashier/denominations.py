from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal

from backend.app.services.cashier.domain import DenominationEntry
from backend.app.services.cashier.money import ZERO, to_decimal


def denomination_total(entries: Iterable[DenominationEntry]) -> Decimal:
    """Sum of ``value * count`` over *entries*; zero for an empty list."""
    return sum((entry.total for entry in entries), ZERO)


def is_whole_count(count: object) -> bool:
    if isinstance(count, bool):
        return False
    if isinstance(count, int):
        return count >= 0
    try:
        d = to_decimal(count)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False
    return d.is_finite() and d >= 0 and d == d.to_integral_value()


def first_invalid_entry(entries: Iterable[DenominationEntry]) -> DenominationEntry | None:
    for entry in entries:
        if not is_whole_count(entry.count):
            return entry
    return None


def validate_denominations(entries: Iterable[DenominationEntry]) -> bool:
    """True iff every count is a non-negative whole number."""
    return first_invalid_entry(entries) is None


def build_template(allowed: Sequence[Decimal | int | str]) -> list[DenominationEntry]:
    """One zero-count entry per configured denomination, highest value first."""
    values = sorted({to_decimal(v) for v in allowed}, reverse=True)
    return [DenominationEntry(value=v, count=0) for v in values]
