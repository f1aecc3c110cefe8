"""Reconciliation arithmetic and the submission gate.

``validate_for_submission`` checks, in order:

1. every denomination count is a non-negative whole number;
2. every denomination is one the counter is configured with;
3. no payment mode amount is negative;
4. the payment mode totals add up to the expected till amount;
5. the ``cash`` payment mode equals the physically counted cash;

then that every declared mode is configured. The first failure is raised.
Equality checks allow one minor currency unit of difference.

A variance beyond the configured threshold is only reported, it never
blocks submission or approval.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from backend.app.services.cashier.config import CASH_MODE, CashCounterConfig
from backend.app.services.cashier.denominations import (
    denomination_total,
    first_invalid_entry,
    is_whole_count,
)
from backend.app.services.cashier.domain import CloseDraft, PaymentModeTotal
from backend.app.services.cashier.errors import (
    CashModeMismatch,
    CloseValidationError,
    InvalidDenominationCount,
    InvalidPaymentModeAmount,
    PaymentModeTotalMismatch,
    UnknownDenomination,
    UnknownPaymentMode,
)
from backend.app.services.cashier.money import ZERO, amounts_match


def variance(expected: Decimal, counted: Decimal) -> Decimal:
    """``counted - expected``: positive when cash is over, negative when short."""
    return counted - expected


def payment_mode_total(totals: Iterable[PaymentModeTotal]) -> Decimal:
    return sum((t.amount for t in totals), ZERO)


def variance_exceeds_threshold(amount: Decimal, threshold: Decimal) -> bool:
    return abs(amount) > threshold


def _cash_amount(totals: Iterable[PaymentModeTotal]) -> Decimal:
    # A draft without a cash line declares zero cash
    return sum((t.amount for t in totals if t.mode == CASH_MODE), ZERO)


def validate_for_submission(draft: CloseDraft, config: CashCounterConfig) -> None:
    """Raise the first violated submission rule as a ``CloseValidationError``."""
    invalid = first_invalid_entry(draft.denominations)
    if invalid is not None:
        raise InvalidDenominationCount(invalid.value, invalid.count)
    for entry in draft.denominations:
        if entry.value not in config.denominations:
            raise UnknownDenomination(entry.value, config.denominations)
    for total in draft.payment_mode_totals:
        if total.amount < ZERO:
            raise InvalidPaymentModeAmount(total.mode, total.amount)

    tolerance = config.tolerance
    declared = payment_mode_total(draft.payment_mode_totals)
    if not amounts_match(declared, draft.expected_total, tolerance):
        raise PaymentModeTotalMismatch(declared, draft.expected_total)

    counted = denomination_total(draft.denominations)
    cash = _cash_amount(draft.payment_mode_totals)
    if not amounts_match(cash, counted, tolerance):
        raise CashModeMismatch(cash, counted)

    for total in draft.payment_mode_totals:
        if total.mode not in config.payment_modes:
            raise UnknownPaymentMode(total.mode, config.payment_modes)


@dataclass(frozen=True)
class ReconciliationSummary:
    counted_total: Decimal
    payment_mode_total: Decimal
    variance: Decimal
    variance_exceeds_threshold: bool
    error: CloseValidationError | None = None

    @property
    def is_valid(self) -> bool:
        return self.error is None


def reconcile(draft: CloseDraft, config: CashCounterConfig) -> ReconciliationSummary:
    """Live figures for a draft being edited, plus the first blocking error."""
    # Entries still being typed are left out of the running total
    counted = denomination_total(e for e in draft.denominations if is_whole_count(e.count))
    diff = variance(draft.expected_total, counted)
    try:
        validate_for_submission(draft, config)
        error = None
    except CloseValidationError as exc:
        error = exc
    return ReconciliationSummary(
        counted_total=counted,
        payment_mode_total=payment_mode_total(draft.payment_mode_totals),
        variance=diff,
        variance_exceeds_threshold=variance_exceeds_threshold(diff, config.variance_threshold),
        error=error,
    )
