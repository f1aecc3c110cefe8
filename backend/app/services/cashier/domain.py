"""Value objects of the cashier close workflow.

``CashierClose`` is immutable; a transition returns a new instance. The
allowed transitions are listed in ``CLOSE_TRANSITIONS`` and terminal
statuses have no outgoing edge.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from backend.app.models.cashier import CloseStatus
from backend.app.services.cashier.errors import AlreadyResolved, InvalidReason
from backend.app.services.cashier.money import ZERO, to_decimal

CLOSE_TRANSITIONS: dict[CloseStatus, frozenset[CloseStatus]] = {
    CloseStatus.REQUESTED: frozenset({CloseStatus.VERIFIED, CloseStatus.REJECTED}),
    CloseStatus.VERIFIED: frozenset(),
    CloseStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES: frozenset[CloseStatus] = frozenset(
    status for status, targets in CLOSE_TRANSITIONS.items() if not targets
)


@dataclass(frozen=True)
class DenominationEntry:
    """One banknote/coin value and how many were counted.

    ``count`` is kept as entered (it may be fractional or negative while the
    cashier is still typing); ``validate_denominations`` is the gate.
    """

    value: Decimal
    count: int | Decimal

    @property
    def total(self) -> Decimal:
        return self.value * to_decimal(self.count)


@dataclass(frozen=True)
class PaymentModeTotal:
    mode: str
    amount: Decimal


@dataclass(frozen=True)
class CloseDraft:
    cashier_id: UUID
    expected_total: Decimal
    denominations: tuple[DenominationEntry, ...]
    payment_mode_totals: tuple[PaymentModeTotal, ...]
    notes: str | None = None


@dataclass(frozen=True)
class CashierClose:
    id: UUID
    cashier_id: UUID
    closing_timestamp: datetime
    currency: str
    expected_total: Decimal
    denominations: tuple[DenominationEntry, ...]
    payment_mode_totals: tuple[PaymentModeTotal, ...]
    counted_total: Decimal
    variance: Decimal
    status: CloseStatus = CloseStatus.REQUESTED
    notes: str | None = None
    journal_entry_id: str | None = None
    rejection_reason: str | None = None
    resolved_at: datetime | None = None
    resolved_by: UUID | None = field(default=None, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def amount_for_mode(self, mode: str) -> Decimal:
        return sum(
            (p.amount for p in self.payment_mode_totals if p.mode == mode), ZERO
        )

    def _transition(self, target: CloseStatus) -> None:
        if target not in CLOSE_TRANSITIONS[self.status]:
            raise AlreadyResolved(self.id, self.status)

    def verify(
        self, journal_entry_id: str, *, at: datetime, by: UUID | None = None
    ) -> CashierClose:
        self._transition(CloseStatus.VERIFIED)
        return replace(
            self,
            status=CloseStatus.VERIFIED,
            journal_entry_id=journal_entry_id,
            resolved_at=at,
            resolved_by=by,
        )

    def reject(self, reason: str, *, at: datetime, by: UUID | None = None) -> CashierClose:
        self._transition(CloseStatus.REJECTED)
        reason = (reason or "").strip()
        if not reason:
            raise InvalidReason()
        return replace(
            self,
            status=CloseStatus.REJECTED,
            rejection_reason=reason,
            resolved_at=at,
            resolved_by=by,
        )
