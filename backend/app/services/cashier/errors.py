"""Typed errors raised by the cashier close workflow.

Callers branch on the exception type (or its ``code``), never on the message.
Messages are written to be shown to the user as-is.

    CashierCloseError
    ├── CloseValidationError          draft rejected, nothing persisted
    │   ├── InvalidDenominationCount
    │   ├── UnknownDenomination
    │   ├── InvalidPaymentModeAmount
    │   ├── PaymentModeTotalMismatch
    │   ├── CashModeMismatch
    │   └── UnknownPaymentMode
    ├── CloseConflictError            re-fetch state, do not resend
    │   ├── AlreadyPendingClose
    │   ├── AlreadyResolved
    │   └── PostingInProgress         retryable once the post settles
    ├── CloseNotFound
    ├── PostingError                  retryable by re-issuing approve
    │   ├── PostingTimeout
    │   └── PostingCancelled
    ├── InvalidReason
    ├── InvalidCursor
    └── ClosePersistenceError         ledger posted, status write failed
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from backend.app.models.cashier import CloseStatus


class CashierCloseError(Exception):
    code = "CASHIER_CLOSE_ERROR"
    retryable = False


# ─── Validation ──────────────────────────────────────────────────────────────


class CloseValidationError(CashierCloseError):
    code = "VALIDATION_ERROR"


class InvalidDenominationCount(CloseValidationError):
    code = "INVALID_DENOMINATION_COUNT"

    def __init__(self, value: Decimal, count: object) -> None:
        self.value = value
        self.count = count
        super().__init__(
            f"Count for denomination {value} must be a non-negative whole number, got {count}"
        )


class UnknownDenomination(CloseValidationError):
    code = "UNKNOWN_DENOMINATION"

    def __init__(self, value: Decimal, allowed: tuple[Decimal, ...]) -> None:
        self.value = value
        self.allowed = allowed
        super().__init__(
            f"Denomination {value} is not configured for this counter "
            f"(allowed: {', '.join(str(d) for d in allowed)})"
        )


class InvalidPaymentModeAmount(CloseValidationError):
    code = "INVALID_PAYMENT_MODE_AMOUNT"

    def __init__(self, mode: str, amount: Decimal) -> None:
        self.mode = mode
        self.amount = amount
        super().__init__(f"Amount for payment mode '{mode}' must not be negative, got {amount}")


class PaymentModeTotalMismatch(CloseValidationError):
    code = "PAYMENT_MODE_TOTAL_MISMATCH"

    def __init__(self, declared: Decimal, expected: Decimal) -> None:
        self.declared = declared
        self.expected = expected
        super().__init__(
            f"Payment mode totals ({declared}) do not match the expected total ({expected})"
        )


class CashModeMismatch(CloseValidationError):
    code = "CASH_MODE_MISMATCH"

    def __init__(self, cash_amount: Decimal, counted: Decimal) -> None:
        self.cash_amount = cash_amount
        self.counted = counted
        super().__init__(
            f"Cash payment mode amount ({cash_amount}) does not match the counted cash ({counted})"
        )


class UnknownPaymentMode(CloseValidationError):
    code = "UNKNOWN_PAYMENT_MODE"

    def __init__(self, mode: str, allowed: tuple[str, ...]) -> None:
        self.mode = mode
        self.allowed = allowed
        super().__init__(
            f"Payment mode '{mode}' is not configured (allowed: {', '.join(allowed)})"
        )


# ─── Conflicts ───────────────────────────────────────────────────────────────


class CloseConflictError(CashierCloseError):
    code = "CONFLICT"


class AlreadyPendingClose(CloseConflictError):
    code = "ALREADY_PENDING_CLOSE"

    def __init__(self, cashier_id: UUID, close_id: UUID | None = None) -> None:
        self.cashier_id = cashier_id
        self.close_id = close_id
        super().__init__("close already pending")


class AlreadyResolved(CloseConflictError):
    code = "ALREADY_RESOLVED"

    def __init__(self, close_id: UUID, status: CloseStatus) -> None:
        self.close_id = close_id
        self.status = status
        super().__init__(f"Close {close_id} is already {status.value.lower()}")


class PostingInProgress(CloseConflictError):
    code = "POSTING_IN_PROGRESS"
    retryable = True

    def __init__(self, close_id: UUID) -> None:
        self.close_id = close_id
        super().__init__(
            f"A ledger posting for close {close_id} is still running; retry once it settles"
        )


# ─── Lookup / input ──────────────────────────────────────────────────────────


class CloseNotFound(CashierCloseError):
    code = "NOT_FOUND"

    def __init__(self, close_id: UUID) -> None:
        self.close_id = close_id
        super().__init__(f"Cashier close {close_id} not found")


class InvalidReason(CashierCloseError):
    code = "INVALID_REASON"

    def __init__(self) -> None:
        super().__init__("A rejection reason is required")


class InvalidCursor(CashierCloseError):
    code = "INVALID_CURSOR"

    def __init__(self, cursor: str) -> None:
        self.cursor = cursor
        super().__init__("History cursor is malformed or expired")


# ─── Ledger posting ──────────────────────────────────────────────────────────


class PostingError(CashierCloseError):
    code = "POSTING_FAILED"
    retryable = True

    def __init__(self, close_id: UUID, detail: str) -> None:
        self.close_id = close_id
        self.detail = detail
        super().__init__(f"Ledger posting failed for close {close_id}: {detail}")


class PostingTimeout(PostingError):
    code = "POSTING_TIMEOUT"

    def __init__(self, close_id: UUID, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(close_id, f"no response within {timeout:g}s")


class PostingCancelled(PostingError):
    code = "POSTING_CANCELLED"

    def __init__(self, close_id: UUID) -> None:
        super().__init__(close_id, "cancelled before the ledger responded")


class ClosePersistenceError(CashierCloseError):
    code = "CLOSE_PERSISTENCE_FAILED"

    def __init__(self, close_id: UUID, journal_entry_id: str) -> None:
        self.close_id = close_id
        self.journal_entry_id = journal_entry_id
        super().__init__(
            f"Journal entry {journal_entry_id} was posted for close {close_id} "
            "but the close could not be marked verified"
        )


class ConcurrentCloseUpdate(Exception):
    """Compare-and-swap miss: the stored status is no longer REQUESTED."""

    def __init__(self, close_id: UUID) -> None:
        self.close_id = close_id
        super().__init__(f"Close {close_id} changed concurrently")
