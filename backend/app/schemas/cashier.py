from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, field_validator

from backend.app.models.cashier import CloseStatus


# ─── Request ──────────────────────────────────────────────────────────────────


class DenominationEntryIn(BaseModel):
    value: Decimal
    # Checked by the reconciliation gate so the error carries its own code
    count: Decimal

    @field_validator("value")
    @classmethod
    def value_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Denomination value must be greater than zero")
        return v


class PaymentModeTotalIn(BaseModel):
    mode: str
    amount: Decimal

    @field_validator("mode")
    @classmethod
    def mode_normalised(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("Payment mode is required")
        return v

    @field_validator("amount")
    @classmethod
    def amount_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Payment mode amount cannot be negative")
        return v


class CloseSubmitRequest(BaseModel):
    expected_total: Decimal
    denominations: list[DenominationEntryIn]
    payment_mode_totals: list[PaymentModeTotalIn]
    notes: str | None = None

    @field_validator("expected_total")
    @classmethod
    def expected_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Expected total cannot be negative")
        return v

    @field_validator("notes")
    @classmethod
    def notes_length(cls, v: str | None) -> str | None:
        if v is not None and len(v) > 1000:
            raise ValueError("Notes must be at most 1000 characters")
        return v


class CloseRejectRequest(BaseModel):
    reason: str | None = None


# ─── Response ─────────────────────────────────────────────────────────────────


class DenominationEntryOut(BaseModel):
    value: Decimal
    count: int
    total: Decimal


class PaymentModeTotalOut(BaseModel):
    mode: str
    amount: Decimal


class CashierCloseOut(BaseModel):
    id: UUID
    cashier_id: UUID
    closing_timestamp: datetime
    currency: str
    expected_total: Decimal
    counted_total: Decimal
    variance: Decimal
    variance_exceeds_threshold: bool
    status: CloseStatus
    denominations: list[DenominationEntryOut]
    payment_mode_totals: list[PaymentModeTotalOut]
    notes: str | None = None
    journal_entry_id: str | None = None
    rejection_reason: str | None = None
    resolved_at: datetime | None = None
    resolved_by: UUID | None = None


class CloseHistoryOut(BaseModel):
    items: list[CashierCloseOut]
    next_cursor: str | None = None


class ValidationIssueOut(BaseModel):
    code: str
    message: str


class ReconciliationPreviewOut(BaseModel):
    currency: str
    counted_total: Decimal
    payment_mode_total: Decimal
    variance: Decimal
    variance_exceeds_threshold: bool
    is_valid: bool
    error: ValidationIssueOut | None = None


class CashCounterSettingsOut(BaseModel):
    currency: str
    denominations: list[Decimal]
    payment_modes: list[str]
    account_mappings: dict[str, str]
    clearing_account: str
    variance_threshold: Decimal
    tolerance: Decimal


class DenominationTemplateOut(BaseModel):
    currency: str
    entries: list[DenominationEntryOut]
