from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from backend.app.api.deps import get_cashier_services, get_current_user
from backend.app.api.permission_deps import (
    load_user_permissions,
    require_any_permission,
    require_permission,
)
from backend.app.core.database import get_db
from backend.app.models.accounting import User
from backend.app.schemas.cashier import (
    CashCounterSettingsOut,
    CashierCloseOut,
    CloseHistoryOut,
    CloseRejectRequest,
    CloseSubmitRequest,
    DenominationEntryOut,
    DenominationTemplateOut,
    PaymentModeTotalOut,
    ReconciliationPreviewOut,
    ValidationIssueOut,
)
from backend.app.services.cashier.bootstrap import CashierCloseServices
from backend.app.services.cashier.config import CashCounterConfig
from backend.app.services.cashier.denominations import build_template
from backend.app.services.cashier.domain import (
    CashierClose,
    CloseDraft,
    DenominationEntry,
    PaymentModeTotal,
)
from backend.app.services.cashier.errors import (
    CashierCloseError,
    CloseConflictError,
    CloseNotFound,
    ClosePersistenceError,
    CloseValidationError,
    InvalidCursor,
    InvalidReason,
    PostingError,
    PostingTimeout,
)
from backend.app.services.cashier.money import quantize_money, to_decimal
from backend.app.services.cashier.reconciliation import (
    reconcile,
    variance_exceeds_threshold,
)

router = APIRouter()


# ─── Error mapping ───────────────────────────────────────────────────────────


def _status_for(exc: CashierCloseError) -> int:
    if isinstance(exc, InvalidCursor):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, (CloseValidationError, InvalidReason)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, CloseConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, CloseNotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, PostingTimeout):
        return status.HTTP_504_GATEWAY_TIMEOUT
    if isinstance(exc, PostingError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, ClosePersistenceError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_400_BAD_REQUEST


def _http_error(exc: CashierCloseError) -> HTTPException:
    return HTTPException(
        status_code=_status_for(exc),
        detail={"code": exc.code, "message": str(exc), "retryable": exc.retryable},
    )


# ─── Shaping ─────────────────────────────────────────────────────────────────


def _close_out(close: CashierClose, config: CashCounterConfig) -> CashierCloseOut:
    cur = close.currency
    return CashierCloseOut(
        id=close.id,
        cashier_id=close.cashier_id,
        closing_timestamp=close.closing_timestamp,
        currency=cur,
        expected_total=quantize_money(close.expected_total, cur),
        counted_total=quantize_money(close.counted_total, cur),
        variance=quantize_money(close.variance, cur),
        variance_exceeds_threshold=variance_exceeds_threshold(
            close.variance, config.variance_threshold
        ),
        status=close.status,
        denominations=[
            DenominationEntryOut(
                value=quantize_money(d.value, cur),
                count=int(to_decimal(d.count)),
                total=quantize_money(d.total, cur),
            )
            for d in close.denominations
        ],
        payment_mode_totals=[
            PaymentModeTotalOut(mode=p.mode, amount=quantize_money(p.amount, cur))
            for p in close.payment_mode_totals
        ],
        notes=close.notes,
        journal_entry_id=close.journal_entry_id,
        rejection_reason=close.rejection_reason,
        resolved_at=close.resolved_at,
        resolved_by=close.resolved_by,
    )


def _draft(payload: CloseSubmitRequest, cashier_id: UUID) -> CloseDraft:
    return CloseDraft(
        cashier_id=cashier_id,
        expected_total=payload.expected_total,
        denominations=tuple(
            DenominationEntry(value=d.value, count=d.count) for d in payload.denominations
        ),
        payment_mode_totals=tuple(
            PaymentModeTotal(mode=p.mode, amount=p.amount) for p in payload.payment_mode_totals
        ),
        notes=payload.notes,
    )


def _can_read_all(db: Session, user: User) -> bool:
    return "cashier:read" in load_user_permissions(db, user)


# ─── Settings & template ─────────────────────────────────────────────────────


@router.get("/settings", response_model=CashCounterSettingsOut)
def get_cash_counter_settings(
    services: CashierCloseServices = Depends(get_cashier_services),
    _user: User = Depends(get_current_user),
) -> CashCounterSettingsOut:
    config = services.config_provider.get()
    return CashCounterSettingsOut(
        currency=config.currency,
        denominations=list(config.denominations),
        payment_modes=list(config.payment_modes),
        account_mappings=dict(config.account_mappings),
        clearing_account=config.clearing_account,
        variance_threshold=config.variance_threshold,
        tolerance=config.tolerance,
    )


@router.get("/denominations/template", response_model=DenominationTemplateOut)
def get_denomination_template(
    services: CashierCloseServices = Depends(get_cashier_services),
    _user: User = Depends(require_permission("cashier:close")),
) -> DenominationTemplateOut:
    config = services.config_provider.get()
    return DenominationTemplateOut(
        currency=config.currency,
        entries=[
            DenominationEntryOut(value=e.value, count=0, total=e.total)
            for e in build_template(config.denominations)
        ],
    )


# ─── Cashier: preview & submit ───────────────────────────────────────────────


@router.post("/close/preview", response_model=ReconciliationPreviewOut)
def preview_close(
    payload: CloseSubmitRequest,
    services: CashierCloseServices = Depends(get_cashier_services),
    current_user: User = Depends(require_permission("cashier:close")),
) -> ReconciliationPreviewOut:
    """Live reconciliation figures for the close form; nothing is stored."""
    config = services.config_provider.get()
    summary = reconcile(_draft(payload, current_user.id), config)
    cur = config.currency
    return ReconciliationPreviewOut(
        currency=cur,
        counted_total=quantize_money(summary.counted_total, cur),
        payment_mode_total=quantize_money(summary.payment_mode_total, cur),
        variance=quantize_money(summary.variance, cur),
        variance_exceeds_threshold=summary.variance_exceeds_threshold,
        is_valid=summary.is_valid,
        error=(
            ValidationIssueOut(code=summary.error.code, message=str(summary.error))
            if summary.error is not None
            else None
        ),
    )


@router.post("/close", response_model=CashierCloseOut, status_code=status.HTTP_201_CREATED)
def submit_close(
    payload: CloseSubmitRequest,
    services: CashierCloseServices = Depends(get_cashier_services),
    current_user: User = Depends(require_permission("cashier:close")),
) -> CashierCloseOut:
    config = services.config_provider.get()
    try:
        close = services.lifecycle.submit(
            _draft(payload, current_user.id), config, actor_id=current_user.id
        )
    except CashierCloseError as e:
        raise _http_error(e) from e
    return _close_out(close, config)


# ─── Reads ───────────────────────────────────────────────────────────────────


@router.get("/close/pending", response_model=list[CashierCloseOut])
def list_pending_closes(
    services: CashierCloseServices = Depends(get_cashier_services),
    _user: User = Depends(require_permission("cashier:read")),
) -> list[CashierCloseOut]:
    config = services.config_provider.get()
    return [_close_out(c, config) for c in services.queries.list_pending()]


@router.get("/close/history", response_model=CloseHistoryOut)
def close_history(
    cashier_id: UUID | None = Query(None, description="Only closes of this cashier"),
    limit: int | None = Query(None, ge=1),
    cursor: str | None = Query(None, description="next_cursor of the previous page"),
    db: Session = Depends(get_db),
    services: CashierCloseServices = Depends(get_cashier_services),
    current_user: User = Depends(require_any_permission("cashier:close", "cashier:read")),
) -> CloseHistoryOut:
    # Cashiers without cashier:read only see their own closes
    if not _can_read_all(db, current_user):
        if cashier_id is not None and cashier_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Missing permissions: cashier:read",
            )
        cashier_id = current_user.id

    config = services.config_provider.get()
    try:
        page = services.queries.history(cashier_id=cashier_id, limit=limit, cursor=cursor)
    except CashierCloseError as e:
        raise _http_error(e) from e
    return CloseHistoryOut(
        items=[_close_out(c, config) for c in page.items],
        next_cursor=page.next_cursor,
    )


@router.get("/close/{close_id}", response_model=CashierCloseOut)
def get_close(
    close_id: UUID,
    db: Session = Depends(get_db),
    services: CashierCloseServices = Depends(get_cashier_services),
    current_user: User = Depends(require_any_permission("cashier:close", "cashier:read")),
) -> CashierCloseOut:
    try:
        close = services.queries.get_by_id(close_id)
    except CashierCloseError as e:
        raise _http_error(e) from e
    if close.cashier_id != current_user.id and not _can_read_all(db, current_user):
        # Someone else's close looks the same as a missing one
        raise _http_error(CloseNotFound(close_id))
    return _close_out(close, services.config_provider.get())


# ─── Accountant: verify & reject ─────────────────────────────────────────────


@router.post("/close/{close_id}/verify", response_model=CashierCloseOut)
def verify_close(
    close_id: UUID,
    services: CashierCloseServices = Depends(get_cashier_services),
    current_user: User = Depends(require_permission("cashier:verify")),
) -> CashierCloseOut:
    """Post the close to the ledger and mark it verified.

    A 502/504 leaves the close pending; re-issuing the request is safe.
    """
    try:
        close = services.lifecycle.approve(
            close_id,
            actor_id=current_user.id,
            timeout=services.settings.LEDGER_POST_TIMEOUT_SECONDS,
        )
    except CashierCloseError as e:
        raise _http_error(e) from e
    return _close_out(close, services.config_provider.get())


@router.post("/close/{close_id}/reject", response_model=CashierCloseOut)
def reject_close(
    close_id: UUID,
    payload: CloseRejectRequest,
    services: CashierCloseServices = Depends(get_cashier_services),
    current_user: User = Depends(require_permission("cashier:verify")),
) -> CashierCloseOut:
    try:
        close = services.lifecycle.reject(
            close_id, payload.reason, actor_id=current_user.id
        )
    except CashierCloseError as e:
        raise _http_error(e) from e
    return _close_out(close, services.config_provider.get())
