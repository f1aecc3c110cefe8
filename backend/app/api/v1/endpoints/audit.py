from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.permission_deps import require_permission
from backend.app.core.database import get_db
from backend.app.models.accounting import AuditLog, User
from backend.app.services.audit import DatabaseAuditSink

router = APIRouter()


class AuditLogOut(BaseModel):
    id: UUID
    user_id: UUID | None
    action: str
    resource_type: str
    resource_id: str
    changes: dict[str, Any] | None
    ip_address: str | None
    timestamp: datetime


def _out(row: AuditLog) -> AuditLogOut:
    return AuditLogOut(
        id=row.id,
        user_id=row.changed_by,
        action=row.action,
        resource_type=row.table_name,
        resource_id=row.record_id,
        changes=row.new_values,
        ip_address=row.ip_address,
        timestamp=row.created_at,
    )


@router.get("/", response_model=list[AuditLogOut])
def list_audit_logs(
    user_id: UUID | None = Query(None, description="Filter by acting user"),
    action: str | None = Query(None, description="e.g. LOGIN_FAILED, CLOSE_VERIFIED"),
    resource_type: str | None = Query(None, description="e.g. auth, cashier_closes"),
    resource_id: str | None = Query(None, description="e.g. a close id or a username"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission("audit:read")),
) -> list[AuditLogOut]:
    stmt = select(AuditLog)
    if user_id is not None:
        stmt = stmt.where(AuditLog.changed_by == user_id)
    if action is not None:
        stmt = stmt.where(AuditLog.action == action.upper())
    if resource_type is not None:
        stmt = stmt.where(AuditLog.table_name == resource_type)
    if resource_id is not None:
        stmt = stmt.where(AuditLog.record_id == resource_id)
    stmt = stmt.order_by(AuditLog.created_at.desc()).offset(offset).limit(limit)
    return [_out(r) for r in db.scalars(stmt).all()]


@router.get("/closes/{close_id}", response_model=list[AuditLogOut])
def close_audit_trail(
    close_id: UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission("audit:read")),
) -> list[AuditLogOut]:
    """Delivered lifecycle events of one close, submission first."""
    rows = db.scalars(
        select(AuditLog).where(
            AuditLog.table_name == DatabaseAuditSink.RESOURCE_TYPE,
            AuditLog.record_id == str(close_id),
        )
    ).all()
    rows = sorted(rows, key=lambda r: (r.new_values or {}).get("sequence", 0))
    return [_out(r) for r in rows]
