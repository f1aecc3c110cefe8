from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from backend.app.api.deps import get_current_user, oauth2_scheme
from backend.app.api.permission_deps import load_user_permissions
from backend.app.core.config import settings
from backend.app.core.database import get_db
from backend.app.core.security import (
    create_access_token,
    revoke_token,
    verify_password,
)
from backend.app.middleware.rate_limit import InMemoryRateLimiter
from backend.app.models.accounting import User
from backend.app.services.audit import log_action

logger = logging.getLogger(__name__)

router = APIRouter()

# In-memory per-IP rate limiter. For multi-replica, use a shared store.
_login_limiter = InMemoryRateLimiter(window_seconds=60, max_attempts=5)


def _utc(dt: datetime) -> datetime:
    # SQLite returns naive datetimes
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _record(
    db: Session,
    action: str,
    username: str,
    ip: str,
    user: User | None,
    **changes: Any,
) -> None:
    log_action(
        db,
        user_id=user.id if user else None,
        action=action,
        resource_type="auth",
        resource_id=username,
        ip_address=ip,
        changes=changes or None,
    )


def _register_failure(db: Session, user: User, username: str, ip: str) -> None:
    user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
    if user.failed_login_attempts >= settings.MAX_LOGIN_ATTEMPTS:
        user.locked_until = datetime.now(timezone.utc) + timedelta(
            minutes=settings.LOCKOUT_MINUTES
        )
        logger.warning("Locked account %s after %d failed logins", username, user.failed_login_attempts)
        _record(db, "ACCOUNT_LOCKED", username, ip, user, failed_attempts=user.failed_login_attempts)


@router.post("/login/access-token")
def login_access_token(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
) -> dict[str, str]:
    ip = request.client.host if request.client else "unknown"
    username = form_data.username
    _login_limiter.check(ip)

    user = db.query(User).filter(User.username == username).first()

    if user and user.locked_until:
        now = datetime.now(timezone.utc)
        locked_until = _utc(user.locked_until)
        if now < locked_until:
            remaining = int((locked_until - now).total_seconds() // 60) + 1
            _record(db, "LOGIN_BLOCKED", username, ip, user, reason="account_locked")
            db.commit()
            raise HTTPException(
                status_code=status.HTTP_423_LOCKED,
                detail=f"Account locked. Try again in {remaining} minutes.",
            )
        # Lockout expired
        user.failed_login_attempts = 0
        user.locked_until = None

    if not user or not verify_password(form_data.password, user.hashed_password):
        if user:
            _register_failure(db, user, username, ip)
        _record(db, "LOGIN_FAILED", username, ip, user, reason="invalid_credentials")
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        _record(db, "LOGIN_FAILED", username, ip, user, reason="inactive_user")
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user"
        )

    user.failed_login_attempts = 0
    user.locked_until = None
    _record(db, "LOGIN_SUCCESS", str(user.id), ip, user, username=user.username, role=user.role.value)
    db.commit()

    return {
        "access_token": create_access_token(subject=str(user.id)),
        "token_type": "bearer",
    }


@router.post("/logout")
def logout(token: str = Depends(oauth2_scheme)) -> dict[str, str]:
    """Invalidate the current access token."""
    revoke_token(token)
    return {"detail": "Logged out successfully"}


@router.get("/me")
def read_current_user(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, Any]:
    """Who is signed in and what the close screens may offer them."""
    return {
        "id": str(current_user.id),
        "username": current_user.username,
        "role": current_user.role.value,
        "permissions": sorted(load_user_permissions(db, current_user)),
    }
