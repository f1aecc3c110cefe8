from __future__ import annotations

from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from backend.app.core.database import get_db
from backend.app.core.security import decode_subject, is_token_revoked
from backend.app.models.accounting import User
from backend.app.services.cashier.bootstrap import CashierCloseServices

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login/access-token")


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _user_id_from(token: str) -> UUID:
    if is_token_revoked(token):
        raise _invalid_credentials()
    subject = decode_subject(token)
    if subject is None:
        raise _invalid_credentials()
    try:
        return UUID(subject)
    except ValueError:
        raise _invalid_credentials() from None


def get_current_user(
    db: Session = Depends(get_db),
    token: str = Depends(oauth2_scheme),
) -> User:
    user = db.get(User, _user_id_from(token))
    if user is None:
        raise _invalid_credentials()
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return user


def get_cashier_services(request: Request) -> CashierCloseServices:
    """The process-wide close workflow, built by the app lifespan."""
    return request.app.state.cashier_services
