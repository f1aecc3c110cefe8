from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from backend.app.core.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ALGORITHM = "HS256"


def create_access_token(subject: str, expires_delta: timedelta | None = None) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return jwt.encode({"sub": subject, "exp": expire}, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_subject(token: str) -> str | None:
    """Return the ``sub`` claim of a valid, unexpired token, else None."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


class TokenDenyList:
    """Tokens revoked by logout, kept until they would have expired anyway.

    Process-local; several replicas need a shared store instead.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, float] = {}
        self._lock = threading.Lock()

    def revoke(self, token: str) -> None:
        try:
            claims = jwt.get_unverified_claims(token)
            expires_at = float(claims.get("exp", 0))
        except (JWTError, TypeError, ValueError):
            expires_at = 0.0
        now = datetime.now(timezone.utc).timestamp()
        with self._lock:
            self._tokens = {t: exp for t, exp in self._tokens.items() if exp > now}
            # Undecodable tokens are kept; they can never validate anyway
            self._tokens[token] = expires_at or float("inf")

    def __contains__(self, token: str) -> bool:
        with self._lock:
            return token in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


_revoked_tokens = TokenDenyList()


def revoke_token(token: str) -> None:
    _revoked_tokens.revoke(token)


def is_token_revoked(token: str) -> bool:
    return token in _revoked_tokens
