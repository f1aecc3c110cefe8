"""Shared test fixtures.

Each test gets its own SQLite database file. Close services open their own
short sessions, so fixtures commit what they create instead of relying on a
rolled-back outer transaction.
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from backend.app.api.v1.endpoints import auth as auth_endpoints
from backend.app.core.config import Settings
from backend.app.core.database import Base, get_db
from backend.app.core.security import create_access_token, get_password_hash
from backend.app.main import app
from backend.app.models.accounting import Account, RoleEnum, User
from backend.app.models.permission import Role
from backend.app.services.audit import RecordingAuditSink
from backend.app.services.cashier.bootstrap import CashierCloseServices
from backend.app.services.cashier.config import CashCounterConfig, StaticConfigProvider
from backend.app.services.cashier.domain import (
    CashierClose,
    CloseDraft,
    DenominationEntry,
    PaymentModeTotal,
)
from backend.scripts.seed import seed_accounts as _seed_accounts
from backend.scripts.seed import seed_roles as _seed_roles


# ─── Database ────────────────────────────────────────────────────────────────


@pytest.fixture()
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    eng = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# ─── Roles & permissions ─────────────────────────────────────────────────────


@pytest.fixture()
def seed_roles(db: Session) -> dict[str, Role]:
    """Permissions and the ADMIN / ACCOUNTANT / CASHIER roles."""
    roles = _seed_roles(db)
    db.commit()
    return roles


def _make_user(db: Session, username: str, role: RoleEnum, roles: dict[str, Role]) -> User:
    user = User(
        username=username,
        hashed_password=get_password_hash("pass"),
        role=role,
        role_id=roles[role.value].id,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def admin_user(db: Session, seed_roles: dict[str, Role]) -> User:
    return _make_user(db, "test_admin", RoleEnum.ADMIN, seed_roles)


@pytest.fixture()
def accountant_user(db: Session, seed_roles: dict[str, Role]) -> User:
    return _make_user(db, "test_accountant", RoleEnum.ACCOUNTANT, seed_roles)


@pytest.fixture()
def cashier_user(db: Session, seed_roles: dict[str, Role]) -> User:
    return _make_user(db, "test_cashier", RoleEnum.CASHIER, seed_roles)


@pytest.fixture()
def other_cashier_user(db: Session, seed_roles: dict[str, Role]) -> User:
    return _make_user(db, "test_cashier_2", RoleEnum.CASHIER, seed_roles)


@pytest.fixture()
def admin_token(admin_user: User) -> str:
    return create_access_token(subject=str(admin_user.id))


@pytest.fixture()
def accountant_token(accountant_user: User) -> str:
    return create_access_token(subject=str(accountant_user.id))


@pytest.fixture()
def cashier_token(cashier_user: User) -> str:
    return create_access_token(subject=str(cashier_user.id))


@pytest.fixture()
def other_cashier_token(other_cashier_user: User) -> str:
    return create_access_token(subject=str(other_cashier_user.id))


def auth(token: str) -> dict[str, str]:
    """Return Authorization header dict."""
    return {"Authorization": f"Bearer {token}"}


# ─── Chart of accounts ───────────────────────────────────────────────────────


@pytest.fixture()
def seed_accounts(db: Session) -> dict[str, Account]:
    """Accounts the close postings map to, keyed by code."""
    _seed_accounts(db)
    db.commit()
    return {a.code: a for a in db.query(Account).all()}


# ─── Cash counter ────────────────────────────────────────────────────────────


@pytest.fixture()
def config() -> CashCounterConfig:
    """INR counter with denominations 1000/500/100 and a 100 variance threshold."""
    return CashCounterConfig(
        currency="INR",
        denominations=(Decimal("1000"), Decimal("500"), Decimal("100")),
        payment_modes=("cash", "card", "upi", "other"),
        account_mappings={"cash": "1000", "card": "1200", "upi": "1210", "other": "1290"},
        clearing_account="2300",
        variance_threshold=Decimal("100"),
    )


def make_draft(
    cashier_id: UUID,
    expected: str = "5000.00",
    counts: dict[str, object] | None = None,
    modes: dict[str, str] | None = None,
    notes: str | None = None,
) -> CloseDraft:
    """Draft for scenario-style tests; defaults to 5 x 1000 all in cash."""
    counts = {"1000": 5} if counts is None else counts
    modes = {"cash": expected} if modes is None else modes
    return CloseDraft(
        cashier_id=cashier_id,
        expected_total=Decimal(expected),
        denominations=tuple(
            DenominationEntry(value=Decimal(v), count=c) for v, c in counts.items()
        ),
        payment_mode_totals=tuple(
            PaymentModeTotal(mode=m, amount=Decimal(a)) for m, a in modes.items()
        ),
        notes=notes,
    )


def make_close(
    cashier_id: UUID,
    close_id: UUID,
    at: datetime | None = None,
    modes: dict[str, str] | None = None,
) -> CashierClose:
    """A REQUESTED close as the lifecycle would have stored it."""
    modes = {"cash": "5000.00"} if modes is None else modes
    cash = Decimal(modes.get("cash", "0"))
    return CashierClose(
        id=close_id,
        cashier_id=cashier_id,
        closing_timestamp=at or datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc),
        currency="INR",
        expected_total=sum((Decimal(a) for a in modes.values()), Decimal("0")),
        denominations=(DenominationEntry(value=Decimal("1000"), count=int(cash // 1000)),),
        payment_mode_totals=tuple(
            PaymentModeTotal(mode=m, amount=Decimal(a)) for m, a in modes.items()
        ),
        counted_total=cash,
        variance=cash - sum((Decimal(a) for a in modes.values()), Decimal("0")),
    )


def minutes_after(base: datetime, n: int) -> datetime:
    return base + timedelta(minutes=n)


# ─── App wiring ──────────────────────────────────────────────────────────────


@pytest.fixture()
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture()
def services(
    session_factory: sessionmaker[Session], config: CashCounterConfig
) -> CashierCloseServices:
    """Close workflow over the test database, audit written to audit_logs."""
    return CashierCloseServices(
        session_factory,
        app_settings=Settings(AUDIT_RETRY_BACKOFF_SECONDS=0.01, LEDGER_POST_TIMEOUT_SECONDS=5),
        config_provider=StaticConfigProvider(config),
    )


@pytest.fixture()
def client(
    session_factory: sessionmaker[Session], services: CashierCloseServices
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to the per-test database."""

    def _override_get_db() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.state.cashier_services = services
    auth_endpoints._login_limiter.reset()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.cashier_services = None

