"""Seed the database with roles, demo users and the accounts closes post to.

Usage:
    python -m backend.scripts.seed

Safe to run repeatedly; existing rows are left as they are.
"""

from __future__ import annotations

import logging
import os

from sqlalchemy.orm import Session

from backend.app.core.config import settings
from backend.app.core.database import SessionLocal
from backend.app.core.logging import configure_logging
from backend.app.core.permissions import PERMISSIONS, ROLE_PERMISSIONS
from backend.app.core.security import get_password_hash
from backend.app.models.accounting import Account, AccountType, RoleEnum, User
from backend.app.models.permission import Permission, Role, RolePermission

logger = logging.getLogger("backend.scripts.seed")

ACCOUNTS: list[tuple[str, str, AccountType]] = [
    # Assets: where declared takings end up
    ("1000", "Cash", AccountType.ASSET),
    ("1200", "Card Settlements Receivable", AccountType.ASSET),
    ("1210", "UPI Settlements Receivable", AccountType.ASSET),
    ("1290", "Other Payment Receivables", AccountType.ASSET),
    # Liabilities
    ("2300", "Till Clearing", AccountType.LIABILITY),
    # Revenue
    ("4000", "Sales", AccountType.REVENUE),
    # Expenses
    ("5300", "Cash Shortage", AccountType.EXPENSE),
]

DEMO_USERS: list[tuple[str, RoleEnum]] = [
    ("admin", RoleEnum.ADMIN),
    ("accountant", RoleEnum.ACCOUNTANT),
    ("cashier", RoleEnum.CASHIER),
]


def seed_roles(db: Session) -> dict[str, Role]:
    perm_map: dict[str, Permission] = {}
    for code, desc, cat in PERMISSIONS:
        perm = db.query(Permission).filter_by(code=code).first()
        if perm is None:
            perm = Permission(code=code, description=desc, category=cat)
            db.add(perm)
            logger.info("Created permission %s", code)
        perm_map[code] = perm
    db.flush()

    roles: dict[str, Role] = {}
    for role_name, codes in ROLE_PERMISSIONS.items():
        role = db.query(Role).filter_by(name=role_name).first()
        if role is None:
            role = Role(name=role_name, description=f"{role_name} role", is_system=True)
            db.add(role)
            db.flush()
            logger.info("Created role %s", role_name)
        granted = {
            rp.permission_id
            for rp in db.query(RolePermission).filter_by(role_id=role.id).all()
        }
        for code in codes:
            if perm_map[code].id not in granted:
                db.add(RolePermission(role_id=role.id, permission_id=perm_map[code].id))
        roles[role_name] = role
    db.flush()
    return roles


def seed_accounts(db: Session) -> None:
    for code, name, account_type in ACCOUNTS:
        if db.query(Account).filter_by(code=code).first() is None:
            db.add(Account(code=code, name=name, account_type=account_type))
            logger.info("Created account %s - %s", code, name)
    db.flush()


def seed_users(db: Session, roles: dict[str, Role], password: str) -> None:
    for username, role in DEMO_USERS:
        user = db.query(User).filter_by(username=username).first()
        if user is None:
            db.add(
                User(
                    username=username,
                    hashed_password=get_password_hash(password),
                    role=role,
                    role_id=roles[role.value].id,
                )
            )
            logger.info("Created user %s (%s)", username, role.value)
        elif user.role_id is None:
            user.role_id = roles[role.value].id
            logger.info("Assigned %s role to %s", role.value, username)
    db.flush()


def seed(db: Session, password: str = "ChangeMe@2026!") -> None:
    roles = seed_roles(db)
    seed_accounts(db)
    seed_users(db, roles, password)
    db.commit()


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    db = SessionLocal()
    try:
        seed(db, os.environ.get("SEED_PASSWORD", "ChangeMe@2026!"))
    finally:
        db.close()


if __name__ == "__main__":
    main()
