"""Permission codes and the system roles that bundle them.

The initial migration carries a frozen copy; ``backend.scripts.seed`` and the
test fixtures use this one.
"""

from __future__ import annotations

PERMISSIONS: list[tuple[str, str, str]] = [
    ("cashier:close", "Submit own cashier close", "cashier"),
    ("cashier:verify", "Verify or reject cashier closes", "cashier"),
    ("cashier:read", "View all cashier closes", "cashier"),
    ("audit:read", "View audit logs", "admin"),
]

ALL_CODES = [code for code, _, _ in PERMISSIONS]

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "ADMIN": ALL_CODES,
    "ACCOUNTANT": ["cashier:verify", "cashier:read", "audit:read"],
    "CASHIER": ["cashier:close"],
}
