# Model registry
#
# Importing this module registers every mapped class on ``Base.metadata`` so
# string-based relationships resolve and ``create_all`` sees every table.

from backend.app.models.user import RoleEnum, User
from backend.app.models.permission import Permission, Role, RolePermission
from backend.app.models.account import AccountType, Account
from backend.app.models.journal import JournalEntry, TransactionSplit
from backend.app.models.audit import AuditLog
from backend.app.models.cashier import (
    CashierCloseDenomination,
    CashierClosePaymentMode,
    CashierCloseRecord,
    CloseStatus,
)

__all__ = [
    "RoleEnum",
    "User",
    "Permission",
    "Role",
    "RolePermission",
    "AccountType",
    "Account",
    "JournalEntry",
    "TransactionSplit",
    "AuditLog",
    "CashierCloseDenomination",
    "CashierClosePaymentMode",
    "CashierCloseRecord",
    "CloseStatus",
]
