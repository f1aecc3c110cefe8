"""cashier close schema: users, roles, ledger, audit log, cashier closes

Revision ID: p5d6e7f8a9b0
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from typing import Sequence, Union
import uuid

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = "p5d6e7f8a9b0"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# ─── Permission definitions ─────────────────────────────────────────────────

PERMISSIONS: list[dict[str, str]] = [
    {"code": "cashier:close", "description": "Submit own cashier close", "category": "cashier"},
    {"code": "cashier:verify", "description": "Verify or reject cashier closes", "category": "cashier"},
    {"code": "cashier:read", "description": "View all cashier closes", "category": "cashier"},
    {"code": "audit:read", "description": "View audit logs", "category": "admin"},
]

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "ADMIN": [p["code"] for p in PERMISSIONS],
    "ACCOUNTANT": ["cashier:verify", "cashier:read", "audit:read"],
    "CASHIER": ["cashier:close"],
}

ROLE_DESCRIPTIONS: dict[str, str] = {
    "ADMIN": "Full system access",
    "ACCOUNTANT": "Reviews and verifies cashier closes",
    "CASHIER": "Counts the till and submits closes",
}

CLOSE_STATUS = sa.Enum("REQUESTED", "VERIFIED", "REJECTED", name="closestatus")


def upgrade() -> None:
    # 1. Access control
    op.create_table(
        "permissions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(100), unique=True, nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
    )
    op.create_table(
        "roles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(100), unique=True, nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", UUID(as_uuid=True), sa.ForeignKey("roles.id"), primary_key=True),
        sa.Column("permission_id", UUID(as_uuid=True), sa.ForeignKey("permissions.id"), primary_key=True),
    )
    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("username", sa.String(150), unique=True, nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("role", sa.Enum("ADMIN", "ACCOUNTANT", "CASHIER", name="roleenum"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("failed_login_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("role_id", UUID(as_uuid=True), sa.ForeignKey("roles.id"), nullable=True),
    )

    # 2. Ledger
    op.create_table(
        "accounts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(20), unique=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "account_type",
            sa.Enum("ASSET", "LIABILITY", "EQUITY", "REVENUE", "EXPENSE", name="accounttype"),
            nullable=False,
        ),
        sa.Column("parent_id", UUID(as_uuid=True), sa.ForeignKey("accounts.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_accounts_type", "accounts", ["account_type"])

    op.create_table(
        "journal_entries",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("entry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("reference", sa.String(100), unique=True, nullable=True),
        sa.Column("created_by", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_journal_entries_date", "journal_entries", ["entry_date"])

    op.create_table(
        "transaction_splits",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("journal_entry_id", UUID(as_uuid=True), sa.ForeignKey("journal_entries.id"), nullable=False),
        sa.Column("account_id", UUID(as_uuid=True), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("debit_amount", sa.Numeric(20, 4), nullable=False, server_default="0"),
        sa.Column("credit_amount", sa.Numeric(20, 4), nullable=False, server_default="0"),
        sa.CheckConstraint(
            "(debit_amount > 0 AND credit_amount = 0) OR "
            "(credit_amount > 0 AND debit_amount = 0)",
            name="ck_split_debit_xor_credit",
        ),
    )
    op.create_index("ix_splits_journal", "transaction_splits", ["journal_entry_id"])
    op.create_index("ix_splits_account", "transaction_splits", ["account_id"])

    # 3. Audit log
    op.create_table(
        "audit_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("table_name", sa.String(100), nullable=False),
        sa.Column("record_id", sa.String(255), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("changed_by", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("old_values", JSONB(), nullable=True),
        sa.Column("new_values", JSONB(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_table_record", "audit_logs", ["table_name", "record_id"])
    op.create_index("ix_audit_created_at", "audit_logs", ["created_at"])
    op.create_index("ix_audit_action", "audit_logs", ["action"])
    op.create_index("ix_audit_changed_by", "audit_logs", ["changed_by"])

    # 4. Cashier closes
    op.create_table(
        "cashier_closes",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("cashier_id", UUID(as_uuid=True), nullable=False),
        sa.Column("closing_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("expected_total", sa.Numeric(20, 4), nullable=False),
        sa.Column("counted_total", sa.Numeric(20, 4), nullable=False),
        sa.Column("variance", sa.Numeric(20, 4), nullable=False),
        sa.Column("status", CLOSE_STATUS, nullable=False, server_default="REQUESTED"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("journal_entry_id", sa.String(100), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", UUID(as_uuid=True), nullable=True),
        sa.CheckConstraint(
            "status != 'VERIFIED' OR journal_entry_id IS NOT NULL",
            name="ck_cashier_close_verified_has_journal",
        ),
        sa.CheckConstraint(
            "status != 'REJECTED' OR rejection_reason IS NOT NULL",
            name="ck_cashier_close_rejected_has_reason",
        ),
    )
    # One pending close per cashier
    op.create_index(
        "uq_cashier_closes_one_pending",
        "cashier_closes",
        ["cashier_id"],
        unique=True,
        postgresql_where=sa.text("status = 'REQUESTED'"),
    )
    op.create_index("ix_cashier_closes_status", "cashier_closes", ["status"])
    op.create_index("ix_cashier_closes_cashier_ts", "cashier_closes", ["cashier_id", "closing_timestamp"])
    op.create_index("ix_cashier_closes_ts", "cashier_closes", ["closing_timestamp"])

    op.create_table(
        "cashier_close_denominations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("close_id", UUID(as_uuid=True), sa.ForeignKey("cashier_closes.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("value", sa.Numeric(20, 4), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("total", sa.Numeric(20, 4), nullable=False),
        sa.CheckConstraint("value > 0", name="ck_close_denomination_value_positive"),
        sa.CheckConstraint("count >= 0", name="ck_close_denomination_count_non_negative"),
    )
    op.create_index("ix_close_denominations_close", "cashier_close_denominations", ["close_id"])

    op.create_table(
        "cashier_close_payment_modes",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("close_id", UUID(as_uuid=True), sa.ForeignKey("cashier_closes.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("mode", sa.String(50), nullable=False),
        sa.Column("amount", sa.Numeric(20, 4), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_close_payment_mode_amount_non_negative"),
    )
    op.create_index("ix_close_payment_modes_close", "cashier_close_payment_modes", ["close_id"])

    # 5. Seed permissions and system roles
    conn = op.get_bind()
    perm_ids: dict[str, uuid.UUID] = {}
    for p in PERMISSIONS:
        pid = uuid.uuid4()
        perm_ids[p["code"]] = pid
        conn.execute(
            sa.text("INSERT INTO permissions (id, code, description, category) VALUES (:id, :code, :desc, :cat)"),
            {"id": pid, "code": p["code"], "desc": p["description"], "cat": p["category"]},
        )

    for role_name, codes in ROLE_PERMISSIONS.items():
        rid = uuid.uuid4()
        conn.execute(
            sa.text("INSERT INTO roles (id, name, description, is_system) VALUES (:id, :name, :desc, true)"),
            {"id": rid, "name": role_name, "desc": ROLE_DESCRIPTIONS[role_name]},
        )
        for code in codes:
            conn.execute(
                sa.text("INSERT INTO role_permissions (role_id, permission_id) VALUES (:rid, :pid)"),
                {"rid": rid, "pid": perm_ids[code]},
            )


def downgrade() -> None:
    op.drop_table("cashier_close_payment_modes")
    op.drop_table("cashier_close_denominations")
    op.drop_index("uq_cashier_closes_one_pending", table_name="cashier_closes")
    op.drop_table("cashier_closes")
    op.drop_table("audit_logs")
    op.drop_table("transaction_splits")
    op.drop_table("journal_entries")
    op.drop_table("accounts")
    op.drop_table("users")
    op.drop_table("role_permissions")
    op.drop_table("roles")
    op.drop_table("permissions")
    CLOSE_STATUS.drop(op.get_bind(), checkfirst=True)
    for name in ("roleenum", "accounttype"):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
