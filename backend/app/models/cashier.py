from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.core.database import Base


class CloseStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class CashierCloseRecord(Base):
    """Persisted cashier close.

    ``counted_total`` and ``variance`` are derived from the denomination lines
    at submission time and stored so history never has to recompute them.
    At most one REQUESTED row may exist per cashier; the partial unique index
    below is what enforces it across processes.
    """

    __tablename__ = "cashier_closes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    cashier_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    closing_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    expected_total: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=4), nullable=False
    )
    counted_total: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=4), nullable=False
    )
    variance: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=4), nullable=False
    )
    status: Mapped[CloseStatus] = mapped_column(
        Enum(CloseStatus), nullable=False, default=CloseStatus.REQUESTED
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    journal_entry_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    denominations: Mapped[list[CashierCloseDenomination]] = relationship(
        back_populates="close",
        cascade="all, delete-orphan",
        order_by="CashierCloseDenomination.position",
    )
    payment_modes: Mapped[list[CashierClosePaymentMode]] = relationship(
        back_populates="close",
        cascade="all, delete-orphan",
        order_by="CashierClosePaymentMode.position",
    )

    __table_args__ = (
        CheckConstraint(
            "status != 'VERIFIED' OR journal_entry_id IS NOT NULL",
            name="ck_cashier_close_verified_has_journal",
        ),
        CheckConstraint(
            "status != 'REJECTED' OR rejection_reason IS NOT NULL",
            name="ck_cashier_close_rejected_has_reason",
        ),
        Index(
            "uq_cashier_closes_one_pending",
            "cashier_id",
            unique=True,
            postgresql_where=text("status = 'REQUESTED'"),
            sqlite_where=text("status = 'REQUESTED'"),
        ),
        Index("ix_cashier_closes_status", "status"),
        Index("ix_cashier_closes_cashier_ts", "cashier_id", "closing_timestamp"),
        Index("ix_cashier_closes_ts", "closing_timestamp"),
    )


class CashierCloseDenomination(Base):
    __tablename__ = "cashier_close_denominations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    close_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("cashier_closes.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=4), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=4), nullable=False)

    close: Mapped[CashierCloseRecord] = relationship(back_populates="denominations")

    __table_args__ = (
        CheckConstraint("value > 0", name="ck_close_denomination_value_positive"),
        CheckConstraint("count >= 0", name="ck_close_denomination_count_non_negative"),
        Index("ix_close_denominations_close", "close_id"),
    )


class CashierClosePaymentMode(Base):
    __tablename__ = "cashier_close_payment_modes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    close_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("cashier_closes.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    mode: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=4), nullable=False)

    close: Mapped[CashierCloseRecord] = relationship(back_populates="payment_modes")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_close_payment_mode_amount_non_negative"),
        Index("ix_close_payment_modes_close", "close_id"),
    )
