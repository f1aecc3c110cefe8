"""Storage for cashier closes.

Both implementations give the same guarantees:

* ``save`` of a REQUESTED close inserts it, refusing a second pending close
  for the same cashier (``AlreadyPendingClose``);
* ``save`` of a resolved close is a compare-and-swap from REQUESTED and
  raises ``ConcurrentCloseUpdate`` when someone else resolved it first;
* reads never block writers.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from backend.app.models.cashier import (
    CashierCloseDenomination,
    CashierClosePaymentMode,
    CashierCloseRecord,
    CloseStatus,
)
from backend.app.services.cashier.domain import CashierClose, DenominationEntry, PaymentModeTotal
from backend.app.services.cashier.errors import AlreadyPendingClose, ConcurrentCloseUpdate
from backend.app.services.cashier.money import to_decimal


@dataclass(frozen=True)
class CloseFilter:
    status: CloseStatus | None = None
    cashier_id: UUID | None = None
    limit: int | None = None
    # Keyset position: (closing_timestamp, id) of the last row already seen
    after: tuple[datetime, UUID] | None = None
    newest_first: bool = True


class CloseRepository(Protocol):
    def save(self, close: CashierClose) -> CashierClose: ...

    def load_by_id(self, close_id: UUID) -> CashierClose | None: ...

    def load_pending_by_cashier(self, cashier_id: UUID) -> CashierClose | None: ...

    def list_by_filter(self, close_filter: CloseFilter) -> list[CashierClose]: ...


def _aware(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _sort_key(close: CashierClose) -> tuple[datetime, UUID]:
    return (close.closing_timestamp, close.id)


# ─── SQLAlchemy ──────────────────────────────────────────────────────────────


def _to_record(close: CashierClose) -> CashierCloseRecord:
    return CashierCloseRecord(
        id=close.id,
        cashier_id=close.cashier_id,
        closing_timestamp=close.closing_timestamp,
        currency=close.currency,
        expected_total=close.expected_total,
        counted_total=close.counted_total,
        variance=close.variance,
        status=close.status,
        notes=close.notes,
        journal_entry_id=close.journal_entry_id,
        rejection_reason=close.rejection_reason,
        resolved_at=close.resolved_at,
        resolved_by=close.resolved_by,
        denominations=[
            CashierCloseDenomination(
                position=i,
                value=entry.value,
                count=int(to_decimal(entry.count)),
                total=entry.total,
            )
            for i, entry in enumerate(close.denominations)
        ],
        payment_modes=[
            CashierClosePaymentMode(position=i, mode=pm.mode, amount=pm.amount)
            for i, pm in enumerate(close.payment_mode_totals)
        ],
    )


def _to_domain(record: CashierCloseRecord) -> CashierClose:
    return CashierClose(
        id=record.id,
        cashier_id=record.cashier_id,
        closing_timestamp=_aware(record.closing_timestamp),
        currency=record.currency,
        expected_total=record.expected_total,
        denominations=tuple(
            DenominationEntry(value=d.value, count=d.count) for d in record.denominations
        ),
        payment_mode_totals=tuple(
            PaymentModeTotal(mode=p.mode, amount=p.amount) for p in record.payment_modes
        ),
        counted_total=record.counted_total,
        variance=record.variance,
        status=record.status,
        notes=record.notes,
        journal_entry_id=record.journal_entry_id,
        rejection_reason=record.rejection_reason,
        resolved_at=_aware(record.resolved_at),
        resolved_by=record.resolved_by,
    )


_LOAD_LINES = (
    selectinload(CashierCloseRecord.denominations),
    selectinload(CashierCloseRecord.payment_modes),
)


class SqlAlchemyCloseRepository:
    """Each call runs in its own short transaction."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def save(self, close: CashierClose) -> CashierClose:
        if close.status == CloseStatus.REQUESTED:
            return self._insert(close)
        return self._resolve(close)

    def _pending_id(self, db: Session, cashier_id: UUID) -> UUID | None:
        return db.scalar(
            select(CashierCloseRecord.id).where(
                CashierCloseRecord.cashier_id == cashier_id,
                CashierCloseRecord.status == CloseStatus.REQUESTED,
            )
        )

    def _insert(self, close: CashierClose) -> CashierClose:
        with self._session_factory() as db:
            pending = self._pending_id(db, close.cashier_id)
            if pending is not None:
                raise AlreadyPendingClose(close.cashier_id, pending)
            db.add(_to_record(close))
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                # Lost the race on the partial unique index
                pending = self._pending_id(db, close.cashier_id)
                if pending is None:
                    raise
                raise AlreadyPendingClose(close.cashier_id, pending) from exc
        return close

    def _resolve(self, close: CashierClose) -> CashierClose:
        with self._session_factory() as db:
            result = db.execute(
                update(CashierCloseRecord)
                .where(
                    CashierCloseRecord.id == close.id,
                    CashierCloseRecord.status == CloseStatus.REQUESTED,
                )
                .values(
                    status=close.status,
                    journal_entry_id=close.journal_entry_id,
                    rejection_reason=close.rejection_reason,
                    resolved_at=close.resolved_at,
                    resolved_by=close.resolved_by,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise ConcurrentCloseUpdate(close.id)
            db.commit()
        return close

    def load_by_id(self, close_id: UUID) -> CashierClose | None:
        with self._session_factory() as db:
            record = db.scalar(
                select(CashierCloseRecord)
                .options(*_LOAD_LINES)
                .where(CashierCloseRecord.id == close_id)
            )
            return _to_domain(record) if record is not None else None

    def load_pending_by_cashier(self, cashier_id: UUID) -> CashierClose | None:
        with self._session_factory() as db:
            record = db.scalar(
                select(CashierCloseRecord)
                .options(*_LOAD_LINES)
                .where(
                    CashierCloseRecord.cashier_id == cashier_id,
                    CashierCloseRecord.status == CloseStatus.REQUESTED,
                )
            )
            return _to_domain(record) if record is not None else None

    def list_by_filter(self, close_filter: CloseFilter) -> list[CashierClose]:
        ts = CashierCloseRecord.closing_timestamp
        rid = CashierCloseRecord.id
        stmt = select(CashierCloseRecord).options(*_LOAD_LINES)
        if close_filter.status is not None:
            stmt = stmt.where(CashierCloseRecord.status == close_filter.status)
        if close_filter.cashier_id is not None:
            stmt = stmt.where(CashierCloseRecord.cashier_id == close_filter.cashier_id)
        if close_filter.after is not None:
            after_ts, after_id = close_filter.after
            if close_filter.newest_first:
                stmt = stmt.where(or_(ts < after_ts, and_(ts == after_ts, rid < after_id)))
            else:
                stmt = stmt.where(or_(ts > after_ts, and_(ts == after_ts, rid > after_id)))
        if close_filter.newest_first:
            stmt = stmt.order_by(ts.desc(), rid.desc())
        else:
            stmt = stmt.order_by(ts.asc(), rid.asc())
        if close_filter.limit is not None:
            stmt = stmt.limit(close_filter.limit)
        with self._session_factory() as db:
            return [_to_domain(r) for r in db.scalars(stmt).all()]


# ─── In-memory ───────────────────────────────────────────────────────────────


class InMemoryCloseRepository:
    """Dict-backed repository for tests and embedded use."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._closes: dict[UUID, CashierClose] = {}

    def save(self, close: CashierClose) -> CashierClose:
        with self._lock:
            if close.status == CloseStatus.REQUESTED:
                for existing in self._closes.values():
                    if (
                        existing.cashier_id == close.cashier_id
                        and existing.status == CloseStatus.REQUESTED
                    ):
                        raise AlreadyPendingClose(close.cashier_id, existing.id)
            else:
                current = self._closes.get(close.id)
                if current is None or current.status != CloseStatus.REQUESTED:
                    raise ConcurrentCloseUpdate(close.id)
            self._closes[close.id] = close
        return close

    def load_by_id(self, close_id: UUID) -> CashierClose | None:
        return self._closes.get(close_id)

    def load_pending_by_cashier(self, cashier_id: UUID) -> CashierClose | None:
        for close in list(self._closes.values()):
            if close.cashier_id == cashier_id and close.status == CloseStatus.REQUESTED:
                return close
        return None

    def list_by_filter(self, close_filter: CloseFilter) -> list[CashierClose]:
        rows = [
            c
            for c in list(self._closes.values())
            if (close_filter.status is None or c.status == close_filter.status)
            and (close_filter.cashier_id is None or c.cashier_id == close_filter.cashier_id)
        ]
        rows.sort(key=_sort_key, reverse=close_filter.newest_first)
        if close_filter.after is not None:
            if close_filter.newest_first:
                rows = [c for c in rows if _sort_key(c) < close_filter.after]
            else:
                rows = [c for c in rows if _sort_key(c) > close_filter.after]
        if close_filter.limit is not None:
            rows = rows[: close_filter.limit]
        return rows
