from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from backend.app.models.account import Account
from backend.app.models.journal import JournalEntry, TransactionSplit
from backend.app.services.cashier.config import CashCounterConfigProvider
from backend.app.services.cashier.domain import CashierClose
from backend.app.services.cashier.errors import PostingError
from backend.app.services.cashier.money import ZERO, format_currency

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "CCLOSE-"


class LedgerPostingGateway(Protocol):
    """Creates the accounting entry for a verified close.

    ``post`` must be idempotent per close id: posting the same close twice
    returns the first journal entry id.
    """

    def post(self, close: CashierClose, *, actor_id: UUID | None = None) -> str: ...


def journal_reference(close_id: UUID) -> str:
    return f"{REFERENCE_PREFIX}{close_id}"


class JournalLedgerGateway:
    """Posts verified closes into the local double-entry ledger.

    One entry per close, referenced ``CCLOSE-<close id>``:
        DEBIT  <mapped account per payment mode>   mode amount
        CREDIT Till clearing                        sum of mode amounts
    Zero-amount modes are skipped; a close with nothing declared gets a
    memo entry without splits.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config_provider: CashCounterConfigProvider,
    ) -> None:
        self._session_factory = session_factory
        self._config_provider = config_provider

    def _account(self, db: Session, close_id: UUID, code: str) -> Account:
        account = db.scalar(select(Account).where(Account.code == code))
        if account is None or not account.is_active:
            raise PostingError(close_id, f"Account {code} not found in chart of accounts")
        return account

    def _existing(self, db: Session, reference: str) -> UUID | None:
        return db.scalar(select(JournalEntry.id).where(JournalEntry.reference == reference))

    def post(self, close: CashierClose, *, actor_id: UUID | None = None) -> str:
        config = self._config_provider.get()
        reference = journal_reference(close.id)

        with self._session_factory() as db:
            existing = self._existing(db, reference)
            if existing is not None:
                logger.info("Close %s already posted as journal entry %s", close.id, existing)
                return str(existing)

            debits: list[tuple[Account, Decimal]] = []
            for pm in close.payment_mode_totals:
                if pm.amount <= ZERO:
                    continue
                code = config.account_for(pm.mode)
                if not code:
                    raise PostingError(
                        close.id, f"No ledger account mapped for payment mode '{pm.mode}'"
                    )
                debits.append((self._account(db, close.id, code), pm.amount))
            total = sum((amount for _, amount in debits), ZERO)
            declared = sum((pm.amount for pm in close.payment_mode_totals), ZERO)
            if total != declared:
                raise PostingError(
                    close.id, f"Unbalanced entry: debits {total} vs declared {declared}"
                )

            journal = JournalEntry(
                entry_date=datetime.now(timezone.utc),
                description=(
                    f"Cashier close {close.id}: declared {format_currency(total, close.currency)}, "
                    f"variance {format_currency(close.variance, close.currency)}"
                ),
                reference=reference,
                created_by=actor_id or close.cashier_id,
            )
            db.add(journal)
            db.flush()

            if debits:
                clearing = self._account(db, close.id, config.clearing_account)
                for account, amount in debits:
                    db.add(TransactionSplit(
                        journal_entry_id=journal.id,
                        account_id=account.id,
                        debit_amount=amount,
                        credit_amount=ZERO,
                    ))
                db.add(TransactionSplit(
                    journal_entry_id=journal.id,
                    account_id=clearing.id,
                    debit_amount=ZERO,
                    credit_amount=total,
                ))

            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                # A concurrent post for the same close won the unique reference
                existing = self._existing(db, reference)
                if existing is not None:
                    return str(existing)
                raise PostingError(close.id, "ledger rejected the journal entry") from exc

            logger.info(
                "Posted journal entry %s for close %s (%s)",
                journal.id,
                close.id,
                format_currency(total, close.currency),
            )
            return str(journal.id)
