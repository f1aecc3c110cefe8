from __future__ import annotations

import logging

from sqlalchemy.orm import Session, sessionmaker

from backend.app.core.config import Settings, settings
from backend.app.services.audit import AuditDispatcher, AuditSink, DatabaseAuditSink
from backend.app.services.cashier.config import (
    CashCounterConfigProvider,
    SettingsConfigProvider,
)
from backend.app.services.cashier.ledger import JournalLedgerGateway, LedgerPostingGateway
from backend.app.services.cashier.lifecycle import CloseLifecycle
from backend.app.services.cashier.queries import CloseQueryService
from backend.app.services.cashier.repository import SqlAlchemyCloseRepository

logger = logging.getLogger(__name__)


class CashierCloseServices:
    """Process-wide wiring of the close workflow.

    One instance per process: the lifecycle's keyed locks, the posting
    executor and the audit worker only serialise what goes through them.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        app_settings: Settings = settings,
        config_provider: CashCounterConfigProvider | None = None,
        ledger: LedgerPostingGateway | None = None,
        audit_sink: AuditSink | None = None,
    ) -> None:
        self.settings = app_settings
        self.config_provider = config_provider or SettingsConfigProvider(app_settings)
        self.repository = SqlAlchemyCloseRepository(session_factory)
        self.audit = AuditDispatcher(
            audit_sink or DatabaseAuditSink(session_factory),
            max_attempts=app_settings.AUDIT_MAX_ATTEMPTS,
            backoff_seconds=app_settings.AUDIT_RETRY_BACKOFF_SECONDS,
        )
        self.lifecycle = CloseLifecycle(
            self.repository,
            ledger or JournalLedgerGateway(session_factory, self.config_provider),
            self.audit,
            posting_workers=app_settings.LEDGER_POST_WORKERS,
        )
        self.queries = CloseQueryService(
            self.repository,
            default_limit=app_settings.HISTORY_DEFAULT_LIMIT,
            max_limit=app_settings.HISTORY_MAX_LIMIT,
        )

    def shutdown(self) -> None:
        self.lifecycle.shutdown()
        self.audit.close()
        if self.audit.dead_letters:
            logger.error(
                "%d audit events were never delivered", len(self.audit.dead_letters)
            )
