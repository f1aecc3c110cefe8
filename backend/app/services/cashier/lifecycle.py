"""Cashier close state machine: submit, approve, reject.

    REQUESTED ──approve──▶ VERIFIED   (journal entry posted)
        │
        └─────reject────▶ REJECTED   (reason recorded)

Writers are serialised per cashier (submit) and per close (approve/reject)
with an in-process ``KeyedLock``; the repository's compare-and-swap and the
one-pending-close index hold the same rules across processes. Audit events
are queued while the close lock is held, so one close's events reach the
dispatcher in lifecycle order.

Approval posts to the ledger before the status changes. Only a journal
entry id returned by the gateway moves a close to VERIFIED; a failure,
timeout or cancellation leaves it REQUESTED so the approval can be retried,
and the gateway's idempotency per close id keeps a retry from posting twice.

A post the caller stopped waiting for keeps running. Until it settles the
close cannot be rejected (``PostingInProgress``) and a retried approval
waits on the same post. Once it returns a journal entry the close is
marked VERIFIED in the background.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from concurrent import futures
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import UUID

from backend.app.services.audit import AuditEvent
from backend.app.services.cashier.config import CashCounterConfig
from backend.app.services.cashier.denominations import denomination_total
from backend.app.services.cashier.domain import (
    CashierClose,
    CloseDraft,
    DenominationEntry,
    PaymentModeTotal,
)
from backend.app.services.cashier.errors import (
    AlreadyPendingClose,
    AlreadyResolved,
    CashierCloseError,
    CloseNotFound,
    ClosePersistenceError,
    ConcurrentCloseUpdate,
    PostingCancelled,
    PostingError,
    PostingInProgress,
    PostingTimeout,
)
from backend.app.services.cashier.ledger import LedgerPostingGateway
from backend.app.services.cashier.locks import KeyedLock
from backend.app.services.cashier.money import format_currency, to_decimal
from backend.app.services.cashier.reconciliation import (
    validate_for_submission,
    variance,
    variance_exceeds_threshold,
)
from backend.app.services.cashier.repository import CloseRepository

logger = logging.getLogger(__name__)

EVENT_SUBMITTED = "close_submitted"
EVENT_VERIFIED = "close_verified"
EVENT_REJECTED = "close_rejected"


class AuditPublisher(Protocol):
    def publish(self, event: AuditEvent) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _InflightPost:
    future: futures.Future[str]
    actor_id: UUID | None
    detached: bool = False


class CloseLifecycle:
    def __init__(
        self,
        repository: CloseRepository,
        ledger: LedgerPostingGateway,
        audit: AuditPublisher,
        *,
        executor: futures.Executor | None = None,
        posting_workers: int = 4,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], UUID] = uuid.uuid4,
        poll_interval: float = 0.05,
    ) -> None:
        self._repository = repository
        self._ledger = ledger
        self._audit = audit
        self._executor = executor or futures.ThreadPoolExecutor(
            max_workers=posting_workers, thread_name_prefix="ledger-post"
        )
        self._clock = clock
        self._id_factory = id_factory
        self._poll_interval = poll_interval
        self._locks = KeyedLock()
        # Read and written only under the matching ("close", id) lock
        self._inflight: dict[UUID, _InflightPost] = {}

    # ─── Submit ──────────────────────────────────────────────────────────

    def submit(
        self,
        draft: CloseDraft,
        config: CashCounterConfig,
        *,
        actor_id: UUID | None = None,
    ) -> CashierClose:
        """Persist *draft* as a REQUESTED close.

        A cashier with a pending close gets ``AlreadyPendingClose`` whatever
        the new draft contains; otherwise the draft must pass
        ``validate_for_submission``. Nothing is stored on either failure.
        """
        with self._locks.hold(("cashier", draft.cashier_id)):
            pending = self._repository.load_pending_by_cashier(draft.cashier_id)
            if pending is not None:
                raise AlreadyPendingClose(draft.cashier_id, pending.id)

            validate_for_submission(draft, config)

            counted = denomination_total(draft.denominations)
            close = CashierClose(
                id=self._id_factory(),
                cashier_id=draft.cashier_id,
                closing_timestamp=self._clock(),
                currency=config.currency,
                expected_total=draft.expected_total,
                denominations=tuple(
                    DenominationEntry(value=e.value, count=int(to_decimal(e.count)))
                    for e in draft.denominations
                ),
                payment_mode_totals=tuple(
                    PaymentModeTotal(mode=p.mode, amount=p.amount)
                    for p in draft.payment_mode_totals
                ),
                counted_total=counted,
                variance=variance(draft.expected_total, counted),
                notes=(draft.notes or "").strip() or None,
            )
            # Approve and reject wait here until the submission is queued
            with self._locks.hold(("close", close.id)):
                self._repository.save(close)
                self._emit(EVENT_SUBMITTED, close, 1, actor_id or close.cashier_id)

        logger.info(
            "Cashier %s submitted close %s: expected %s, counted %s",
            close.cashier_id,
            close.id,
            format_currency(close.expected_total, close.currency),
            format_currency(close.counted_total, close.currency),
        )
        if variance_exceeds_threshold(close.variance, config.variance_threshold):
            logger.warning(
                "Close %s variance %s exceeds threshold %s",
                close.id,
                format_currency(close.variance, close.currency),
                format_currency(config.variance_threshold, close.currency),
            )
        return close

    # ─── Approve ─────────────────────────────────────────────────────────

    def approve(
        self,
        close_id: UUID,
        *,
        actor_id: UUID | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> CashierClose:
        with self._locks.hold(("close", close_id)):
            close = self._load(close_id)
            if close.is_terminal:
                raise AlreadyResolved(close.id, close.status)

            journal_entry_id = self._post(close, actor_id, timeout, cancel)
            return self._mark_verified(close, journal_entry_id, actor_id)

    def _mark_verified(
        self, close: CashierClose, journal_entry_id: str, actor_id: UUID | None
    ) -> CashierClose:
        verified = close.verify(journal_entry_id, at=self._clock(), by=actor_id)
        try:
            self._repository.save(verified)
        except ConcurrentCloseUpdate:
            current = self._load(close.id)
            if current.journal_entry_id != journal_entry_id:
                self._report_orphan(journal_entry_id, current)
            raise AlreadyResolved(close.id, current.status) from None
        except Exception as exc:
            logger.critical(
                "Journal entry %s posted for close %s, but marking it verified "
                "failed; manual reconciliation required",
                journal_entry_id,
                close.id,
                exc_info=True,
            )
            raise ClosePersistenceError(close.id, journal_entry_id) from exc

        logger.info("Close %s verified with journal entry %s", close.id, journal_entry_id)
        self._emit(
            EVENT_VERIFIED,
            verified,
            2,
            actor_id,
            journal_entry_id=journal_entry_id,
        )
        return verified

    def _report_orphan(self, journal_entry_id: str, current: CashierClose) -> None:
        logger.critical(
            "Journal entry %s posted for close %s, but the close was "
            "resolved concurrently as %s; manual reconciliation required",
            journal_entry_id,
            current.id,
            current.status.value,
        )

    def _call_gateway(self, close: CashierClose, actor_id: UUID | None) -> str:
        try:
            journal_entry_id = self._ledger.post(close, actor_id=actor_id)
        except PostingError:
            logger.error("Ledger posting for close %s failed", close.id, exc_info=True)
            raise
        except Exception as exc:
            logger.error("Ledger posting for close %s failed", close.id, exc_info=True)
            raise PostingError(close.id, str(exc) or type(exc).__name__) from exc
        if not journal_entry_id:
            raise PostingError(close.id, "ledger returned no journal entry id")
        return str(journal_entry_id)

    def _post(
        self,
        close: CashierClose,
        actor_id: UUID | None,
        timeout: float | None,
        cancel: threading.Event | None,
    ) -> str:
        inflight = self._inflight.get(close.id)
        if inflight is not None and inflight.future.done() and inflight.future.exception():
            # A failed detached post is settled; this approval starts afresh
            del self._inflight[close.id]
            inflight = None

        if inflight is None:
            if timeout is None and cancel is None:
                return self._call_gateway(close, actor_id)
            # The gateway call cannot be interrupted; giving up only stops waiting
            inflight = _InflightPost(
                self._executor.submit(self._call_gateway, close, actor_id), actor_id
            )
            self._inflight[close.id] = inflight

        try:
            journal_entry_id = self._wait(inflight.future, close.id, timeout, cancel)
        except (PostingTimeout, PostingCancelled):
            if not inflight.detached:
                inflight.detached = True
                inflight.future.add_done_callback(lambda _: self._settle_in_background(close.id))
            raise
        except PostingError:
            del self._inflight[close.id]
            raise
        del self._inflight[close.id]
        return journal_entry_id

    def _wait(
        self,
        future: futures.Future[str],
        close_id: UUID,
        timeout: float | None,
        cancel: threading.Event | None,
    ) -> str:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            wait_for = self._poll_interval if cancel is not None else None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning("Ledger posting for close %s timed out", close_id)
                    raise PostingTimeout(close_id, timeout or 0)
                wait_for = remaining if wait_for is None else min(wait_for, remaining)
            done, _ = futures.wait([future], timeout=wait_for)
            if done:
                return future.result()
            if cancel is not None and cancel.is_set():
                logger.warning("Ledger posting for close %s cancelled by caller", close_id)
                raise PostingCancelled(close_id)

    # ─── Detached posts ──────────────────────────────────────────────────

    def _settle_in_background(self, close_id: UUID) -> None:
        # Done callbacks may run on a thread that already holds the close lock
        threading.Thread(
            target=self.settle,
            args=(close_id,),
            name=f"ledger-settle-{close_id}",
            daemon=True,
        ).start()

    def settle(self, close_id: UUID) -> CashierClose:
        """Apply the outcome of a finished detached post, if there is one."""
        with self._locks.hold(("close", close_id)):
            close = self._load(close_id)
            try:
                return self._settle_locked(close)
            except CashierCloseError as exc:
                logger.warning("Late ledger posting for close %s not applied: %s", close_id, exc)
                return self._load(close_id)

    def _settle_locked(self, close: CashierClose) -> CashierClose:
        inflight = self._inflight.get(close.id)
        if inflight is None or not inflight.future.done():
            return close
        del self._inflight[close.id]
        if inflight.future.exception() is not None:
            # Already logged by _call_gateway; the close stays REQUESTED
            return close

        journal_entry_id = inflight.future.result()
        if close.is_terminal:
            if close.journal_entry_id != journal_entry_id:
                self._report_orphan(journal_entry_id, close)
            return close
        logger.info("Late ledger posting for close %s completed", close.id)
        return self._mark_verified(close, journal_entry_id, inflight.actor_id)

    # ─── Reject ──────────────────────────────────────────────────────────

    def reject(
        self,
        close_id: UUID,
        reason: str | None,
        *,
        actor_id: UUID | None = None,
    ) -> CashierClose:
        with self._locks.hold(("close", close_id)):
            close = self._settle_locked(self._load(close_id))
            if close.id in self._inflight:
                raise PostingInProgress(close_id)

            rejected = close.reject(reason or "", at=self._clock(), by=actor_id)
            try:
                self._repository.save(rejected)
            except ConcurrentCloseUpdate:
                current = self._load(close_id)
                raise AlreadyResolved(close_id, current.status) from None

            logger.info("Close %s rejected: %s", close_id, rejected.rejection_reason)
            self._emit(
                EVENT_REJECTED,
                rejected,
                2,
                actor_id,
                rejection_reason=rejected.rejection_reason,
            )
        return rejected

    # ─── Helpers ─────────────────────────────────────────────────────────

    def _load(self, close_id: UUID) -> CashierClose:
        close = self._repository.load_by_id(close_id)
        if close is None:
            raise CloseNotFound(close_id)
        return close

    def _emit(
        self,
        event: str,
        close: CashierClose,
        sequence: int,
        actor_id: UUID | None,
        **extra: Any,
    ) -> None:
        metadata: dict[str, Any] = {
            "expected_total": str(close.expected_total),
            "counted_total": str(close.counted_total),
            "variance": str(close.variance),
            "currency": close.currency,
            **extra,
        }
        try:
            self._audit.publish(
                AuditEvent(
                    event=event,
                    close_id=close.id,
                    cashier_id=close.cashier_id,
                    sequence=sequence,
                    actor_id=actor_id,
                    metadata=metadata,
                )
            )
        except Exception:
            logger.exception("Could not queue audit event %s for close %s", event, close.id)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
