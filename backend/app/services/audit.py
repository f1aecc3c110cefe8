from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from backend.app.models.audit import AuditLog

logger = logging.getLogger(__name__)


def log_action(
    db: Session,
    *,
    user_id: UUID | None,
    action: str,
    resource_type: str,
    resource_id: str,
    changes: dict[str, Any] | None = None,
    ip_address: str | None = None,
) -> None:
    """Write a single row to the audit_logs table.

    This is a thin utility so every service logs in a consistent format.
    It does NOT call db.commit(); the caller commits it
    as part of its own transaction.
    """
    db.add(
        AuditLog(
            table_name=resource_type,
            record_id=resource_id,
            action=action,
            changed_by=user_id,
            new_values=changes,
            ip_address=ip_address,
        )
    )


# ─── Close workflow events ───────────────────────────────────────────────────


@dataclass(frozen=True)
class AuditEvent:
    """One lifecycle event for a cashier close.

    ``sequence`` orders events of the same close: 1 for the submission,
    2 for the verification or rejection.
    """

    event: str
    close_id: UUID
    cashier_id: UUID
    sequence: int
    actor_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "close_id": str(self.close_id),
            "cashier_id": str(self.cashier_id),
            "sequence": self.sequence,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "timestamp": self.timestamp.isoformat(),
            **self.metadata,
        }


class AuditSink(Protocol):
    def emit(self, event: AuditEvent) -> None: ...


class DatabaseAuditSink:
    """Writes each event to ``audit_logs`` in its own transaction."""

    RESOURCE_TYPE = "cashier_closes"

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def emit(self, event: AuditEvent) -> None:
        with self._session_factory() as db:
            log_action(
                db,
                user_id=event.actor_id,
                action=event.event.upper(),
                resource_type=self.RESOURCE_TYPE,
                resource_id=str(event.close_id),
                changes=event.as_dict(),
            )
            db.commit()


class RecordingAuditSink:
    """Keeps emitted events in memory."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []
        self._lock = threading.Lock()

    def emit(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)


_STOP = object()


class AuditDispatcher:
    """Delivers audit events off the request path.

    A single worker drains a FIFO queue, so events reach the sink in the
    order they were published, and in particular in sequence order per
    close. A failing delivery is retried with exponential backoff before the
    next event is attempted; after ``max_attempts`` the event is
    dead-lettered and logged.
    """

    def __init__(
        self,
        sink: AuditSink,
        *,
        max_attempts: int = 5,
        backoff_seconds: float = 0.5,
        sleep=time.sleep,
    ) -> None:
        self._sink = sink
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._sleep = sleep
        self._queue: queue.Queue[Any] = queue.Queue()
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._closed = False
        self.dead_letters: list[AuditEvent] = []

    def publish(self, event: AuditEvent) -> None:
        """Queue *event* for delivery; never raises on sink failures."""
        with self._lock:
            if self._closed:
                logger.error(
                    "Audit dispatcher closed, dropping %s for close %s",
                    event.event,
                    event.close_id,
                )
                self.dead_letters.append(event)
                return
            if self._worker is None:
                self._worker = threading.Thread(
                    target=self._run, name="audit-dispatcher", daemon=True
                )
                self._worker.start()
            self._queue.put(event)

    def _deliver(self, event: AuditEvent) -> None:
        delay = self._backoff
        for attempt in range(1, self._max_attempts + 1):
            try:
                self._sink.emit(event)
                return
            except Exception:
                logger.warning(
                    "Audit delivery of %s for close %s failed (attempt %d/%d)",
                    event.event,
                    event.close_id,
                    attempt,
                    self._max_attempts,
                    exc_info=True,
                )
            if attempt < self._max_attempts:
                self._sleep(delay)
                delay *= 2
        logger.error(
            "Audit event %s for close %s dead-lettered after %d attempts",
            event.event,
            event.close_id,
            self._max_attempts,
        )
        self.dead_letters.append(event)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every queued event was delivered or dead-lettered."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def close(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            worker = self._worker
            if worker is not None:
                self._queue.put(_STOP)
        if worker is not None:
            worker.join(timeout)
