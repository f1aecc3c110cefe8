"""Tests for background audit delivery."""

from __future__ import annotations

import logging
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from backend.app.models.accounting import AuditLog, User
from backend.app.services.audit import (
    AuditDispatcher,
    AuditEvent,
    DatabaseAuditSink,
    RecordingAuditSink,
)


def _event(close_id: UUID, sequence: int, name: str = "close_submitted") -> AuditEvent:
    return AuditEvent(event=name, close_id=close_id, cashier_id=uuid4(), sequence=sequence)


class FlakySink(RecordingAuditSink):
    """Fails the first ``failures`` deliveries."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def emit(self, event: AuditEvent) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("audit store unavailable")
        super().emit(event)


@pytest.fixture()
def sleeps() -> list[float]:
    return []


class TestOrdering:
    def test_events_arrive_in_publish_order(self) -> None:
        sink = RecordingAuditSink()
        dispatcher = AuditDispatcher(sink, backoff_seconds=0)
        close_ids = [uuid4() for _ in range(20)]
        for close_id in close_ids:
            dispatcher.publish(_event(close_id, 1))
            dispatcher.publish(_event(close_id, 2, "close_verified"))
        assert dispatcher.flush(timeout=5)
        dispatcher.close()

        assert len(sink.events) == 40
        for close_id in close_ids:
            seqs = [e.sequence for e in sink.events if e.close_id == close_id]
            assert seqs == [1, 2]

    def test_failure_delays_later_events(self, sleeps: list[float]) -> None:
        sink = FlakySink(failures=1)
        dispatcher = AuditDispatcher(sink, backoff_seconds=0.2, sleep=sleeps.append)
        close_id = uuid4()
        dispatcher.publish(_event(close_id, 1))
        dispatcher.publish(_event(close_id, 2, "close_rejected"))
        assert dispatcher.flush(timeout=5)
        dispatcher.close()

        assert [e.sequence for e in sink.events] == [1, 2]
        assert sleeps == [0.2]


class TestRetry:
    def test_retries_with_exponential_backoff(self, sleeps: list[float]) -> None:
        sink = FlakySink(failures=3)
        dispatcher = AuditDispatcher(
            sink, max_attempts=5, backoff_seconds=0.1, sleep=sleeps.append
        )
        dispatcher.publish(_event(uuid4(), 1))
        assert dispatcher.flush(timeout=5)
        dispatcher.close()

        assert len(sink.events) == 1
        assert sleeps == pytest.approx([0.1, 0.2, 0.4])
        assert dispatcher.dead_letters == []

    def test_gives_up_and_dead_letters(
        self, sleeps: list[float], caplog: pytest.LogCaptureFixture
    ) -> None:
        sink = FlakySink(failures=100)
        dispatcher = AuditDispatcher(
            sink, max_attempts=3, backoff_seconds=0.1, sleep=sleeps.append
        )
        event = _event(uuid4(), 1)
        with caplog.at_level(logging.ERROR, logger="backend.app.services.audit"):
            dispatcher.publish(event)
            assert dispatcher.flush(timeout=5)
        dispatcher.close()

        assert sink.attempts == 3
        assert len(sleeps) == 2
        assert dispatcher.dead_letters == [event]
        assert "dead-lettered" in caplog.text

    def test_publish_never_raises(self) -> None:
        dispatcher = AuditDispatcher(FlakySink(failures=100), max_attempts=1, sleep=lambda _: None)
        dispatcher.publish(_event(uuid4(), 1))
        assert dispatcher.flush(timeout=5)
        dispatcher.close()
        assert len(dispatcher.dead_letters) == 1


class TestShutdown:
    def test_publish_after_close_is_dead_lettered(self) -> None:
        sink = RecordingAuditSink()
        dispatcher = AuditDispatcher(sink)
        dispatcher.close()
        event = _event(uuid4(), 1)
        dispatcher.publish(event)
        assert sink.events == []
        assert dispatcher.dead_letters == [event]

    def test_close_drains_queue(self) -> None:
        sink = RecordingAuditSink()
        dispatcher = AuditDispatcher(sink)
        for i in range(10):
            dispatcher.publish(_event(uuid4(), 1))
        dispatcher.close(timeout=5)
        assert len(sink.events) == 10

    def test_close_twice(self) -> None:
        dispatcher = AuditDispatcher(RecordingAuditSink())
        dispatcher.close()
        dispatcher.close()


class TestDatabaseSink:
    def test_event_written_to_audit_logs(
        self, session_factory: sessionmaker[Session], db: Session, accountant_user: User
    ) -> None:
        close_id = uuid4()
        event = AuditEvent(
            event="close_verified",
            close_id=close_id,
            cashier_id=uuid4(),
            sequence=2,
            actor_id=accountant_user.id,
            metadata={"journal_entry_id": "JE-1", "variance": "0.00"},
        )
        DatabaseAuditSink(session_factory).emit(event)

        row = db.scalar(select(AuditLog).where(AuditLog.record_id == str(close_id)))
        assert row is not None
        assert row.table_name == "cashier_closes"
        assert row.action == "CLOSE_VERIFIED"
        assert row.changed_by == accountant_user.id
        assert row.new_values["sequence"] == 2
        assert row.new_values["journal_entry_id"] == "JE-1"
        assert row.new_values["actor_id"] == str(accountant_user.id)

    def test_as_dict_is_json_friendly(self) -> None:
        event = _event(uuid4(), 1)
        data = event.as_dict()
        assert data["event"] == "close_submitted"
        assert data["actor_id"] is None
        assert isinstance(data["timestamp"], str)
