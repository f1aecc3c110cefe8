from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from backend.app.models.cashier import CloseStatus
from backend.app.services.cashier.domain import CashierClose
from backend.app.services.cashier.errors import CloseNotFound, InvalidCursor
from backend.app.services.cashier.repository import CloseFilter, CloseRepository


@dataclass(frozen=True)
class HistoryPage:
    items: list[CashierClose]
    next_cursor: str | None = None


def encode_cursor(close: CashierClose) -> str:
    raw = f"{close.closing_timestamp.isoformat()}|{close.id}"
    return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")


def decode_cursor(cursor: str) -> tuple[datetime, UUID]:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        raw = base64.urlsafe_b64decode(padded.encode()).decode()
        ts, close_id = raw.split("|", 1)
        position = datetime.fromisoformat(ts), UUID(close_id)
    except (ValueError, binascii.Error, UnicodeDecodeError) as exc:
        raise InvalidCursor(cursor) from exc
    # Stored timestamps are UTC; a naive one cannot be ordered against them
    if position[0].tzinfo is None:
        raise InvalidCursor(cursor)
    return position


class CloseQueryService:
    """Read side of the close workflow: pending queue, detail, history."""

    def __init__(
        self,
        repository: CloseRepository,
        *,
        default_limit: int = 50,
        max_limit: int = 200,
    ) -> None:
        self._repository = repository
        self._default_limit = default_limit
        self._max_limit = max_limit

    def list_pending(self) -> list[CashierClose]:
        """Oldest first, the order a supervisor works through them."""
        return self._repository.list_by_filter(
            CloseFilter(status=CloseStatus.REQUESTED, newest_first=False)
        )

    def get_by_id(self, close_id: UUID) -> CashierClose:
        close = self._repository.load_by_id(close_id)
        if close is None:
            raise CloseNotFound(close_id)
        return close

    def history(
        self,
        cashier_id: UUID | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> HistoryPage:
        """Closes newest first, ``limit`` at a time.

        ``next_cursor`` is set while more rows remain; pass it back to get
        the following page.
        """
        size = self._default_limit if limit is None else limit
        size = max(1, min(size, self._max_limit))
        after = decode_cursor(cursor) if cursor else None

        # One extra row tells whether another page exists
        rows = self._repository.list_by_filter(
            CloseFilter(cashier_id=cashier_id, limit=size + 1, after=after)
        )
        items = rows[:size]
        next_cursor = encode_cursor(items[-1]) if len(rows) > size else None
        return HistoryPage(items=items, next_cursor=next_cursor)
