"""End-to-end tests for the /cashier endpoints."""

from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.models.accounting import Account, JournalEntry, TransactionSplit, User
from backend.app.services.cashier.bootstrap import CashierCloseServices
from backend.tests.conftest import auth

BASE = "/api/v1/cashier"


def _payload(
    expected: str = "5000.00",
    counts: dict[str, Any] | None = None,
    modes: dict[str, str] | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    counts = {"1000": 5} if counts is None else counts
    modes = {"cash": expected} if modes is None else modes
    return {
        "expected_total": expected,
        "denominations": [{"value": v, "count": c} for v, c in counts.items()],
        "payment_mode_totals": [{"mode": m, "amount": a} for m, a in modes.items()],
        "notes": notes,
    }


def _submit(client: TestClient, token: str, **kwargs: Any) -> dict[str, Any]:
    resp = client.post(f"{BASE}/close", json=_payload(**kwargs), headers=auth(token))
    assert resp.status_code == 201, resp.text
    return resp.json()


# ─── Settings & template ─────────────────────────────────────────────────────


class TestSettings:
    def test_any_signed_in_user_sees_settings(
        self, client: TestClient, accountant_token: str
    ) -> None:
        resp = client.get(f"{BASE}/settings", headers=auth(accountant_token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["currency"] == "INR"
        assert data["denominations"] == ["1000", "500", "100"]
        assert data["payment_modes"] == ["cash", "card", "upi", "other"]
        assert data["clearing_account"] == "2300"
        assert data["tolerance"] == "0.01"

    def test_requires_token(self, client: TestClient) -> None:
        assert client.get(f"{BASE}/settings").status_code == 401

    def test_template_highest_first(self, client: TestClient, cashier_token: str) -> None:
        resp = client.get(f"{BASE}/denominations/template", headers=auth(cashier_token))
        assert resp.status_code == 200
        entries = resp.json()["entries"]
        assert [e["value"] for e in entries] == ["1000", "500", "100"]
        assert all(e["count"] == 0 for e in entries)

    def test_template_needs_close_permission(
        self, client: TestClient, accountant_token: str
    ) -> None:
        resp = client.get(f"{BASE}/denominations/template", headers=auth(accountant_token))
        assert resp.status_code == 403


# ─── Preview ─────────────────────────────────────────────────────────────────


class TestPreview:
    def test_short_count_is_flagged(self, client: TestClient, cashier_token: str) -> None:
        resp = client.post(
            f"{BASE}/close/preview",
            json=_payload(counts={"1000": 4}, modes={"cash": "4000.00", "card": "1000.00"}),
            headers=auth(cashier_token),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["counted_total"] == "4000.00"
        assert data["payment_mode_total"] == "5000.00"
        assert data["variance"] == "-1000.00"
        assert data["variance_exceeds_threshold"] is True
        assert data["is_valid"] is True
        assert data["error"] is None

    def test_invalid_draft_reports_first_error(
        self, client: TestClient, cashier_token: str
    ) -> None:
        resp = client.post(
            f"{BASE}/close/preview",
            json=_payload(counts={"1000": 4}, modes={"cash": "5000.00"}),
            headers=auth(cashier_token),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["is_valid"] is False
        assert data["error"]["code"] == "CASH_MODE_MISMATCH"

    def test_preview_stores_nothing(
        self, client: TestClient, cashier_token: str, services: CashierCloseServices
    ) -> None:
        client.post(f"{BASE}/close/preview", json=_payload(), headers=auth(cashier_token))
        assert services.queries.list_pending() == []


# ─── Submit ──────────────────────────────────────────────────────────────────


class TestSubmit:
    def test_exact_count_is_requested(
        self, client: TestClient, cashier_token: str, cashier_user: User
    ) -> None:
        data = _submit(client, cashier_token, notes="  till 1  ")
        assert data["status"] == "REQUESTED"
        assert data["cashier_id"] == str(cashier_user.id)
        assert data["counted_total"] == "5000.00"
        assert data["variance"] == "0.00"
        assert data["variance_exceeds_threshold"] is False
        assert data["notes"] == "till 1"
        assert data["denominations"] == [{"value": "1000.00", "count": 5, "total": "5000.00"}]
        assert data["journal_entry_id"] is None

    def test_second_pending_close_conflicts(
        self, client: TestClient, cashier_token: str
    ) -> None:
        _submit(client, cashier_token)
        resp = client.post(f"{BASE}/close", json=_payload(), headers=auth(cashier_token))
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "ALREADY_PENDING_CLOSE"
        assert resp.json()["detail"]["retryable"] is False

    def test_mismatch_is_422_with_code(self, client: TestClient, cashier_token: str) -> None:
        resp = client.post(
            f"{BASE}/close",
            json=_payload(modes={"cash": "5000.00", "card": "10.00"}),
            headers=auth(cashier_token),
        )
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "PAYMENT_MODE_TOTAL_MISMATCH"

    def test_fractional_count_is_422(self, client: TestClient, cashier_token: str) -> None:
        resp = client.post(
            f"{BASE}/close",
            json=_payload(counts={"1000": "4.5"}, modes={"cash": "4500.00"}, expected="4500.00"),
            headers=auth(cashier_token),
        )
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "INVALID_DENOMINATION_COUNT"

    def test_unconfigured_denomination_is_422(
        self, client: TestClient, cashier_token: str
    ) -> None:
        resp = client.post(
            f"{BASE}/close",
            json=_payload(
                counts={"1000": 5, "37": 1}, modes={"cash": "5037.00"}, expected="5037.00"
            ),
            headers=auth(cashier_token),
        )
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "UNKNOWN_DENOMINATION"
        assert resp.json()["detail"]["retryable"] is False

    def test_malformed_body_is_rejected_by_schema(
        self, client: TestClient, cashier_token: str
    ) -> None:
        body = _payload()
        body["expected_total"] = "-1"
        resp = client.post(f"{BASE}/close", json=body, headers=auth(cashier_token))
        assert resp.status_code == 422
        assert isinstance(resp.json()["detail"], list)

    def test_accountant_cannot_submit(self, client: TestClient, accountant_token: str) -> None:
        resp = client.post(f"{BASE}/close", json=_payload(), headers=auth(accountant_token))
        assert resp.status_code == 403


# ─── Verify & reject ─────────────────────────────────────────────────────────


class TestVerify:
    def test_verify_posts_journal_entry(
        self,
        client: TestClient,
        cashier_token: str,
        accountant_token: str,
        accountant_user: User,
        seed_accounts: dict[str, Account],
        db: Session,
    ) -> None:
        close = _submit(
            client,
            cashier_token,
            counts={"1000": 4},
            modes={"cash": "4000.00", "card": "1000.00"},
        )
        resp = client.post(
            f"{BASE}/close/{close['id']}/verify", headers=auth(accountant_token)
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["status"] == "VERIFIED"
        assert data["resolved_by"] == str(accountant_user.id)
        assert data["variance"] == "-1000.00"

        entry = db.get(JournalEntry, UUID(data["journal_entry_id"]))
        assert entry is not None
        assert entry.reference == f"CCLOSE-{close['id']}"
        credits = db.scalars(
            select(TransactionSplit.credit_amount).where(
                TransactionSplit.journal_entry_id == entry.id,
                TransactionSplit.credit_amount > 0,
            )
        ).all()
        assert sum(credits) == 5000

    def test_verified_close_cannot_be_rejected(
        self,
        client: TestClient,
        cashier_token: str,
        accountant_token: str,
        seed_accounts: dict[str, Account],
    ) -> None:
        close = _submit(client, cashier_token)
        client.post(f"{BASE}/close/{close['id']}/verify", headers=auth(accountant_token))
        resp = client.post(
            f"{BASE}/close/{close['id']}/reject",
            json={"reason": "late"},
            headers=auth(accountant_token),
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "ALREADY_RESOLVED"

    def test_missing_accounts_is_502_and_close_stays_pending(
        self, client: TestClient, cashier_token: str, accountant_token: str
    ) -> None:
        close = _submit(client, cashier_token)
        resp = client.post(
            f"{BASE}/close/{close['id']}/verify", headers=auth(accountant_token)
        )
        assert resp.status_code == 502
        assert resp.json()["detail"]["retryable"] is True

        detail = client.get(f"{BASE}/close/{close['id']}", headers=auth(accountant_token))
        assert detail.json()["status"] == "REQUESTED"

    def test_unknown_close_is_404(self, client: TestClient, accountant_token: str) -> None:
        resp = client.post(f"{BASE}/close/{uuid4()}/verify", headers=auth(accountant_token))
        assert resp.status_code == 404

    def test_cashier_cannot_verify(self, client: TestClient, cashier_token: str) -> None:
        close = _submit(client, cashier_token)
        resp = client.post(f"{BASE}/close/{close['id']}/verify", headers=auth(cashier_token))
        assert resp.status_code == 403


class TestReject:
    def test_reject_frees_cashier_for_new_close(
        self, client: TestClient, cashier_token: str, accountant_token: str
    ) -> None:
        close = _submit(client, cashier_token)
        resp = client.post(
            f"{BASE}/close/{close['id']}/reject",
            json={"reason": "  recount the 500s  "},
            headers=auth(accountant_token),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "REJECTED"
        assert resp.json()["rejection_reason"] == "recount the 500s"

        _submit(client, cashier_token)

    def test_blank_reason_is_422(
        self, client: TestClient, cashier_token: str, accountant_token: str
    ) -> None:
        close = _submit(client, cashier_token)
        for body in ({"reason": "   "}, {}):
            resp = client.post(
                f"{BASE}/close/{close['id']}/reject", json=body, headers=auth(accountant_token)
            )
            assert resp.status_code == 422
            assert resp.json()["detail"]["code"] == "INVALID_REASON"


# ─── Reads ───────────────────────────────────────────────────────────────────


class TestReads:
    def test_pending_queue_for_accountant(
        self,
        client: TestClient,
        cashier_token: str,
        other_cashier_token: str,
        accountant_token: str,
    ) -> None:
        first = _submit(client, cashier_token)
        second = _submit(client, other_cashier_token)
        resp = client.get(f"{BASE}/close/pending", headers=auth(accountant_token))
        assert resp.status_code == 200
        assert [c["id"] for c in resp.json()] == [first["id"], second["id"]]

    def test_cashier_cannot_list_pending(self, client: TestClient, cashier_token: str) -> None:
        assert client.get(f"{BASE}/close/pending", headers=auth(cashier_token)).status_code == 403

    def test_cashier_sees_only_own_close(
        self, client: TestClient, cashier_token: str, other_cashier_token: str
    ) -> None:
        close = _submit(client, cashier_token)
        own = client.get(f"{BASE}/close/{close['id']}", headers=auth(cashier_token))
        assert own.status_code == 200
        other = client.get(f"{BASE}/close/{close['id']}", headers=auth(other_cashier_token))
        assert other.status_code == 404

    def test_history_scoped_to_cashier(
        self,
        client: TestClient,
        cashier_token: str,
        other_cashier_token: str,
        other_cashier_user: User,
        cashier_user: User,
    ) -> None:
        _submit(client, cashier_token)
        _submit(client, other_cashier_token)

        resp = client.get(f"{BASE}/close/history", headers=auth(cashier_token))
        assert resp.status_code == 200
        items = resp.json()["items"]
        assert [i["cashier_id"] for i in items] == [str(cashier_user.id)]

        resp = client.get(
            f"{BASE}/close/history",
            params={"cashier_id": str(other_cashier_user.id)},
            headers=auth(cashier_token),
        )
        assert resp.status_code == 403

    def test_history_pages_with_cursor(
        self,
        client: TestClient,
        cashier_token: str,
        other_cashier_token: str,
        accountant_token: str,
    ) -> None:
        ids = set()
        for token in (cashier_token, other_cashier_token):
            close = _submit(client, token)
            client.post(
                f"{BASE}/close/{close['id']}/reject",
                json={"reason": "recount"},
                headers=auth(accountant_token),
            )
            ids.add(close["id"])
            ids.add(_submit(client, token)["id"])

        first = client.get(
            f"{BASE}/close/history", params={"limit": 3}, headers=auth(accountant_token)
        ).json()
        assert len(first["items"]) == 3
        assert first["next_cursor"]
        second = client.get(
            f"{BASE}/close/history",
            params={"limit": 3, "cursor": first["next_cursor"]},
            headers=auth(accountant_token),
        ).json()
        assert second["next_cursor"] is None
        seen = [i["id"] for i in first["items"] + second["items"]]
        assert len(seen) == 4
        assert set(seen) == ids

    def test_bad_cursor_is_400(self, client: TestClient, accountant_token: str) -> None:
        resp = client.get(
            f"{BASE}/close/history",
            params={"cursor": "not-base64!!"},
            headers=auth(accountant_token),
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "INVALID_CURSOR"


# ─── Audit trail ─────────────────────────────────────────────────────────────


class TestAuditTrail:
    def test_submit_and_verify_are_logged_in_order(
        self,
        client: TestClient,
        cashier_token: str,
        accountant_token: str,
        admin_token: str,
        seed_accounts: dict[str, Account],
        services: CashierCloseServices,
    ) -> None:
        close = _submit(client, cashier_token)
        client.post(f"{BASE}/close/{close['id']}/verify", headers=auth(accountant_token))
        assert services.audit.flush(timeout=5)

        resp = client.get(
            f"/api/v1/audit-logs/closes/{close['id']}", headers=auth(admin_token)
        )
        assert resp.status_code == 200
        rows = resp.json()
        assert [r["action"] for r in rows] == ["CLOSE_SUBMITTED", "CLOSE_VERIFIED"]
        assert rows[1]["changes"]["journal_entry_id"]
        assert rows[0]["changes"]["expected_total"] == "5000.00"

    def test_cashier_cannot_read_audit(self, client: TestClient, cashier_token: str) -> None:
        assert client.get("/api/v1/audit-logs/", headers=auth(cashier_token)).status_code == 403

    def test_audit_list_filters_by_close(
        self,
        client: TestClient,
        cashier_token: str,
        accountant_token: str,
        services: CashierCloseServices,
    ) -> None:
        close = _submit(client, cashier_token)
        client.post(
            f"{BASE}/close/{close['id']}/reject",
            json={"reason": "recount"},
            headers=auth(accountant_token),
        )
        assert services.audit.flush(timeout=5)

        resp = client.get(
            "/api/v1/audit-logs/",
            params={"resource_id": close["id"], "action": "close_rejected"},
            headers=auth(accountant_token),
        )
        assert resp.status_code == 200
        [row] = resp.json()
        assert row["changes"]["rejection_reason"] == "recount"
        assert row["changes"]["sequence"] == 2
