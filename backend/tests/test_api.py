"""HTTP tests for the verification, admin and audit endpoints.

The app runs against the per-test SQLite database through dependency
overrides; tokens are minted with the real JWT helper.
"""
import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import DEADLINE, transaction_ids
from verifier.core.deps import ADMIN, AUDITOR, BUSINESS_USER
from verifier.core.exceptions import StorageError
from verifier.core.security import create_access_token
from verifier.db.session import get_db, get_session_factory
from verifier.main import app

BUSINESS_ID = uuid.uuid4()


def _auth(role: str = BUSINESS_USER, business_id: uuid.UUID | None = BUSINESS_ID, sub: str = "user-1") -> dict:
    token = create_access_token(sub, role, business_id=business_id)
    return {"Authorization": f"Bearer {token}"}


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture(autouse=True)
def api_db(session_factory):
    def _override_db():
        with session_factory() as db:
            yield db

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield
    app.dependency_overrides.clear()


def _decision_url(session_id, tx_id) -> str:
    return f"/api/v1/verification/sessions/{session_id}/transactions/{tx_id}/decision"


# ─── Health / auth ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_health_returns_ok():
    async with _client() as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_token_is_401():
    async with _client() as client:
        response = await client.get("/api/v1/verification/sessions")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_garbage_token_is_401():
    async with _client() as client:
        response = await client.get(
            "/api/v1/verification/sessions", headers={"Authorization": "Bearer not-a-jwt"}
        )
    assert response.status_code == 401


# ─── Sessions ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_sessions_only_returns_own_business(make_session):
    mine = make_session(n=2, business_id=BUSINESS_ID)
    make_session(n=2)

    async with _client() as client:
        response = await client.get("/api/v1/verification/sessions", headers=_auth())
        admin_view = await client.get("/api/v1/verification/sessions", headers=_auth(ADMIN, None, "ops"))

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["items"][0]["session_id"] == str(mine.id)
    assert admin_view.json()["total"] == 2


@pytest.mark.asyncio
async def test_get_session_of_other_business_is_403(make_session):
    other = make_session(n=1)
    async with _client() as client:
        response = await client.get(f"/api/v1/verification/sessions/{other.id}", headers=_auth())
    assert response.status_code == 403
    assert response.json()["error"] == "ForbiddenError"


@pytest.mark.asyncio
async def test_get_unknown_session_is_404():
    async with _client() as client:
        response = await client.get(f"/api/v1/verification/sessions/{uuid.uuid4()}", headers=_auth())
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_session_snapshot_and_deadline(make_session):
    session = make_session(n=3, business_id=BUSINESS_ID)
    async with _client() as client:
        snapshot = await client.get(f"/api/v1/verification/sessions/{session.id}", headers=_auth())
        deadline = await client.get(f"/api/v1/verification/sessions/{session.id}/deadline", headers=_auth())
        pending = await client.get(
            f"/api/v1/verification/sessions/{session.id}/transactions",
            params={"pending_only": True},
            headers=_auth(),
        )

    assert snapshot.status_code == 200
    assert snapshot.json()["pending_count"] == 3
    assert snapshot.json()["deadline_status"] is not None
    assert deadline.status_code == 200
    assert "urgency_level" in deadline.json()
    assert pending.json()["total"] == 3


# ─── Decisions ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_record_decision_and_replay(db, make_session):
    session = make_session(n=2, business_id=BUSINESS_ID)
    tx_id = transaction_ids(db, session.id)[0]
    payload = {"decision": "rejected", "reason": "amount_mismatch", "note": "Off by 2.00"}

    async with _client() as client:
        first = await client.post(_decision_url(session.id, tx_id), json=payload, headers=_auth())
        second = await client.post(_decision_url(session.id, tx_id), json=payload, headers=_auth())

    assert first.status_code == 200
    assert first.json()["verified_count"] == 1
    assert first.json()["rejected_count"] == 1
    assert first.json()["status"] == "in_progress"
    assert first.json()["replayed"] is False
    assert second.status_code == 200
    assert second.json()["replayed"] is True
    assert second.json()["verified_count"] == 1


@pytest.mark.asyncio
async def test_reject_without_reason_is_422(db, make_session):
    session = make_session(n=1, business_id=BUSINESS_ID)
    tx_id = transaction_ids(db, session.id)[0]
    async with _client() as client:
        response = await client.post(
            _decision_url(session.id, tx_id), json={"decision": "rejected"}, headers=_auth()
        )
    assert response.status_code == 422
    assert response.json()["detail"] == "Rejection reason is required when rejecting a transaction"


@pytest.mark.asyncio
async def test_unknown_decision_value_is_422(db, make_session):
    session = make_session(n=1, business_id=BUSINESS_ID)
    tx_id = transaction_ids(db, session.id)[0]
    async with _client() as client:
        response = await client.post(
            _decision_url(session.id, tx_id), json={"decision": "maybe"}, headers=_auth()
        )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_conflicting_second_decision_is_409(db, make_session):
    session = make_session(n=2, business_id=BUSINESS_ID)
    tx_id = transaction_ids(db, session.id)[0]
    async with _client() as client:
        await client.post(_decision_url(session.id, tx_id), json={"decision": "approved"}, headers=_auth())
        response = await client.post(
            _decision_url(session.id, tx_id),
            json={"decision": "rejected", "reason": "fraud_suspected"},
            headers=_auth(),
        )
    assert response.status_code == 409
    assert response.json()["error"] == "AlreadyDecidedError"


@pytest.mark.asyncio
async def test_operators_cannot_record_decisions(db, make_session):
    session = make_session(n=1, business_id=BUSINESS_ID)
    tx_id = transaction_ids(db, session.id)[0]
    async with _client() as client:
        response = await client.post(
            _decision_url(session.id, tx_id), json={"decision": "approved"}, headers=_auth(AUDITOR, None, "aud")
        )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_storage_failure_is_503_and_retryable(db, make_session):
    session = make_session(n=1, business_id=BUSINESS_ID)
    tx_id = transaction_ids(db, session.id)[0]
    with patch("verifier.api.v1.verification.workflow.record_decision", side_effect=StorageError("db timeout")):
        async with _client() as client:
            response = await client.post(
                _decision_url(session.id, tx_id), json={"decision": "approved"}, headers=_auth()
            )
    assert response.status_code == 503
    assert response.headers["retry-after"] == "1"


@pytest.mark.asyncio
async def test_pause_resume_endpoints(db, make_session):
    session = make_session(n=2, business_id=BUSINESS_ID)
    tx_id = transaction_ids(db, session.id)[0]
    base = f"/api/v1/verification/sessions/{session.id}"
    async with _client() as client:
        early_pause = await client.post(f"{base}/pause", headers=_auth())
        await client.post(_decision_url(session.id, tx_id), json={"decision": "approved"}, headers=_auth())
        paused = await client.post(f"{base}/pause", json={"reason": "break"}, headers=_auth())
        resumed = await client.post(f"{base}/resume", headers=_auth())

    assert early_pause.status_code == 409
    assert paused.status_code == 200
    assert paused.json()["status"] == "paused"
    assert resumed.json()["status"] == "in_progress"


# ─── Audit ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_audit_trail_endpoints(db, make_session):
    session = make_session(n=2, business_id=BUSINESS_ID)
    tx_id = transaction_ids(db, session.id)[0]
    async with _client() as client:
        await client.post(_decision_url(session.id, tx_id), json={"decision": "approved"}, headers=_auth())
        trail = await client.get(f"/api/v1/verification/sessions/{session.id}/audit", headers=_auth())
        tx_trail = await client.get(f"/api/v1/verification/transactions/{tx_id}/audit", headers=_auth())

    assert [e["event_type"] for e in trail.json()["items"]] == ["session_created", "transaction_approved"]
    assert tx_trail.json()["total"] == 1
    entry = tx_trail.json()["items"][0]
    assert entry["actor_id"] == "user-1"
    assert entry["after_state"]["transaction"]["decision"] == "approved"


@pytest.mark.asyncio
async def test_audit_export_csv(make_session):
    make_session(n=1)
    async with _client() as client:
        denied = await client.get("/api/v1/audit/export", headers=_auth())
        response = await client.get("/api/v1/audit/export", headers=_auth(AUDITOR, None, "aud"))

    assert denied.status_code == 403
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("id,occurred_at,event_type")
    assert "session_created" in lines[1]


@pytest.mark.asyncio
async def test_urgency_endpoint(make_session):
    make_session(n=1, business_id=BUSINESS_ID)
    async with _client() as client:
        response = await client.get("/api/v1/verification/urgency", headers=_auth())
    assert response.status_code == 200
    assert response.json()["total_active"] == 1


# ─── Admin sweep ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_sweep(make_session):
    make_session(n=3, business_id=BUSINESS_ID)
    now = (DEADLINE + timedelta(hours=1)).isoformat()
    async with _client() as client:
        denied = await client.post("/api/v1/admin/sweep", json={"now": now}, headers=_auth())
        response = await client.post("/api/v1/admin/sweep", json={"now": now}, headers=_auth(ADMIN, None, "ops"))

    assert denied.status_code == 403
    assert response.status_code == 200
    body = response.json()
    assert body["processed_count"] == 1
    assert body["total_auto_approved_transactions"] == 3
    assert body["per_batch_results"][0]["final_status"] == "auto_completed"


# ─── Bulk decisions and history ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_bulk_decision_endpoint(db, make_session):
    session = make_session(n=3, business_id=BUSINESS_ID)
    tx_ids = [str(t) for t in transaction_ids(db, session.id)]
    url = f"/api/v1/verification/sessions/{session.id}/decisions"

    async with _client() as client:
        first = await client.post(
            url, json={"transaction_ids": tx_ids[:2], "decision": "approved"}, headers=_auth()
        )
        mixed = await client.post(
            url,
            json={"transaction_ids": tx_ids[1:], "decision": "rejected", "reason": "customer_dispute"},
            headers=_auth(),
        )
        empty = await client.post(url, json={"transaction_ids": [], "decision": "approved"}, headers=_auth())
        operator = await client.post(
            url, json={"transaction_ids": tx_ids, "decision": "approved"}, headers=_auth(ADMIN, None, "ops")
        )

    assert first.status_code == 200
    assert first.json()["processed"] == 2
    assert first.json()["progress"]["status"] == "in_progress"

    assert mixed.status_code == 200
    body = mixed.json()
    assert body["processed"] == 1
    assert body["failed"] == 1
    assert body["outcomes"][0]["error"] == "AlreadyDecidedError"
    assert body["progress"]["status"] == "completed"

    assert empty.status_code == 422
    assert operator.status_code == 403


@pytest.mark.asyncio
async def test_session_history_endpoint(db, make_session):
    session = make_session(n=1, business_id=BUSINESS_ID, deadline=DEADLINE + timedelta(days=3650))
    make_session(n=1)  # other business, still active
    tx_id = transaction_ids(db, session.id)[0]

    async with _client() as client:
        await client.post(_decision_url(session.id, tx_id), json={"decision": "approved"}, headers=_auth())
        own = await client.get("/api/v1/verification/history", headers=_auth())
        bad = await client.get("/api/v1/verification/history?status=paused", headers=_auth())
        operator = await client.get(
            "/api/v1/verification/history?status=completed", headers=_auth(AUDITOR, None, "aud")
        )

    assert own.status_code == 200
    assert own.json()["total"] == 1
    item = own.json()["items"][0]
    assert item["session_id"] == str(session.id)
    assert item["approval_rate"] == 100.0
    assert item["deadline_met"] is True
    assert bad.status_code == 422
    assert operator.json()["total"] >= 1


@pytest.mark.asyncio
async def test_audit_export_filters_by_event_type(db, make_session):
    session = make_session(n=2, business_id=BUSINESS_ID)
    tx_id = transaction_ids(db, session.id)[0]

    async with _client() as client:
        await client.post(_decision_url(session.id, tx_id), json={"decision": "approved"}, headers=_auth())
        response = await client.get(
            "/api/v1/audit/export?event_type=transaction_approved", headers=_auth(AUDITOR, None, "aud")
        )

    assert response.status_code == 200
    rows = response.text.strip().splitlines()[1:]
    assert len(rows) == 1
    assert "transaction_approved" in rows[0]
    assert str(tx_id) in rows[0]
