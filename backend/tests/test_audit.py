"""Tests for the append-only audit logger."""
import json
import uuid
from datetime import timedelta

import pytest

from conftest import NOW
from verifier.core.exceptions import AuditImmutableError, ValidationError
from verifier.models.audit import VerificationAuditEntry
from verifier.models.verification import ActorType
from verifier.schemas.audit import AuditEntryOut
from verifier.services import audit as audit_svc


def test_append_serialises_snapshots(db, make_session):
    session = make_session(n=1)
    entry = audit_svc.append(
        db=db,
        event_type="session_paused",
        session_id=session.id,
        actor_type=ActorType.business_user,
        actor_id="user-1",
        before={"status": "in_progress"},
        after={"status": "paused"},
        metadata={"reason": "lunch", "at": NOW},
        occurred_at=NOW,
    )
    db.commit()

    assert entry.id is not None
    assert json.loads(entry.before_state) == {"status": "in_progress"}
    assert json.loads(entry.event_metadata)["at"] == str(NOW)


def test_audit_entries_cannot_be_updated(db, make_session):
    session = make_session(n=1)
    entry = db.query(VerificationAuditEntry).filter_by(session_id=session.id).first()

    entry.event_type = "tampered"
    with pytest.raises(AuditImmutableError):
        db.flush()
    db.rollback()


def test_audit_entries_cannot_be_deleted(db, make_session):
    session = make_session(n=1)
    entry = db.query(VerificationAuditEntry).filter_by(session_id=session.id).first()

    db.delete(entry)
    with pytest.raises(AuditImmutableError):
        db.flush()
    db.rollback()
    assert audit_svc.count_for_session(db, session.id) == 1


def test_query_orders_oldest_first_and_filters(db, make_session):
    session = make_session(n=1)
    for minutes, event in [(30, "session_paused"), (10, "session_resumed")]:
        audit_svc.append(
            db=db, event_type=event, session_id=session.id,
            actor_type="business_user", actor_id="u", occurred_at=NOW + timedelta(minutes=minutes),
        )
    db.commit()

    entries = audit_svc.query(db, session_id=session.id)
    assert [e.event_type for e in entries] == ["session_created", "session_resumed", "session_paused"]

    paused = audit_svc.query(db, session_id=session.id, event_type="session_paused")
    assert len(paused) == 1


def test_query_requires_an_id_or_a_range(db):
    with pytest.raises(ValidationError):
        audit_svc.query(db)


def test_query_by_time_range_alone(db, make_session):
    make_session(n=2)
    audit_svc.append(
        db=db, event_type="notification_failed", session_id=None,
        actor_type="system", actor_id="system", occurred_at=NOW + timedelta(hours=5),
    )
    db.commit()

    entries = audit_svc.query(db, start=NOW - timedelta(hours=1), end=NOW + timedelta(hours=1))
    assert [e.event_type for e in entries] == ["session_created"]

    later = audit_svc.query(db, start=NOW + timedelta(hours=4))
    assert [e.event_type for e in later] == ["notification_failed"]

    created = audit_svc.query(db, end=NOW + timedelta(days=1), event_type="session_created")
    assert len(created) == 1


def test_query_unknown_transaction_returns_nothing(db):
    assert audit_svc.query(db, transaction_id=uuid.uuid4()) == []


def test_entry_schema_parses_json_columns(db, make_session):
    session = make_session(n=1)
    entry = audit_svc.query(db, session_id=session.id)[0]

    out = AuditEntryOut.model_validate(entry)
    assert out.event_type == "session_created"
    assert out.actor_type == "system"
    assert out.after_state["status"] == "not_started"
    assert out.metadata["total_transactions"] == 1
