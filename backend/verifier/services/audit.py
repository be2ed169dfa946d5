"""Audit log helper: append-only writes to verification_audit_entries.

append() is the only mutation. It flushes inside the caller's transaction and
never commits, so a failed audit write fails (and rolls back) the state
change it documents.
"""
import json
import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from verifier.core.exceptions import StorageError, ValidationError
from verifier.models.audit import VerificationAuditEntry
from verifier.models.verification import ActorType

logger = logging.getLogger(__name__)


def append(
    db: Session,
    event_type: str,
    session_id: uuid.UUID | None,
    actor_type: ActorType | str,
    actor_id: str | None = None,
    transaction_id: uuid.UUID | None = None,
    before: Any | None = None,
    after: Any | None = None,
    metadata: dict | None = None,
    occurred_at: datetime | None = None,
) -> VerificationAuditEntry:
    """Write a single audit entry.

    Args:
        db: Sync SQLAlchemy session. The caller owns the transaction.
        event_type: Short verb, e.g. 'transaction_approved', 'session_auto_completed'.
        session_id: Session the entry belongs to.
        actor_type: 'business_user' or 'system'.
        actor_id: User id, or 'system' for sweep actions.
        transaction_id: Affected transaction, if any.
        before: Dict snapshot of state before the change (JSON-serialisable).
        after: Dict snapshot of state after the change.
        metadata: Free-form context (reason, sweep outcome, error text).
        occurred_at: Event time; defaults to now.

    Raises:
        StorageError: If the row cannot be flushed.
    """
    entry = VerificationAuditEntry(
        session_id=session_id,
        transaction_id=transaction_id,
        event_type=event_type,
        actor_type=ActorType(actor_type).value,
        actor_id=actor_id,
        before_state=json.dumps(before, default=str) if before is not None else None,
        after_state=json.dumps(after, default=str) if after is not None else None,
        event_metadata=json.dumps(metadata, default=str) if metadata is not None else None,
    )
    if occurred_at is not None:
        entry.occurred_at = occurred_at
    db.add(entry)
    try:
        db.flush()  # get id without committing; caller controls the transaction
    except SQLAlchemyError as exc:
        raise StorageError(f"Audit write failed for {event_type}: {exc}") from exc
    logger.debug("Audit: %s session=%s tx=%s", event_type, session_id, transaction_id)
    return entry


def query(
    db: Session,
    session_id: uuid.UUID | None = None,
    transaction_id: uuid.UUID | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    event_type: str | None = None,
) -> list[VerificationAuditEntry]:
    """Return audit entries by session, transaction or time range, oldest first.

    When both ids are given, entries matching either are returned. A range on
    its own returns every entry in it. The range is inclusive on both ends.
    """
    if session_id is None and transaction_id is None and start is None and end is None:
        raise ValidationError("An audit trail query needs a session_id, a transaction_id or a time range.")
    if start is not None and end is not None and start > end:
        raise ValidationError("Audit trail start must not be after end.")

    clauses = []
    if session_id is not None:
        clauses.append(VerificationAuditEntry.session_id == session_id)
    if transaction_id is not None:
        clauses.append(VerificationAuditEntry.transaction_id == transaction_id)

    stmt = select(VerificationAuditEntry)
    if clauses:
        stmt = stmt.where(or_(*clauses))
    if start is not None:
        stmt = stmt.where(VerificationAuditEntry.occurred_at >= start)
    if end is not None:
        stmt = stmt.where(VerificationAuditEntry.occurred_at <= end)
    if event_type:
        stmt = stmt.where(VerificationAuditEntry.event_type == event_type)
    stmt = stmt.order_by(VerificationAuditEntry.occurred_at.asc(), VerificationAuditEntry.id.asc())

    try:
        return list(db.execute(stmt).scalars().all())
    except SQLAlchemyError as exc:
        raise StorageError(f"Audit trail query failed: {exc}") from exc


def count_for_session(db: Session, session_id: uuid.UUID) -> int:
    """Number of audit entries recorded for a session."""
    return db.execute(
        select(func.count(VerificationAuditEntry.id)).where(
            VerificationAuditEntry.session_id == session_id
        )
    ).scalar_one()
