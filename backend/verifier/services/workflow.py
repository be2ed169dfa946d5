"""Verification session lifecycle service.

All functions accept a sync SQLAlchemy Session, safe to call from the API
threadpool and from Celery tasks. Every mutation runs inside
locks.locked_unit_of_work(): per-session lock, row lock, one commit, one
audit trail.

State machine:

    not_started --first decision--> in_progress
    in_progress --pause--> paused --resume--> in_progress
    in_progress --last decision--> completed
    not_started|in_progress|paused --sweep--> auto_completed | expired
"""
import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from verifier.core.clock import ensure_utc, utcnow
from verifier.core.config import settings
from verifier.core.exceptions import (
    AlreadyDecidedError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from verifier.models.verification import (
    ACTIVE_STATUSES,
    SYSTEM_ACTOR,
    TERMINAL_STATUSES,
    ActorType,
    Decision,
    RejectionReason,
    SessionStatus,
    VerificationSession,
)
from verifier.schemas.verification import (
    BulkDecisionResult,
    DeadlineStatusOut,
    DecisionOutcome,
    NextTransaction,
    SessionHistoryItem,
    SessionProgress,
    SessionSnapshot,
    UrgencyStatistics,
    completion_percentage,
)
from verifier.services import audit as audit_svc
from verifier.services import decision_store
from verifier.services import deadline as deadline_svc
from verifier.services.locks import load_session_for_update, locked_unit_of_work

logger = logging.getLogger(__name__)

REJECTION_REASON_REQUIRED = "Rejection reason is required when rejecting a transaction"
NOTE_REQUIRED_FOR_OTHER = 'Business notes are required when rejection reason is "other"'

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    SessionStatus.not_started.value: frozenset({
        SessionStatus.in_progress.value,
        SessionStatus.auto_completed.value,
        SessionStatus.expired.value,
    }),
    SessionStatus.in_progress.value: frozenset({
        SessionStatus.paused.value,
        SessionStatus.completed.value,
        SessionStatus.auto_completed.value,
    }),
    SessionStatus.paused.value: frozenset({
        SessionStatus.in_progress.value,
        SessionStatus.auto_completed.value,
    }),
}

HUMAN_DECISIONS = (Decision.approved.value, Decision.rejected.value)
BULK_DECISION_LIMIT = 500


# ─── State helpers (shared with the sweep) ───

def transition(session: VerificationSession, target: SessionStatus | str, now: datetime) -> None:
    """Move a session to target status, stamping lifecycle timestamps.

    Raises:
        InvalidStateError: If the transition is not in ALLOWED_TRANSITIONS.
    """
    target = SessionStatus(target).value
    allowed = ALLOWED_TRANSITIONS.get(session.status, frozenset())
    if target not in allowed:
        raise InvalidStateError(
            f"Session {session.id} cannot move from {session.status} to {target}.",
            details={"current_status": session.status, "target_status": target},
        )
    session.status = target
    if target == SessionStatus.in_progress.value and session.started_at is None:
        session.started_at = now
    if session.is_terminal:
        session.completed_at = now


def session_state(session: VerificationSession) -> dict:
    """Audit snapshot of the session fields the state machine owns."""
    return {
        "status": session.status,
        "total_transactions": session.total_transactions,
        "verified_count": session.verified_count,
        "approved_count": session.approved_count,
        "rejected_count": session.rejected_count,
        "current_index": session.current_index,
    }


def recount(db: Session, session: VerificationSession) -> decision_store.DecisionCounts:
    """Recompute session counters from the decision store.

    Counters are never incremented in place; they are derived from the
    stored decisions on every write, under the session lock.
    """
    counts = decision_store.count_decisions(db, session.id)
    if counts.verified > session.total_transactions:
        raise StorageError(
            f"Session {session.id} has {counts.verified} decisions for "
            f"{session.total_transactions} transactions."
        )
    session.approved_count = counts.approved_total
    session.rejected_count = counts.rejected
    session.verified_count = counts.verified

    nxt = decision_store.first_pending(db, session.id)
    session.current_index = nxt.position if nxt is not None else session.total_transactions
    return counts


def _check_owner(session: VerificationSession, business_id: uuid.UUID | None) -> None:
    if business_id is not None and session.business_id != business_id:
        raise ForbiddenError(f"Session {session.id} does not belong to this business.")


def _load_session(db: Session, session_id: uuid.UUID) -> VerificationSession:
    session = db.execute(
        select(VerificationSession).where(VerificationSession.id == session_id)
    ).scalars().first()
    if session is None:
        raise NotFoundError(f"Verification session {session_id} not found.")
    return session


def build_progress(
    db: Session, session: VerificationSession, replayed: bool = False
) -> SessionProgress:
    nxt = decision_store.first_pending(db, session.id)
    return SessionProgress(
        session_id=session.id,
        batch_id=session.batch_id,
        business_id=session.business_id,
        status=session.status,
        total_transactions=session.total_transactions,
        verified_count=session.verified_count,
        approved_count=session.approved_count,
        rejected_count=session.rejected_count,
        pending_count=session.total_transactions - session.verified_count,
        current_index=session.current_index,
        completion_percentage=completion_percentage(session.verified_count, session.total_transactions),
        session_completed=session.is_terminal,
        replayed=replayed,
        next_transaction=(
            NextTransaction(
                id=nxt.id,
                position=nxt.position,
                external_transaction_id=nxt.external_transaction_id,
                amount=nxt.amount,
            )
            if nxt is not None and not session.is_terminal
            else None
        ),
    )


def build_snapshot(session: VerificationSession, now: datetime | None = None) -> SessionSnapshot:
    out = SessionSnapshot.model_validate(session)
    out.pending_count = session.total_transactions - session.verified_count
    out.completion_percentage = completion_percentage(session.verified_count, session.total_transactions)
    out.can_pause = session.status == SessionStatus.in_progress.value
    out.can_resume = session.status == SessionStatus.paused.value
    out.deadline_status = DeadlineStatusOut.from_status(deadline_svc.classify(session.deadline, now))
    return out


def _validate_decision_input(decision: str, reason: str | None, note: str | None) -> str | None:
    """Return the normalised rejection reason; raise ValidationError on bad input."""
    if decision == Decision.rejected.value:
        if not reason:
            raise ValidationError(REJECTION_REASON_REQUIRED)
        try:
            reason = RejectionReason(reason).value
        except ValueError:
            raise ValidationError(f"Unknown rejection reason '{reason}'.") from None
        if reason == RejectionReason.other.value and not (note and note.strip()):
            raise ValidationError(NOTE_REQUIRED_FOR_OTHER)
        return reason
    return None


# ─── Create ───

def create_session(
    db: Session,
    batch_store,
    business_id: uuid.UUID,
    batch_id: uuid.UUID,
    deadline: datetime | None = None,
    now: datetime | None = None,
) -> VerificationSession:
    """Create a session for a newly available batch.

    Pulls the batch's transactions from the Batch Store once. The default
    deadline is VERIFICATION_WINDOW_DAYS out, at end of day UTC.

    Raises:
        InvalidStateError: If a session already exists for the batch.
        NotFoundError: If the Batch Store does not know the batch.
    """
    now = ensure_utc(now) if now else utcnow()

    existing = db.execute(
        select(VerificationSession.id).where(VerificationSession.batch_id == batch_id)
    ).scalar()
    if existing is not None:
        raise InvalidStateError(f"Verification session already exists for batch {batch_id}.")

    try:
        raw_transactions = list(batch_store.get_transactions_for_batch(batch_id))
    except LookupError as exc:
        raise NotFoundError(str(exc)) from exc

    if deadline is None:
        deadline = deadline_svc.default_deadline(now, settings.VERIFICATION_WINDOW_DAYS)
    deadline = ensure_utc(deadline)

    risk_scores = [float(t.risk_score) for t in raw_transactions if t.risk_score is not None]
    session = VerificationSession(
        business_id=business_id,
        batch_id=batch_id,
        status=SessionStatus.not_started.value,
        total_transactions=len(raw_transactions),
        verified_count=0,
        approved_count=0,
        rejected_count=0,
        current_index=0,
        pause_count=0,
        deadline=deadline,
        average_risk_score=round(sum(risk_scores) / len(risk_scores), 2) if risk_scores else None,
    )
    try:
        db.add(session)
        db.flush()
        decision_store.add_transactions(db, session.id, raw_transactions)
        audit_svc.append(
            db=db,
            event_type="session_created",
            session_id=session.id,
            actor_type=ActorType.system,
            actor_id=SYSTEM_ACTOR,
            after=session_state(session),
            metadata={
                "batch_id": str(batch_id),
                "deadline": deadline.isoformat(),
                "total_transactions": len(raw_transactions),
            },
            occurred_at=now,
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvalidStateError(f"Verification session already exists for batch {batch_id}.") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Failed to create session for batch {batch_id}: {exc}") from exc
    except StorageError:
        db.rollback()
        raise

    logger.info(
        "Verification session created: session=%s business=%s batch=%s transactions=%d deadline=%s",
        session.id, business_id, batch_id, len(raw_transactions), deadline.isoformat(),
    )
    return session


# ─── Read ───

def get_session(
    db: Session,
    session_id: uuid.UUID,
    business_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> SessionSnapshot:
    """Read-only snapshot with derived progress and deadline status."""
    session = _load_session(db, session_id)
    _check_owner(session, business_id)
    return build_snapshot(session, now)


def get_progress(
    db: Session, session_id: uuid.UUID, business_id: uuid.UUID | None = None
) -> SessionProgress:
    session = _load_session(db, session_id)
    _check_owner(session, business_id)
    return build_progress(db, session)


def list_session_transactions(
    db: Session,
    session_id: uuid.UUID,
    pending_only: bool = False,
    business_id: uuid.UUID | None = None,
):
    session = _load_session(db, session_id)
    _check_owner(session, business_id)
    return decision_store.list_transactions(db, session.id, pending_only=pending_only)


def list_active_sessions(db: Session, business_id: uuid.UUID | None = None) -> list[SessionProgress]:
    """Progress for every non-terminal session, soonest deadline first."""
    stmt = select(VerificationSession).where(VerificationSession.status.in_(list(ACTIVE_STATUSES)))
    if business_id is not None:
        stmt = stmt.where(VerificationSession.business_id == business_id)
    stmt = stmt.order_by(VerificationSession.deadline.asc())
    return [build_progress(db, s) for s in db.execute(stmt).scalars().all()]


def get_urgency_statistics(
    db: Session, business_id: uuid.UUID | None = None, now: datetime | None = None
) -> UrgencyStatistics:
    stmt = select(VerificationSession.deadline).where(
        VerificationSession.status.in_(list(ACTIVE_STATUSES))
    )
    if business_id is not None:
        stmt = stmt.where(VerificationSession.business_id == business_id)

    statuses = [deadline_svc.classify(d, now) for d in db.execute(stmt).scalars().all()]
    return UrgencyStatistics(
        total_active=len(statuses),
        critical=sum(
            1 for s in statuses
            if s.urgency_level is deadline_svc.UrgencyLevel.critical and not s.is_overdue
        ),
        urgent=sum(1 for s in statuses if s.is_urgent and not s.is_overdue),
        overdue=sum(1 for s in statuses if s.is_overdue),
    )


def list_session_history(
    db: Session,
    business_id: uuid.UUID | None = None,
    status: SessionStatus | str | None = None,
    completed_from: datetime | None = None,
    completed_to: datetime | None = None,
) -> list[SessionHistoryItem]:
    """Finished sessions, most recently completed first.

    Each item carries approval and rejection rates (percent of the batch,
    auto-approvals counted separately) and whether the session finished by
    its deadline.

    Raises:
        ValidationError: If status is not a terminal status.
    """
    if status is not None:
        status = status.value if isinstance(status, SessionStatus) else str(status)
        if status not in TERMINAL_STATUSES:
            raise ValidationError(
                f"History status must be one of {sorted(TERMINAL_STATUSES)}, got '{status}'."
            )
        statuses = [status]
    else:
        statuses = list(TERMINAL_STATUSES)

    stmt = select(VerificationSession).where(VerificationSession.status.in_(statuses))
    if business_id is not None:
        stmt = stmt.where(VerificationSession.business_id == business_id)
    if completed_from is not None:
        stmt = stmt.where(VerificationSession.completed_at >= ensure_utc(completed_from))
    if completed_to is not None:
        stmt = stmt.where(VerificationSession.completed_at <= ensure_utc(completed_to))
    stmt = stmt.order_by(VerificationSession.completed_at.desc(), VerificationSession.id.asc())

    items = []
    for session in db.execute(stmt).scalars().all():
        counts = decision_store.count_decisions(db, session.id)
        total = session.total_transactions
        completed_at = ensure_utc(session.completed_at) if session.completed_at else None
        items.append(SessionHistoryItem(
            session_id=session.id,
            batch_id=session.batch_id,
            business_id=session.business_id,
            status=session.status,
            total_transactions=total,
            approved_count=counts.approved,
            rejected_count=counts.rejected,
            auto_approved_count=counts.auto_approved,
            approval_rate=_rate(counts.approved, total),
            rejection_rate=_rate(counts.rejected, total),
            auto_approval_rate=_rate(counts.auto_approved, total),
            deadline=session.deadline,
            started_at=session.started_at,
            completed_at=session.completed_at,
            deadline_met=(
                session.status == SessionStatus.completed.value
                and completed_at is not None
                and completed_at <= ensure_utc(session.deadline)
            ),
        ))
    return items


def _rate(part: int, total: int) -> float:
    return round(part * 100.0 / total, 2) if total else 0.0


def get_audit_trail(
    db: Session,
    session_id: uuid.UUID | None = None,
    transaction_id: uuid.UUID | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    business_id: uuid.UUID | None = None,
):
    """Audit entries for a session or a transaction, optionally within a time range.

    A range-only query spans every business, so it is refused for a
    tenant-scoped caller.
    """
    if business_id is not None and session_id is None and transaction_id is None:
        raise ValidationError("A business-scoped audit query needs a session_id or a transaction_id.")
    if session_id is not None:
        _check_owner(_load_session(db, session_id), business_id)
    if transaction_id is not None:
        tx = decision_store.get_transaction(db, transaction_id)
        _check_owner(_load_session(db, tx.session_id), business_id)
    return audit_svc.query(
        db,
        session_id=session_id,
        transaction_id=transaction_id,
        start=ensure_utc(start) if start else None,
        end=ensure_utc(end) if end else None,
    )


# ─── Decide ───

def record_decision(
    db: Session,
    session_id: uuid.UUID,
    transaction_id: uuid.UUID,
    decision: Decision | str,
    actor_id: str,
    reason: RejectionReason | str | None = None,
    note: str | None = None,
    business_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> SessionProgress:
    """Record a human approve/reject decision on one transaction.

    Args:
        db: Sync SQLAlchemy session.
        session_id: Session the transaction belongs to.
        transaction_id: Transaction to decide.
        decision: "approved" or "rejected".
        actor_id: Business user making the decision.
        reason: Rejection reason (required when rejecting).
        note: Free-text note (required when reason is "other").
        business_id: Caller's business; enforces ownership when given.
        now: Decision time; defaults to now (injectable for tests).

    Returns:
        SessionProgress after the decision. An identical retry of an
        already-applied decision returns the current progress with
        replayed=True and writes nothing.

    Raises:
        NotFoundError, ForbiddenError, InvalidStateError,
        AlreadyDecidedError, ValidationError, StorageError.
    """
    now = ensure_utc(now) if now else utcnow()
    decision, reason = _normalise_decision(decision, reason)

    with locked_unit_of_work(db, session_id):
        session = load_session_for_update(db, session_id)
        _check_owner(session, business_id)
        replayed = _decide_locked(db, session, transaction_id, decision, actor_id, reason, note, now)
        progress = build_progress(db, session, replayed=replayed)

    if not replayed:
        logger.info(
            "Decision recorded: session=%s tx=%s decision=%s actor=%s status=%s verified=%d/%d",
            session_id, transaction_id, decision, actor_id,
            progress.status, progress.verified_count, progress.total_transactions,
        )
    return progress


def record_decisions(
    db: Session,
    session_id: uuid.UUID,
    transaction_ids: list[uuid.UUID],
    decision: Decision | str,
    actor_id: str,
    reason: RejectionReason | str | None = None,
    note: str | None = None,
    business_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> BulkDecisionResult:
    """Apply one decision to several transactions of a session.

    All items run under a single session lock and commit together. Each
    item is validated like record_decision(); an item that is refused
    (already decided, wrong session, paused or finished session) is reported
    in its outcome and does not stop the others. A storage failure rolls
    back the whole request.

    Raises:
        ValidationError: Empty or oversized id list, or bad decision input.
        NotFoundError, ForbiddenError: For the session itself.
        StorageError: If the unit of work cannot be committed.
    """
    if not transaction_ids:
        raise ValidationError("At least one transaction id is required.")
    if len(transaction_ids) > BULK_DECISION_LIMIT:
        raise ValidationError(
            f"At most {BULK_DECISION_LIMIT} transactions can be decided in one request.",
            details={"requested": len(transaction_ids)},
        )
    now = ensure_utc(now) if now else utcnow()
    decision, reason = _normalise_decision(decision, reason)
    reason = _validate_decision_input(decision, reason, note)

    outcomes: list[DecisionOutcome] = []
    with locked_unit_of_work(db, session_id):
        session = load_session_for_update(db, session_id)
        _check_owner(session, business_id)
        for transaction_id in transaction_ids:
            try:
                replayed = _decide_locked(
                    db, session, transaction_id, decision, actor_id, reason, note, now
                )
            except (AlreadyDecidedError, ForbiddenError, InvalidStateError, NotFoundError) as exc:
                outcomes.append(DecisionOutcome(
                    transaction_id=transaction_id,
                    success=False,
                    error=type(exc).__name__,
                    message=exc.message,
                ))
                continue
            outcomes.append(DecisionOutcome(transaction_id=transaction_id, success=True, replayed=replayed))
        progress = build_progress(db, session)

    processed = sum(1 for o in outcomes if o.success)
    logger.info(
        "Bulk decision: session=%s decision=%s actor=%s processed=%d failed=%d status=%s",
        session_id, decision, actor_id, processed, len(outcomes) - processed, progress.status,
    )
    return BulkDecisionResult(
        processed=processed,
        failed=len(outcomes) - processed,
        outcomes=outcomes,
        progress=progress,
    )


def _normalise_decision(decision: Decision | str, reason: RejectionReason | str | None):
    decision = decision.value if isinstance(decision, Decision) else str(decision)
    reason = reason.value if isinstance(reason, RejectionReason) else reason
    if decision not in HUMAN_DECISIONS:
        raise ValidationError(f"Invalid decision '{decision}'. Must be 'approved' or 'rejected'.")
    if decision == Decision.approved.value:
        reason = None  # rejection reasons only apply to rejections
    return decision, reason


def _decide_locked(
    db: Session,
    session: VerificationSession,
    transaction_id: uuid.UUID,
    decision: str,
    actor_id: str,
    reason: str | None,
    note: str | None,
    now: datetime,
) -> bool:
    """Decide one transaction of an already locked session.

    Returns True when the call was an identical retry and nothing changed.
    Every refusal is raised before anything is written.
    """
    tx = decision_store.get_transaction(db, transaction_id)
    if tx.session_id != session.id:
        raise ForbiddenError(f"Transaction {transaction_id} does not belong to session {session.id}.")

    if tx.is_decided and decision_store.is_identical_retry(
        tx, decision, actor_id, reason, note, now
    ):
        logger.info("record_decision: identical retry for tx=%s absorbed", transaction_id)
        return True

    if session.is_terminal:
        raise InvalidStateError(
            f"Session {session.id} is {session.status}; no further decisions are accepted.",
            details={"current_status": session.status},
        )
    if session.status == SessionStatus.paused.value:
        raise InvalidStateError(
            f"Session {session.id} is paused; resume it before recording decisions.",
            details={"current_status": session.status},
        )
    if tx.is_decided:
        raise AlreadyDecidedError(
            f"Transaction {transaction_id} has already been decided ({tx.decision}).",
            details={"existing_decision": tx.decision},
        )

    reason = _validate_decision_input(decision, reason, note)

    session_before = session_state(session)
    applied = decision_store.apply_decision(
        db, tx, decision, actor_id=actor_id, now=now, reason=reason, note=note,
    )

    counts = recount(db, session)
    if session.status == SessionStatus.not_started.value:
        transition(session, SessionStatus.in_progress, now)
    if counts.pending == 0 and session.verified_count == session.total_transactions:
        transition(session, SessionStatus.completed, now)

    audit_svc.append(
        db=db,
        event_type=f"transaction_{decision}",
        session_id=session.id,
        transaction_id=tx.id,
        actor_type=ActorType.business_user,
        actor_id=actor_id,
        before={"transaction": applied.before, "session": session_before},
        after={"transaction": decision_store.snapshot(tx), "session": session_state(session)},
        metadata={
            "reason": reason,
            "note": note,
            "session_completed": session.is_terminal,
        },
        occurred_at=now,
    )
    db.flush()
    return False


# ─── Pause / resume ───

def pause(
    db: Session,
    session_id: uuid.UUID,
    actor_id: str,
    reason: str | None = None,
    business_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> SessionSnapshot:
    """Pause an in-progress session.

    Raises:
        InvalidStateError: Unless the session is in_progress.
    """
    now = ensure_utc(now) if now else utcnow()
    with locked_unit_of_work(db, session_id):
        session = load_session_for_update(db, session_id)
        _check_owner(session, business_id)
        if session.status != SessionStatus.in_progress.value:
            raise InvalidStateError(
                f"Cannot pause session in status {session.status}.",
                details={"current_status": session.status},
            )
        before = session_state(session)
        transition(session, SessionStatus.paused, now)
        session.paused_at = now
        session.pause_count = (session.pause_count or 0) + 1
        session.pause_reason = reason
        audit_svc.append(
            db=db,
            event_type="session_paused",
            session_id=session.id,
            actor_type=ActorType.business_user,
            actor_id=actor_id,
            before=before,
            after=session_state(session),
            metadata={"reason": reason, "pause_count": session.pause_count},
            occurred_at=now,
        )

    logger.info("Session paused: session=%s actor=%s", session_id, actor_id)
    return build_snapshot(session, now)


def resume(
    db: Session,
    session_id: uuid.UUID,
    actor_id: str,
    business_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> SessionSnapshot:
    """Resume a paused session.

    Raises:
        InvalidStateError: Unless the session is paused.
    """
    now = ensure_utc(now) if now else utcnow()
    with locked_unit_of_work(db, session_id):
        session = load_session_for_update(db, session_id)
        _check_owner(session, business_id)
        if session.status != SessionStatus.paused.value:
            raise InvalidStateError(
                f"Cannot resume session in status {session.status}.",
                details={"current_status": session.status},
            )
        before = session_state(session)
        paused_for = (now - ensure_utc(session.paused_at)).total_seconds() if session.paused_at else None
        transition(session, SessionStatus.in_progress, now)
        session.pause_reason = None
        audit_svc.append(
            db=db,
            event_type="session_resumed",
            session_id=session.id,
            actor_type=ActorType.business_user,
            actor_id=actor_id,
            before=before,
            after=session_state(session),
            metadata={"paused_seconds": paused_for},
            occurred_at=now,
        )

    logger.info("Session resumed: session=%s actor=%s", session_id, actor_id)
    return build_snapshot(session, now)
