"""Auto-approval sweep for sessions past their deadline.

run_sweep_once() holds no timer state: Celery beat, cron or a test calls
it with an injected `now`. Each eligible session is resolved in its own DB
session, under its own lock, in one transaction, so a failure or a
shutdown between sessions never leaves a session half-updated. Running it
twice, or two runs overlapping, changes nothing the second time.
"""
import logging
import threading
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from verifier.core.clock import ensure_utc, utcnow
from verifier.core.config import settings
from verifier.core.exceptions import NotificationError, StorageError
from verifier.models.verification import (
    ACTIVE_STATUSES,
    SYSTEM_ACTOR,
    ActorType,
    Decision,
    SessionStatus,
    VerificationSession,
)
from verifier.schemas.verification import BatchResult, SweepSummary, completion_percentage
from verifier.services import audit as audit_svc
from verifier.services import decision_store
from verifier.services import deadline as deadline_svc
from verifier.services import notifications as notification_svc
from verifier.services.locks import load_session_for_update, locked_unit_of_work
from verifier.services.workflow import recount, session_state, transition

logger = logging.getLogger(__name__)

# ─── Outcome reasons ───
REASON_DEADLINE_EXPIRED = "deadline_expired"
REASON_ALREADY_COMPLETED = "already_completed"
REASON_EXPIRED_UNREVIEWED = "expired_unreviewed"


def find_eligible_sessions(
    db: Session, now: datetime, grace_hours: float = 0.0
) -> list[uuid.UUID]:
    """Ids of non-terminal sessions whose deadline (plus grace) has passed."""
    cutoff = now - timedelta(hours=grace_hours)
    rows = db.execute(
        select(VerificationSession.id, VerificationSession.deadline)
        .where(
            VerificationSession.status.in_(list(ACTIVE_STATUSES)),
            VerificationSession.deadline < cutoff,
        )
        .order_by(VerificationSession.deadline.asc())
    ).all()
    # Same predicate as the countdown, so "overdue" means one thing everywhere.
    return [
        session_id for session_id, deadline in rows
        if deadline_svc.is_sweep_eligible(deadline, now, grace_hours)
    ]


def resolve_session(
    db: Session,
    session_id: uuid.UUID,
    now: datetime,
    expire_unreviewed: bool = False,
) -> BatchResult:
    """Force-resolve one expired session. Commits on success.

    Returns a BatchResult; `audit_entries_written == 0` means the session was
    already terminal when the lock was taken (overlapping sweep) and nothing
    changed.
    """
    with locked_unit_of_work(db, session_id):
        session = load_session_for_update(db, session_id)
        result = BatchResult(
            session_id=session.id,
            batch_id=session.batch_id,
            business_id=session.business_id,
            success=True,
            processed_at=now,
        )

        if session.is_terminal:
            result.reason = REASON_ALREADY_COMPLETED
            result.final_status = session.status
            result.total_transactions = session.total_transactions
            result.total_verified_count = session.verified_count
            result.completion_percentage = completion_percentage(
                session.verified_count, session.total_transactions
            )
            return result

        before = session_state(session)
        pending = decision_store.get_pending(db, session.id)
        recount(db, session)
        written = 0

        if not pending and session.verified_count == session.total_transactions:
            # A human already decided everything; only bookkeeping is left.
            target = (
                SessionStatus.completed
                if session.status == SessionStatus.in_progress.value
                else SessionStatus.auto_completed
            )
            transition(session, target, now)
            event_type, reason = "session_finalized", REASON_ALREADY_COMPLETED

        elif expire_unreviewed and session.verified_count == 0:
            transition(session, SessionStatus.expired, now)
            event_type, reason = "session_expired", REASON_EXPIRED_UNREVIEWED

        else:
            for tx in pending:
                applied = decision_store.apply_decision(
                    db, tx, Decision.auto_approved,
                    actor_id=SYSTEM_ACTOR, now=now, note=settings.AUTO_APPROVAL_NOTE,
                )
                audit_svc.append(
                    db=db,
                    event_type="transaction_auto_approved",
                    session_id=session.id,
                    transaction_id=tx.id,
                    actor_type=ActorType.system,
                    actor_id=SYSTEM_ACTOR,
                    before=applied.before,
                    after=decision_store.snapshot(tx),
                    metadata={"reason": REASON_DEADLINE_EXPIRED},
                    occurred_at=now,
                )
                written += 1
            recount(db, session)
            result.auto_approved_count = len(pending)
            transition(session, SessionStatus.auto_completed, now)
            event_type, reason = "session_auto_completed", REASON_DEADLINE_EXPIRED

        audit_svc.append(
            db=db,
            event_type=event_type,
            session_id=session.id,
            actor_type=ActorType.system,
            actor_id=SYSTEM_ACTOR,
            before=before,
            after=session_state(session),
            metadata={
                "reason": reason,
                "auto_approved_count": result.auto_approved_count,
                "deadline": ensure_utc(session.deadline).isoformat(),
                "hours_overdue": deadline_svc.classify(session.deadline, now).seconds_overdue // 3600,
            },
            occurred_at=now,
        )
        written += 1

        result.reason = reason
        result.final_status = session.status
        result.total_transactions = session.total_transactions
        result.total_verified_count = session.verified_count
        result.completion_percentage = completion_percentage(
            session.verified_count, session.total_transactions
        )
        result.audit_entries_written = written

    logger.info(
        "Sweep resolved session=%s business=%s status=%s reason=%s auto_approved=%d",
        session_id, result.business_id, result.final_status, reason, result.auto_approved_count,
    )
    return result


def _record_notification_failure(db: Session, result: BatchResult, now: datetime) -> None:
    """Best-effort audit entry for a failed notification; never raises."""
    try:
        audit_svc.append(
            db=db,
            event_type="notification_failed",
            session_id=result.session_id,
            actor_type=ActorType.system,
            actor_id=SYSTEM_ACTOR,
            metadata={
                "notification_sent": False,
                "error": result.notification_error,
                "reason": result.reason,
            },
            occurred_at=now,
        )
        db.commit()
    except (SQLAlchemyError, StorageError) as exc:
        db.rollback()
        logger.error(
            "Could not record notification failure for session %s: %s", result.session_id, exc
        )


def _notify(db: Session, notifier, result: BatchResult, now: datetime) -> None:
    payload = result.model_dump(mode="json")
    try:
        notification_svc.deliver(notifier, result.business_id, payload)
        result.notification_sent = True
    except NotificationError as exc:
        result.notification_sent = False
        result.notification_error = str(exc)
        logger.warning(
            "Sweep notification failed for session=%s business=%s: %s",
            result.session_id, result.business_id, exc,
        )
        _record_notification_failure(db, result, now)


def run_sweep_once(
    session_factory=None,
    now: datetime | None = None,
    notifier=None,
    stop_event: threading.Event | None = None,
    grace_hours: float | None = None,
    expire_unreviewed: bool | None = None,
) -> SweepSummary:
    """Scan for expired sessions and force-resolve each one.

    Args:
        session_factory: Callable returning a new sync Session (defaults to SessionLocal).
        now: Sweep time; injectable for deterministic tests.
        notifier: NotificationSink; defaults to the logging sink.
        stop_event: When set, the sweep stops before the next session.
        grace_hours: Extra time after the deadline before a session is eligible.
        expire_unreviewed: Discard (expire) sessions nobody reviewed instead of
            auto-approving them.

    Returns:
        SweepSummary with per-session results. Per-session failures are
        counted and reported, never raised.
    """
    if session_factory is None:
        from verifier.db.session import SessionLocal
        session_factory = SessionLocal
    now = ensure_utc(now) if now else utcnow()
    notifier = notifier or notification_svc.LogNotificationSink()
    if grace_hours is None:
        grace_hours = settings.AUTO_APPROVAL_GRACE_PERIOD_HOURS
    if expire_unreviewed is None:
        expire_unreviewed = settings.EXPIRE_UNREVIEWED_SESSIONS

    summary = SweepSummary(started_at=now)

    with session_factory() as db:
        eligible = find_eligible_sessions(db, now, grace_hours)
    logger.info("run_sweep_once: %d eligible session(s) at %s", len(eligible), now.isoformat())

    for session_id in eligible:
        if stop_event is not None and stop_event.is_set():
            summary.cancelled = True
            logger.info("run_sweep_once: stop requested, %d session(s) left for next run",
                        len(eligible) - summary.processed_count)
            break

        summary.processed_count += 1
        with session_factory() as db:
            try:
                result = resolve_session(db, session_id, now, expire_unreviewed=expire_unreviewed)
            except Exception as exc:
                logger.exception("Sweep failed for session %s: %s", session_id, exc)
                summary.failure_count += 1
                summary.per_batch_results.append(
                    BatchResult(session_id=session_id, success=False, error=str(exc), processed_at=now)
                )
                continue

            if result.audit_entries_written > 0:
                _notify(db, notifier, result, now)

        summary.success_count += 1
        summary.total_auto_approved_transactions += result.auto_approved_count
        summary.per_batch_results.append(result)

    summary.finished_at = utcnow()
    logger.info(
        "run_sweep_once: complete, processed=%d success=%d failed=%d auto_approved=%d cancelled=%s",
        summary.processed_count, summary.success_count, summary.failure_count,
        summary.total_auto_approved_transactions, summary.cancelled,
    )
    return summary
