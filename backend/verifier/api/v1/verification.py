"""Verification session API endpoints.

All endpoints require a bearer JWT. Business users only ever see their own
business's sessions; ADMIN and AUDITOR operators see every business.

  GET  /verification/sessions                       active sessions
  GET  /verification/sessions/{id}                  snapshot + deadline status
  GET  /verification/sessions/{id}/transactions
  POST /verification/sessions/{id}/transactions/{tx_id}/decision
  POST /verification/sessions/{id}/decisions        bulk decision
  POST /verification/sessions/{id}/pause
  POST /verification/sessions/{id}/resume
  GET  /verification/sessions/{id}/deadline
  GET  /verification/sessions/{id}/audit
  GET  /verification/transactions/{tx_id}/audit
  GET  /verification/history                        finished sessions
  GET  /verification/urgency
"""
import logging
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from verifier.core.config import settings
from verifier.core.deps import ADMIN, AUDITOR, BUSINESS_USER, CurrentActor, require_role
from verifier.core.limiter import limiter
from verifier.db.session import get_db
from verifier.schemas.audit import AuditEntryOut, AuditTrailResponse
from verifier.schemas.verification import (
    BulkDecisionRequest,
    BulkDecisionResult,
    DeadlineStatusOut,
    DecisionRequest,
    PauseRequest,
    SessionHistoryResponse,
    SessionListResponse,
    SessionProgress,
    SessionSnapshot,
    TransactionListResponse,
    TransactionOut,
    UrgencyStatistics,
)
from verifier.services import workflow

logger = logging.getLogger(__name__)

router = APIRouter()

DbSession = Annotated[Session, Depends(get_db)]
Reader = Annotated[CurrentActor, Depends(require_role(BUSINESS_USER, ADMIN, AUDITOR))]
Reviewer = Annotated[CurrentActor, Depends(require_role(BUSINESS_USER))]


# ─── Sessions ───

@router.get(
    "/sessions",
    response_model=SessionListResponse,
    summary="List active verification sessions",
)
def list_sessions(db: DbSession, actor: Reader):
    """Non-terminal sessions, soonest deadline first."""
    items = workflow.list_active_sessions(db, business_id=actor.scope_business_id)
    return SessionListResponse(items=items, total=len(items))


@router.get(
    "/sessions/{session_id}",
    response_model=SessionSnapshot,
    summary="Get a verification session snapshot",
)
def get_session(session_id: uuid.UUID, db: DbSession, actor: Reader):
    return workflow.get_session(db, session_id, business_id=actor.scope_business_id)


@router.get(
    "/sessions/{session_id}/transactions",
    response_model=TransactionListResponse,
    summary="List a session's transactions in review order",
)
def list_transactions(
    session_id: uuid.UUID,
    db: DbSession,
    actor: Reader,
    pending_only: bool = Query(False, description="Only return transactions still awaiting a decision"),
):
    rows = workflow.list_session_transactions(
        db, session_id, pending_only=pending_only, business_id=actor.scope_business_id
    )
    return TransactionListResponse(
        items=[TransactionOut.model_validate(tx) for tx in rows],
        total=len(rows),
    )


@router.get(
    "/sessions/{session_id}/deadline",
    response_model=DeadlineStatusOut,
    summary="Countdown and urgency for a session's deadline",
)
def get_deadline(session_id: uuid.UUID, db: DbSession, actor: Reader):
    snapshot = workflow.get_session(db, session_id, business_id=actor.scope_business_id)
    return snapshot.deadline_status


# ─── Decisions ───

@router.post(
    "/sessions/{session_id}/transactions/{transaction_id}/decision",
    response_model=SessionProgress,
    summary="Approve or reject one transaction",
)
@limiter.limit(settings.DECISION_RATE_LIMIT)
def record_decision(
    request: Request,
    session_id: uuid.UUID,
    transaction_id: uuid.UUID,
    body: DecisionRequest,
    db: DbSession,
    actor: Reviewer,
):
    """Record a human decision. Identical retries return `replayed: true`."""
    return workflow.record_decision(
        db,
        session_id=session_id,
        transaction_id=transaction_id,
        decision=body.decision,
        actor_id=actor.user_id,
        reason=body.reason,
        note=body.note,
        business_id=actor.business_id,
    )


@router.post(
    "/sessions/{session_id}/decisions",
    response_model=BulkDecisionResult,
    summary="Apply one decision to several transactions",
)
@limiter.limit(settings.DECISION_RATE_LIMIT)
def record_bulk_decision(
    request: Request,
    session_id: uuid.UUID,
    body: BulkDecisionRequest,
    db: DbSession,
    actor: Reviewer,
):
    """Per-transaction outcomes; refused items do not block the rest."""
    return workflow.record_decisions(
        db,
        session_id=session_id,
        transaction_ids=body.transaction_ids,
        decision=body.decision,
        actor_id=actor.user_id,
        reason=body.reason,
        note=body.note,
        business_id=actor.business_id,
    )


@router.post(
    "/sessions/{session_id}/pause",
    response_model=SessionSnapshot,
    summary="Pause an in-progress session",
)
def pause_session(
    session_id: uuid.UUID,
    db: DbSession,
    actor: Reviewer,
    body: PauseRequest | None = None,
):
    return workflow.pause(
        db,
        session_id,
        actor_id=actor.user_id,
        reason=body.reason if body else None,
        business_id=actor.business_id,
    )


@router.post(
    "/sessions/{session_id}/resume",
    response_model=SessionSnapshot,
    summary="Resume a paused session",
)
def resume_session(session_id: uuid.UUID, db: DbSession, actor: Reviewer):
    return workflow.resume(db, session_id, actor_id=actor.user_id, business_id=actor.business_id)


# ─── Audit ───

@router.get(
    "/sessions/{session_id}/audit",
    response_model=AuditTrailResponse,
    summary="Audit trail for a session",
)
def session_audit_trail(
    session_id: uuid.UUID,
    db: DbSession,
    actor: Reader,
    start: Annotated[datetime | None, Query(description="Entries at or after (ISO 8601)")] = None,
    end: Annotated[datetime | None, Query(description="Entries at or before (ISO 8601)")] = None,
):
    entries = workflow.get_audit_trail(
        db, session_id=session_id, start=start, end=end, business_id=actor.scope_business_id
    )
    return AuditTrailResponse(
        items=[AuditEntryOut.model_validate(e) for e in entries],
        total=len(entries),
    )


@router.get(
    "/transactions/{transaction_id}/audit",
    response_model=AuditTrailResponse,
    summary="Audit trail for a single transaction",
)
def transaction_audit_trail(
    transaction_id: uuid.UUID,
    db: DbSession,
    actor: Reader,
    start: Annotated[datetime | None, Query()] = None,
    end: Annotated[datetime | None, Query()] = None,
):
    entries = workflow.get_audit_trail(
        db, transaction_id=transaction_id, start=start, end=end, business_id=actor.scope_business_id
    )
    return AuditTrailResponse(
        items=[AuditEntryOut.model_validate(e) for e in entries],
        total=len(entries),
    )


# ─── History ───

@router.get(
    "/history",
    response_model=SessionHistoryResponse,
    summary="Finished sessions with approval rates and deadline adherence",
)
def session_history(
    db: DbSession,
    actor: Reader,
    status: Annotated[str | None, Query(description="completed, auto_completed or expired")] = None,
    completed_from: Annotated[datetime | None, Query(description="Completed at or after (ISO 8601)")] = None,
    completed_to: Annotated[datetime | None, Query(description="Completed at or before (ISO 8601)")] = None,
):
    items = workflow.list_session_history(
        db,
        business_id=actor.scope_business_id,
        status=status,
        completed_from=completed_from,
        completed_to=completed_to,
    )
    return SessionHistoryResponse(items=items, total=len(items))


# ─── Urgency ───

@router.get(
    "/urgency",
    response_model=UrgencyStatistics,
    summary="Counts of active sessions by deadline urgency",
)
def urgency_statistics(db: DbSession, actor: Reader):
    return workflow.get_urgency_statistics(db, business_id=actor.scope_business_id)
