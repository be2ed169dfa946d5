"""Transaction decision store.

Owns per-transaction verification records. Every function takes a sync
SQLAlchemy Session and never commits; the workflow and sweep services own
the transaction and the per-session lock around these calls.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from verifier.core.clock import ensure_utc
from verifier.core.config import settings
from verifier.core.exceptions import AlreadyDecidedError, NotFoundError
from verifier.models.verification import Decision, VerificationTransaction

logger = logging.getLogger(__name__)


@dataclass
class DecisionCounts:
    approved: int = 0
    rejected: int = 0
    auto_approved: int = 0
    pending: int = 0

    @property
    def approved_total(self) -> int:
        """Human approvals plus auto-approvals."""
        return self.approved + self.auto_approved

    @property
    def verified(self) -> int:
        return self.approved_total + self.rejected

    @property
    def total(self) -> int:
        return self.verified + self.pending


@dataclass
class AppliedDecision:
    transaction: VerificationTransaction
    replayed: bool  # True when an identical retry was absorbed as a no-op
    before: dict


# ─── Reads ───

def get_transaction(db: Session, transaction_id: uuid.UUID) -> VerificationTransaction:
    """Load a transaction with fresh column values.

    Raises:
        NotFoundError: If no such transaction exists.
    """
    tx = db.execute(
        select(VerificationTransaction)
        .where(VerificationTransaction.id == transaction_id)
        .execution_options(populate_existing=True)
    ).scalars().first()
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found.")
    return tx


def get_pending(db: Session, session_id: uuid.UUID) -> list[VerificationTransaction]:
    """Pending transactions for a session in batch order.

    Ordering is by the immutable batch position, so concurrent decisions
    only ever remove rows from the list, never reorder it.
    """
    stmt = (
        select(VerificationTransaction)
        .where(
            VerificationTransaction.session_id == session_id,
            VerificationTransaction.decision == Decision.pending.value,
        )
        .order_by(VerificationTransaction.position.asc())
        .execution_options(populate_existing=True)
    )
    return list(db.execute(stmt).scalars().all())


def list_transactions(
    db: Session, session_id: uuid.UUID, pending_only: bool = False
) -> list[VerificationTransaction]:
    if pending_only:
        return get_pending(db, session_id)
    stmt = (
        select(VerificationTransaction)
        .where(VerificationTransaction.session_id == session_id)
        .order_by(VerificationTransaction.position.asc())
    )
    return list(db.execute(stmt).scalars().all())


def count_decisions(db: Session, session_id: uuid.UUID) -> DecisionCounts:
    """Group-by count of decisions for a session."""
    rows = db.execute(
        select(VerificationTransaction.decision, func.count(VerificationTransaction.id))
        .where(VerificationTransaction.session_id == session_id)
        .group_by(VerificationTransaction.decision)
    ).all()
    counts = DecisionCounts()
    for decision, n in rows:
        setattr(counts, Decision(decision).value, n)
    return counts


def first_pending(db: Session, session_id: uuid.UUID) -> VerificationTransaction | None:
    """Next transaction in review order, or None when all are decided."""
    return db.execute(
        select(VerificationTransaction)
        .where(
            VerificationTransaction.session_id == session_id,
            VerificationTransaction.decision == Decision.pending.value,
        )
        .order_by(VerificationTransaction.position.asc())
        .limit(1)
    ).scalars().first()


# ─── Writes ───

def add_transactions(db: Session, session_id: uuid.UUID, raw_transactions) -> list[VerificationTransaction]:
    """Insert the batch's transactions in Batch Store order."""
    rows = []
    for position, raw in enumerate(raw_transactions):
        tx = VerificationTransaction(
            session_id=session_id,
            external_transaction_id=raw.external_transaction_id,
            amount=Decimal(str(raw.amount)),
            store_reference=raw.store_reference,
            risk_score=raw.risk_score,
            position=position,
            decision=Decision.pending.value,
        )
        db.add(tx)
        rows.append(tx)
    db.flush()
    return rows


def snapshot(tx: VerificationTransaction) -> dict:
    return {
        "decision": tx.decision,
        "rejection_reason": tx.rejection_reason,
        "note": tx.note,
        "decided_at": tx.decided_at.isoformat() if tx.decided_at else None,
        "decided_by": tx.decided_by,
    }


def is_identical_retry(
    tx: VerificationTransaction,
    decision: str,
    actor_id: str,
    reason: str | None,
    note: str | None,
    now: datetime,
    window_seconds: int | None = None,
) -> bool:
    """True when an already-applied decision matches this request exactly.

    Same decision, same actor, same reason and note, and the original
    decision landed within the retry window.
    """
    if not tx.is_decided or tx.decided_at is None:
        return False
    if window_seconds is None:
        window_seconds = settings.DECISION_RETRY_WINDOW_SECONDS
    within_window = ensure_utc(now) - ensure_utc(tx.decided_at) <= timedelta(seconds=window_seconds)
    return (
        within_window
        and tx.decision == decision
        and tx.decided_by == actor_id
        and (tx.rejection_reason or None) == (reason or None)
        and (tx.note or None) == (note or None)
    )


def apply_decision(
    db: Session,
    tx: VerificationTransaction,
    decision: Decision | str,
    actor_id: str,
    now: datetime,
    reason: str | None = None,
    note: str | None = None,
) -> AppliedDecision:
    """Set a terminal decision on a pending transaction.

    Identical retries return the already-applied state with replayed=True.

    Raises:
        AlreadyDecidedError: If the transaction already carries a different decision.
    """
    decision = Decision(decision).value
    before = snapshot(tx)

    if tx.is_decided:
        if is_identical_retry(tx, decision, actor_id, reason, note, now):
            logger.info("Identical decision retry absorbed: tx=%s decision=%s", tx.id, decision)
            return AppliedDecision(transaction=tx, replayed=True, before=before)
        raise AlreadyDecidedError(
            f"Transaction {tx.id} has already been decided ({tx.decision}).",
            details={"existing_decision": tx.decision, "decided_at": before["decided_at"]},
        )

    tx.decision = decision
    tx.rejection_reason = reason if decision == Decision.rejected.value else None
    tx.note = note
    tx.decided_at = now
    tx.decided_by = actor_id
    db.flush()
    return AppliedDecision(transaction=tx, replayed=False, before=before)
