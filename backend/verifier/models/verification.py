import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from verifier.db.base import Base, TimestampMixin, UUIDMixin


class SessionStatus(str, enum.Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    paused = "paused"
    completed = "completed"
    auto_completed = "auto_completed"
    expired = "expired"


TERMINAL_STATUSES = frozenset({
    SessionStatus.completed.value,
    SessionStatus.auto_completed.value,
    SessionStatus.expired.value,
})
ACTIVE_STATUSES = frozenset({
    SessionStatus.not_started.value,
    SessionStatus.in_progress.value,
    SessionStatus.paused.value,
})


class Decision(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    auto_approved = "auto_approved"


class RejectionReason(str, enum.Enum):
    amount_mismatch = "amount_mismatch"
    customer_dispute = "customer_dispute"
    invalid_transaction = "invalid_transaction"
    duplicate_transaction = "duplicate_transaction"
    missing_documentation = "missing_documentation"
    quality_threshold_not_met = "quality_threshold_not_met"
    fraud_suspected = "fraud_suspected"
    technical_error = "technical_error"
    policy_violation = "policy_violation"
    other = "other"


class ActorType(str, enum.Enum):
    business_user = "business_user"
    system = "system"


SYSTEM_ACTOR = "system"


class VerificationSession(Base, UUIDMixin, TimestampMixin):
    """Stateful review of one weekly batch by one business."""

    __tablename__ = "verification_sessions"
    __table_args__ = (
        Index("ix_verification_sessions_status_deadline", "status", "deadline"),
    )

    business_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    batch_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=SessionStatus.not_started.value
    )  # not_started, in_progress, paused, completed, auto_completed, expired

    total_transactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    verified_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    approved_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejected_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pause_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pause_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    average_risk_score: Mapped[float | None] = mapped_column(Numeric(5, 2, asdecimal=False), nullable=True)

    transactions: Mapped[list["VerificationTransaction"]] = relationship(
        "VerificationTransaction",
        back_populates="session",
        order_by="VerificationTransaction.position",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class VerificationTransaction(Base, UUIDMixin, TimestampMixin):
    """One customer transaction awaiting a terminal decision."""

    __tablename__ = "verification_transactions"
    __table_args__ = (
        Index("ix_verification_transactions_session_decision", "session_id", "decision"),
        Index("ix_verification_transactions_session_position", "session_id", "position", unique=True),
    )

    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("verification_sessions.id", ondelete="CASCADE"), nullable=False
    )
    external_transaction_id: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    store_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    risk_score: Mapped[float | None] = mapped_column(Numeric(5, 2, asdecimal=False), nullable=True)

    decision: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Decision.pending.value
    )  # pending, approved, rejected, auto_approved
    rejection_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    session: Mapped["VerificationSession"] = relationship(
        "VerificationSession", back_populates="transactions"
    )

    @property
    def is_decided(self) -> bool:
        return self.decision != Decision.pending.value
