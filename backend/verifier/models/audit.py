import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid, event
from sqlalchemy.orm import Mapped, mapped_column

from verifier.core.exceptions import AuditImmutableError
from verifier.db.base import Base, UUIDMixin


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationAuditEntry(Base, UUIDMixin):
    """Immutable audit trail for every session/transaction state change."""

    __tablename__ = "verification_audit_entries"
    __table_args__ = (
        Index("ix_verification_audit_entries_session_occurred", "session_id", "occurred_at"),
    )

    session_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("verification_sessions.id"), nullable=True
    )
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("verification_transactions.id"), nullable=True, index=True
    )
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)  # business_user, system
    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_state: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON snapshot
    after_state: Mapped[str | None] = mapped_column(Text, nullable=True)   # JSON snapshot
    event_metadata: Mapped[str | None] = mapped_column("metadata", Text, nullable=True)  # JSON
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )


@event.listens_for(VerificationAuditEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise AuditImmutableError(f"Audit entry {target.id} is append-only and cannot be updated.")


@event.listens_for(VerificationAuditEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AuditImmutableError(f"Audit entry {target.id} is append-only and cannot be deleted.")
