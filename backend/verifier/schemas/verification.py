"""Pydantic schemas for verification session API endpoints and service results."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from verifier.models.verification import RejectionReason
from verifier.services.deadline import DeadlineStatus, UrgencyLevel


def completion_percentage(verified: int, total: int) -> int:
    if total <= 0:
        return 100
    return round(verified * 100 / total)


# ─── Transactions ───

class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    session_id: uuid.UUID
    external_transaction_id: str
    amount: Decimal
    store_reference: str | None
    position: int
    risk_score: float | None = None
    decision: str
    rejection_reason: str | None
    note: str | None
    decided_at: datetime | None
    decided_by: str | None


class NextTransaction(BaseModel):
    id: uuid.UUID
    position: int
    external_transaction_id: str
    amount: Decimal


class TransactionListResponse(BaseModel):
    items: list[TransactionOut]
    total: int


# ─── Deadline ───

class DeadlineStatusOut(BaseModel):
    deadline: datetime
    seconds_remaining: int
    hours_remaining: int
    minutes_remaining: int
    is_overdue: bool
    is_urgent: bool
    urgency_level: UrgencyLevel
    formatted_time_remaining: str
    polling_interval_seconds: int

    @classmethod
    def from_status(cls, status: DeadlineStatus) -> "DeadlineStatusOut":
        return cls(
            deadline=status.deadline,
            seconds_remaining=status.seconds_remaining,
            hours_remaining=status.hours_remaining,
            minutes_remaining=status.minutes_remaining,
            is_overdue=status.is_overdue,
            is_urgent=status.is_urgent,
            urgency_level=status.urgency_level,
            formatted_time_remaining=status.formatted_time_remaining,
            polling_interval_seconds=status.polling_interval_seconds,
        )


# ─── Sessions ───

class SessionProgress(BaseModel):
    session_id: uuid.UUID
    batch_id: uuid.UUID
    business_id: uuid.UUID
    status: str
    total_transactions: int
    verified_count: int
    approved_count: int
    rejected_count: int
    pending_count: int
    current_index: int
    completion_percentage: int
    session_completed: bool
    replayed: bool = False
    next_transaction: NextTransaction | None = None


class SessionSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    business_id: uuid.UUID
    batch_id: uuid.UUID
    status: str
    total_transactions: int
    verified_count: int
    approved_count: int
    rejected_count: int
    current_index: int
    deadline: datetime
    started_at: datetime | None
    completed_at: datetime | None
    paused_at: datetime | None
    pause_count: int
    average_risk_score: float | None
    created_at: datetime

    # Derived fields (populated by the service layer)
    pending_count: int = 0
    completion_percentage: int = 0
    can_pause: bool = False
    can_resume: bool = False
    deadline_status: DeadlineStatusOut | None = None


class SessionListResponse(BaseModel):
    items: list[SessionProgress]
    total: int


class UrgencyStatistics(BaseModel):
    total_active: int
    critical: int
    urgent: int
    overdue: int


class SessionHistoryItem(BaseModel):
    session_id: uuid.UUID
    batch_id: uuid.UUID
    business_id: uuid.UUID
    status: str
    total_transactions: int
    approved_count: int  # human approvals only
    rejected_count: int
    auto_approved_count: int
    approval_rate: float
    rejection_rate: float
    auto_approval_rate: float
    deadline: datetime
    started_at: datetime | None
    completed_at: datetime | None
    deadline_met: bool


class SessionHistoryResponse(BaseModel):
    items: list[SessionHistoryItem]
    total: int


# ─── Requests ───

class DecisionRequest(BaseModel):
    decision: Literal["approved", "rejected"]
    reason: RejectionReason | None = None
    note: str | None = Field(default=None, max_length=1000)


class BulkDecisionRequest(BaseModel):
    transaction_ids: list[uuid.UUID] = Field(min_length=1)
    decision: Literal["approved", "rejected"]
    reason: RejectionReason | None = None
    note: str | None = Field(default=None, max_length=1000)


class PauseRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class DecisionOutcome(BaseModel):
    transaction_id: uuid.UUID
    success: bool
    replayed: bool = False
    error: str | None = None  # exception class name, e.g. AlreadyDecidedError
    message: str | None = None


class BulkDecisionResult(BaseModel):
    processed: int
    failed: int
    outcomes: list[DecisionOutcome]
    progress: SessionProgress


# ─── Sweep ───

class BatchResult(BaseModel):
    session_id: uuid.UUID
    batch_id: uuid.UUID | None = None
    business_id: uuid.UUID | None = None
    success: bool
    reason: str | None = None  # deadline_expired, already_completed, expired_unreviewed
    final_status: str | None = None
    total_transactions: int = 0
    auto_approved_count: int = 0
    total_verified_count: int = 0
    completion_percentage: int = 0
    audit_entries_written: int = 0
    notification_sent: bool = False
    notification_error: str | None = None
    error: str | None = None
    processed_at: datetime


class SweepSummary(BaseModel):
    processed_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_auto_approved_transactions: int = 0
    per_batch_results: list[BatchResult] = Field(default_factory=list)
    cancelled: bool = False
    started_at: datetime
    finished_at: datetime | None = None
