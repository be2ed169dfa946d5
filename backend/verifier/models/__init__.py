from verifier.models.verification import (
    ActorType,
    Decision,
    RejectionReason,
    SessionStatus,
    VerificationSession,
    VerificationTransaction,
)
from verifier.models.audit import VerificationAuditEntry

__all__ = [
    "ActorType", "Decision", "RejectionReason", "SessionStatus",
    "VerificationSession", "VerificationTransaction",
    "VerificationAuditEntry",
]
