"""Workflow error taxonomy.

Client-caused errors (NotFound, Forbidden, InvalidState, AlreadyDecided,
Validation) are surfaced verbatim and never retried automatically.
StorageError is transient and safe to retry with the same arguments.
NotificationError never propagates past the sweep.
"""


class WorkflowError(Exception):
    """Base class for every error raised by the verification engine."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        return self.message


class NotFoundError(WorkflowError):
    """Session or transaction does not exist."""

    status_code = 404


class ForbiddenError(WorkflowError):
    """Cross-session or cross-business access."""

    status_code = 403


class InvalidStateError(WorkflowError):
    """Operation not legal in the session's current status."""

    status_code = 409


class AlreadyDecidedError(WorkflowError):
    """Second, different decision on a transaction."""

    status_code = 409


class ValidationError(WorkflowError):
    """Missing or malformed decision input."""

    status_code = 422


class StorageError(WorkflowError):
    """Transient storage failure or timeout. Retryable."""

    status_code = 503
    retryable = True


class NotificationError(WorkflowError):
    """Notification sink failed. Logged and recorded, never propagated."""

    status_code = 502


class AuditImmutableError(WorkflowError):
    """Attempt to update or delete an audit entry."""

    status_code = 500
