"""Per-session mutual exclusion.

Two layers guard every decision-mutating unit of work:

  1. An in-process lock keyed by session id, so threads of one worker (API
     threadpool, overlapping sweep runs) serialize on the same session.
  2. A SELECT ... FOR UPDATE row lock taken by load_session_for_update(), so
     separate processes serialize through the database.

Locks on different sessions never contend; there is no global lock held
while work runs.
"""
import logging
import threading
import uuid
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from verifier.core.config import settings
from verifier.core.exceptions import NotFoundError, StorageError, WorkflowError
from verifier.models.verification import VerificationSession

logger = logging.getLogger(__name__)


class SessionLockRegistry:
    """Reference-counted map of session id -> lock."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[uuid.UUID, list] = {}  # session_id -> [lock, holders]

    def _checkout(self, session_id: uuid.UUID) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(session_id)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[session_id] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, session_id: uuid.UUID) -> None:
        with self._guard:
            entry = self._locks.get(session_id)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] <= 0:
                del self._locks[session_id]

    @contextmanager
    def hold(self, session_id: uuid.UUID, timeout: float | None = None):
        """Hold the session's lock for the duration of the block.

        Raises:
            StorageError: If the lock cannot be acquired within timeout.
        """
        if timeout is None:
            timeout = settings.SESSION_LOCK_TIMEOUT_SECONDS
        lock = self._checkout(session_id)
        try:
            if not lock.acquire(timeout=timeout):
                raise StorageError(
                    f"Timed out after {timeout}s waiting for session {session_id}; retry the request."
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(session_id)

    def active_count(self) -> int:
        with self._guard:
            return len(self._locks)


session_locks = SessionLockRegistry()


@contextmanager
def locked_unit_of_work(db: Session, session_id: uuid.UUID, timeout: float | None = None):
    """Hold the session lock around one DB transaction.

    Commits when the block exits normally; rolls back on any error. Driver
    failures (timeouts, lost connections) become StorageError so callers can
    retry the same idempotent request.
    """
    with session_locks.hold(session_id, timeout=timeout):
        try:
            yield
            db.commit()
        except WorkflowError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"Storage failure while updating session {session_id}: {exc}") from exc
        except Exception:
            db.rollback()
            raise


def load_session_for_update(db: Session, session_id: uuid.UUID):
    """Load a VerificationSession with a row lock and fresh column values."""
    session = db.execute(
        select(VerificationSession)
        .where(VerificationSession.id == session_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().first()
    if session is None:
        raise NotFoundError(f"Verification session {session_id} not found.")
    return session
