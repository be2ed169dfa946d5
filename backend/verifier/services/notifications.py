"""Notification sink for auto-resolved batches: console mock (MAIL_ENABLED=False).

When MAIL_ENABLED is False, the message is written to the log instead of
being delivered. Set MAIL_ENABLED=True and pass a real sink to wire a
transport.
"""
import logging
import uuid
from typing import Any, Protocol

from verifier.core.config import settings
from verifier.core.exceptions import NotificationError

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify(self, business_id: uuid.UUID, summary: dict[str, Any]) -> None:
        """Deliver a message; raise on failure."""
        ...


class LogNotificationSink:
    """Default sink: logs the auto-resolution message."""

    def notify(self, business_id: uuid.UUID, summary: dict[str, Any]) -> None:
        subject = _subject(summary)
        if not settings.MAIL_ENABLED:
            logger.info(
                "\n"
                "=== VERIFICATION AUTO-RESOLUTION ===\n"
                "To: business %s\n"
                "Subject: %s\n"
                "Auto-approved: %s  Verified: %s/%s\n"
                "====================================",
                business_id,
                subject,
                summary.get("auto_approved_count", 0),
                summary.get("total_verified_count", 0),
                summary.get("total_transactions", 0),
            )
            return

        # Real transport path (not implemented in this sink)
        logger.warning(
            "MAIL_ENABLED=True but no mail transport is configured. "
            "Falling back to console log for business %s.",
            business_id,
        )
        logger.info("NOTIFICATION (unsent): business=%s subject=%s", business_id, subject)


def _subject(summary: dict[str, Any]) -> str:
    reason = summary.get("reason")
    if reason == "expired_unreviewed":
        return "Verification deadline passed: batch discarded"
    if reason == "already_completed":
        return "Verification batch finalized"
    return "Verification deadline passed: remaining transactions auto-approved"


def deliver(sink: NotificationSink, business_id: uuid.UUID, summary: dict[str, Any]) -> None:
    """Call the sink, normalising any failure into NotificationError."""
    try:
        sink.notify(business_id, summary)
    except NotificationError:
        raise
    except Exception as exc:
        raise NotificationError(f"Notification to business {business_id} failed: {exc}") from exc
