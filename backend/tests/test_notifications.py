"""Tests for the notification sink wrapper."""
import logging
import uuid
from unittest.mock import MagicMock

import pytest

from verifier.core.exceptions import NotificationError
from verifier.services.notifications import LogNotificationSink, deliver


def test_deliver_passes_summary_to_sink():
    sink = MagicMock()
    business_id = uuid.uuid4()
    deliver(sink, business_id, {"reason": "deadline_expired"})
    sink.notify.assert_called_once_with(business_id, {"reason": "deadline_expired"})


def test_deliver_wraps_sink_failures():
    sink = MagicMock()
    sink.notify.side_effect = ConnectionError("relay refused")
    with pytest.raises(NotificationError, match="relay refused"):
        deliver(sink, uuid.uuid4(), {})


def test_log_sink_writes_message(caplog):
    business_id = uuid.uuid4()
    with caplog.at_level(logging.INFO, logger="verifier.services.notifications"):
        LogNotificationSink().notify(
            business_id,
            {"reason": "deadline_expired", "auto_approved_count": 4, "total_verified_count": 10, "total_transactions": 10},
        )
    assert str(business_id) in caplog.text
    assert "auto-approved" in caplog.text
