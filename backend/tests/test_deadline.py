"""Tests for the deadline and urgency calculator."""
from datetime import datetime, timedelta, timezone

import pytest

from verifier.services.deadline import (
    UrgencyLevel,
    classify,
    default_deadline,
    is_sweep_eligible,
)

DEADLINE = datetime(2026, 3, 9, 23, 59, 59, tzinfo=timezone.utc)


# ─── Thresholds ───────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "hours_left, expected",
    [
        (100, UrgencyLevel.low),
        (72, UrgencyLevel.low),
        (71.9, UrgencyLevel.medium),
        (24, UrgencyLevel.medium),
        (23.5, UrgencyLevel.high),
        (6, UrgencyLevel.high),
        (5.99, UrgencyLevel.critical),
        (0.1, UrgencyLevel.critical),
    ],
)
def test_urgency_thresholds(hours_left, expected):
    status = classify(DEADLINE, DEADLINE - timedelta(hours=hours_left))
    assert status.urgency_level is expected
    assert status.is_overdue is False


def test_overdue_is_critical_with_zero_remaining():
    status = classify(DEADLINE, DEADLINE + timedelta(hours=5, minutes=1))
    assert status.is_overdue is True
    assert status.urgency_level is UrgencyLevel.critical
    assert status.seconds_remaining == 0
    assert status.seconds_overdue == 5 * 3600 + 60
    assert status.formatted_time_remaining == "5h overdue"


def test_exactly_at_deadline_is_not_overdue():
    status = classify(DEADLINE, DEADLINE)
    assert status.is_overdue is False
    assert status.seconds_remaining == 0


def test_naive_datetimes_are_treated_as_utc():
    naive_deadline = DEADLINE.replace(tzinfo=None)
    status = classify(naive_deadline, DEADLINE - timedelta(hours=2))
    assert status.hours_remaining == 2
    assert status.deadline.tzinfo is not None


def test_monotonic_as_now_approaches_deadline():
    """Severity never decreases and remaining time never increases."""
    start = DEADLINE - timedelta(days=5)
    previous = None
    for step in range(0, 5 * 24 * 4 + 8):
        status = classify(DEADLINE, start + timedelta(minutes=15 * step))
        if previous is not None:
            assert status.urgency_level.severity >= previous.urgency_level.severity
            assert status.seconds_remaining <= previous.seconds_remaining
        previous = status


# ─── Derived countdown fields ─────────────────────────────────────────────────

def test_formatted_time_remaining():
    assert classify(DEADLINE, DEADLINE - timedelta(days=2, hours=3)).formatted_time_remaining == "2d 3h"
    assert classify(DEADLINE, DEADLINE - timedelta(hours=4, minutes=30)).formatted_time_remaining == "4h 30m"
    assert classify(DEADLINE, DEADLINE - timedelta(minutes=12)).formatted_time_remaining == "12m"


def test_polling_interval_tightens_near_deadline():
    far = classify(DEADLINE, DEADLINE - timedelta(days=2))
    day = classify(DEADLINE, DEADLINE - timedelta(hours=12))
    close = classify(DEADLINE, DEADLINE - timedelta(hours=3))
    last_hour = classify(DEADLINE, DEADLINE - timedelta(minutes=30))
    assert far.polling_interval_seconds == 300
    assert day.polling_interval_seconds == 60
    assert close.polling_interval_seconds == 30
    assert last_hour.polling_interval_seconds == 10


def test_is_urgent_and_should_notify():
    assert classify(DEADLINE, DEADLINE - timedelta(hours=5)).is_urgent is True
    assert classify(DEADLINE, DEADLINE - timedelta(hours=7)).is_urgent is False
    assert classify(DEADLINE, DEADLINE - timedelta(hours=10)).should_notify is True
    assert classify(DEADLINE, DEADLINE - timedelta(hours=20)).should_notify is False


# ─── Sweep eligibility and default deadline ───────────────────────────────────

def test_sweep_eligible_only_after_deadline():
    assert is_sweep_eligible(DEADLINE, DEADLINE) is False
    assert is_sweep_eligible(DEADLINE, DEADLINE + timedelta(seconds=1)) is True


def test_sweep_grace_period_delays_eligibility():
    assert is_sweep_eligible(DEADLINE, DEADLINE + timedelta(hours=1), grace_hours=2) is False
    assert is_sweep_eligible(DEADLINE, DEADLINE + timedelta(hours=3), grace_hours=2) is True


def test_default_deadline_is_end_of_day():
    now = datetime(2026, 3, 2, 9, 15, tzinfo=timezone.utc)
    deadline = default_deadline(now, 7)
    assert deadline.date() == datetime(2026, 3, 9).date()
    assert (deadline.hour, deadline.minute, deadline.second) == (23, 59, 59)
