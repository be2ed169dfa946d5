"""Deadline and urgency calculator.

Pure functions only. The dashboard countdown and the auto-approval sweep
both go through classify(), so urgency thresholds and overdue checks are
identical everywhere.
"""
import enum
from dataclasses import dataclass
from datetime import datetime, timedelta

from verifier.core.clock import ensure_utc, utcnow

# ─── Thresholds ───
CRITICAL_HOURS = 6
HIGH_HOURS = 24
MEDIUM_HOURS = 72


class UrgencyLevel(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    UrgencyLevel.low: 0,
    UrgencyLevel.medium: 1,
    UrgencyLevel.high: 2,
    UrgencyLevel.critical: 3,
}


@dataclass(frozen=True)
class DeadlineStatus:
    deadline: datetime
    seconds_remaining: int
    is_overdue: bool
    urgency_level: UrgencyLevel
    seconds_overdue: int = 0

    @property
    def hours_remaining(self) -> int:
        return self.seconds_remaining // 3600

    @property
    def minutes_remaining(self) -> int:
        return (self.seconds_remaining % 3600) // 60

    @property
    def is_urgent(self) -> bool:
        """Less than six hours left (or overdue)."""
        return self.is_overdue or self.seconds_remaining < CRITICAL_HOURS * 3600

    @property
    def formatted_time_remaining(self) -> str:
        if self.is_overdue:
            return f"{self.seconds_overdue // 3600}h overdue"
        hours = self.hours_remaining
        if hours >= 24:
            return f"{hours // 24}d {hours % 24}h"
        if hours >= 1:
            return f"{hours}h {self.minutes_remaining}m"
        return f"{self.minutes_remaining}m"

    @property
    def polling_interval_seconds(self) -> int:
        """How often a countdown client should refresh."""
        if self.seconds_remaining < 3600:
            return 10
        if self.seconds_remaining < CRITICAL_HOURS * 3600:
            return 30
        if self.seconds_remaining < HIGH_HOURS * 3600:
            return 60
        return 300

    @property
    def should_notify(self) -> bool:
        return (
            self.is_urgent
            or (self.urgency_level is UrgencyLevel.high and self.hours_remaining <= 12)
        )


def classify(deadline: datetime, now: datetime | None = None) -> DeadlineStatus:
    """Convert a deadline into remaining time and an urgency level.

    secondsRemaining = max(0, deadline - now); overdue iff now > deadline.
    Critical when overdue or under 6h, High under 24h, Medium under 72h,
    Low otherwise.
    """
    deadline = ensure_utc(deadline)
    now = ensure_utc(now) if now is not None else utcnow()

    delta = (deadline - now).total_seconds()
    is_overdue = now > deadline
    remaining = max(0, int(delta))
    overdue = max(0, int(-delta))

    if is_overdue or delta < CRITICAL_HOURS * 3600:
        level = UrgencyLevel.critical
    elif delta < HIGH_HOURS * 3600:
        level = UrgencyLevel.high
    elif delta < MEDIUM_HOURS * 3600:
        level = UrgencyLevel.medium
    else:
        level = UrgencyLevel.low

    return DeadlineStatus(
        deadline=deadline,
        seconds_remaining=remaining,
        is_overdue=is_overdue,
        urgency_level=level,
        seconds_overdue=overdue,
    )


def is_sweep_eligible(deadline: datetime, now: datetime, grace_hours: float = 0.0) -> bool:
    """True once the deadline (plus any grace period) has passed."""
    return classify(ensure_utc(deadline) + timedelta(hours=grace_hours), now).is_overdue


def default_deadline(now: datetime, window_days: int) -> datetime:
    """End of day (UTC), window_days after now."""
    day = ensure_utc(now) + timedelta(days=window_days)
    return day.replace(hour=23, minute=59, second=59, microsecond=999999)
