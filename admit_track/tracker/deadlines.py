"""
Deadline urgency classification.

Maps "days until deadline" to an urgency tier. The thresholds are fixed
policy, not configuration:

    days <= 0     critical  (due today or already overdue)
    1 <= days <= 3  warning
    4 <= days <= 7  info
    days > 7      not surfaced as an alert
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional


class UrgencyTier(enum.Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


CRITICAL_MAX_DAYS = 0
WARNING_MAX_DAYS = 3
INFO_MAX_DAYS = 7


def days_until(deadline: datetime, now: datetime) -> int:
    """Signed calendar days from ``now`` to ``deadline``; 0 means due today."""
    return (deadline.date() - now.date()).days


def classify(days: int) -> Optional[UrgencyTier]:
    """Tier for a days-until value, or None when it is too far out to alert on."""
    if days <= CRITICAL_MAX_DAYS:
        return UrgencyTier.CRITICAL
    if days <= WARNING_MAX_DAYS:
        return UrgencyTier.WARNING
    if days <= INFO_MAX_DAYS:
        return UrgencyTier.INFO
    return None


def is_overdue(days: int) -> bool:
    return days < 0


class DeadlineUrgencyClassifier:
    """
    Classify deadlines against an instant.

    Usage:
        classifier = DeadlineUrgencyClassifier()
        tier = classifier.classify_deadline(deadline, clock.now())
    """

    def classify(self, days: int) -> Optional[UrgencyTier]:
        return classify(days)

    def classify_deadline(self, deadline: datetime, now: datetime) -> Optional[UrgencyTier]:
        return classify(days_until(deadline, now))

    def describe(self, days: int) -> str:
        if days < 0:
            overdue = abs(days)
            return f"{overdue} day{'s' if overdue != 1 else ''} overdue"
        if days == 0:
            return "due today"
        return f"due in {days} day{'s' if days != 1 else ''}"
