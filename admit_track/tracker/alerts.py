"""
Deadline alert aggregation.

Merges application deadlines and requirement deadlines into one list per
student, classified by urgency. Alerts are derived on every call and never
stored, so they always reflect the latest requirement edits.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator, Optional

from admit_track.errors import ValidationFailed
from admit_track.tracker.deadlines import (
    DeadlineUrgencyClassifier,
    UrgencyTier,
    classify,
    days_until,
    is_overdue,
)
from admit_track.tracker.models import SourceType
from admit_track.tracker.store import TrackerStore


MIN_WINDOW_DAYS = 1
MAX_WINDOW_DAYS = 365

_classifier = DeadlineUrgencyClassifier()


def _check_window(window_days: int) -> None:
    if not MIN_WINDOW_DAYS <= window_days <= MAX_WINDOW_DAYS:
        raise ValidationFailed(
            f"window_days must be between {MIN_WINDOW_DAYS} and {MAX_WINDOW_DAYS}, got {window_days}"
        )


@dataclass
class DeadlineAlert:
    """A deadline with its computed urgency. Never persisted."""

    source_type: SourceType
    source_id: int
    application_id: int
    student_id: str
    title: str
    university: str
    deadline: datetime
    days_until: int
    tier: UrgencyTier

    @property
    def is_overdue(self) -> bool:
        return is_overdue(self.days_until)

    @property
    def bucket(self) -> str:
        """Dedup bucket: the calendar date being alerted on."""
        return self.deadline.date().isoformat()

    def to_dict(self) -> dict:
        return {
            "source_type": self.source_type.value,
            "source_id": self.source_id,
            "application_id": self.application_id,
            "student_id": self.student_id,
            "title": self.title,
            "university": self.university,
            "deadline": self.deadline.isoformat(),
            "days_until": self.days_until,
            "tier": self.tier.value,
        }

    def format_text(self) -> str:
        prefix = f"[{self.tier.value.upper()}]"
        when = _classifier.describe(self.days_until)
        return (
            f"{prefix} {self.title} ({self.source_type.value} #{self.source_id})\n"
            f"  {when}, deadline {self.deadline.strftime('%Y-%m-%d')}\n"
        )


@dataclass
class AlertReport:
    alerts: list[DeadlineAlert]
    critical: int
    warning: int
    info: int

    @property
    def total(self) -> int:
        return len(self.alerts)

    def to_dict(self) -> dict:
        return {
            "alerts": [a.to_dict() for a in self.alerts],
            "summary": {
                "total": self.total,
                "critical": self.critical,
                "warning": self.warning,
                "info": self.info,
            },
        }


class DeadlineAlertAggregator:
    """
    Collect and classify a student's upcoming and missed deadlines.

    Usage:
        aggregator = DeadlineAlertAggregator(store)
        alerts = aggregator.collect("stu-1", window_days=7)
    """

    def __init__(self, store: TrackerStore, clock=None) -> None:
        self.store = store
        self.clock = clock or store.clock

    def collect(
        self,
        student_id: str,
        window_days: int,
        include_requirements: bool = True,
        now: Optional[datetime] = None,
    ) -> list[DeadlineAlert]:
        """
        Alerts for every non-decided application and every incomplete
        requirement with a deadline at most ``window_days`` calendar days out,
        including ones already past. Deadlines too far out to classify are
        dropped. Sorted ascending by deadline.
        """
        now = now or self.clock.now()
        # whole calendar days, so include everything up to the end of the last day
        until = datetime.combine(now.date() + timedelta(days=window_days + 1), datetime.min.time())
        alerts: list[DeadlineAlert] = []

        for app in self.store.open_applications(student_id, until):
            alert = self._make_alert(
                SourceType.APPLICATION, app.id, app, f"{app.university} Application",
                app.deadline, now, window_days,
            )
            if alert is not None:
                alerts.append(alert)

        if include_requirements:
            for req, app in self.store.open_requirements(student_id, until):
                alert = self._make_alert(
                    SourceType.REQUIREMENT, req.id, app, f"{req.title} - {app.university}",
                    req.deadline, now, window_days,
                )
                if alert is not None:
                    alerts.append(alert)

        alerts.sort(key=lambda a: (a.deadline, a.source_type.value, a.source_id))
        return alerts

    def report(
        self,
        student_id: str,
        window_days: int = 30,
        include_requirements: bool = True,
    ) -> AlertReport:
        """Validated entry point for alert reads: alerts plus tier counts."""
        _check_window(window_days)
        if not student_id:
            raise ValidationFailed("student_id is required")
        alerts = self.collect(student_id, window_days, include_requirements)
        return AlertReport(
            alerts=alerts,
            critical=sum(1 for a in alerts if a.tier == UrgencyTier.CRITICAL),
            warning=sum(1 for a in alerts if a.tier == UrgencyTier.WARNING),
            info=sum(1 for a in alerts if a.tier == UrgencyTier.INFO),
        )

    def collect_all(
        self,
        window_days: int,
        include_requirements: bool = True,
    ) -> Iterator[tuple[str, list[DeadlineAlert]]]:
        """Yield (student_id, alerts) for every student, all against one instant."""
        _check_window(window_days)
        now = self.clock.now()
        for student_id in self.store.student_ids():
            yield student_id, self.collect(student_id, window_days, include_requirements, now=now)

    @staticmethod
    def _make_alert(
        source_type: SourceType,
        source_id: int,
        app,
        title: str,
        deadline: datetime,
        now: datetime,
        window_days: int,
    ) -> Optional[DeadlineAlert]:
        days = days_until(deadline, now)
        if days > window_days:
            return None
        tier = classify(days)
        if tier is None:
            return None
        return DeadlineAlert(
            source_type=source_type,
            source_id=source_id,
            application_id=app.id,
            student_id=app.student_id,
            title=title,
            university=app.university,
            deadline=deadline,
            days_until=days,
            tier=tier,
        )
