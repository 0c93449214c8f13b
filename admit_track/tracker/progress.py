"""
Requirement progress aggregation.

Pure functions over requirement records; nothing here touches the store or
reads the wall clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from admit_track.tracker.deadlines import days_until
from admit_track.tracker.models import ApplicationRequirement, RequirementStatus


@dataclass(frozen=True)
class ProgressSummary:
    """Aggregate completion figures for one application's requirements."""

    total: int = 0
    completed: int = 0
    in_progress: int = 0
    not_started: int = 0
    overdue: int = 0
    completion_percentage: int = 0

    @property
    def any_started(self) -> bool:
        return self.in_progress > 0 or self.completed > 0

    @property
    def all_completed(self) -> bool:
        return self.total > 0 and self.completed == self.total

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "in_progress": self.in_progress,
            "not_started": self.not_started,
            "overdue": self.overdue,
            "completion_percentage": self.completion_percentage,
        }


@dataclass(frozen=True)
class RequirementProgress:
    """Per-requirement view used by listings."""

    requirement: ApplicationRequirement
    is_overdue: bool
    days_until_deadline: Optional[int]


def is_requirement_overdue(req: ApplicationRequirement, now: datetime) -> bool:
    if req.is_complete() or req.deadline is None:
        return False
    return req.deadline < now


def completion_percentage(completed: int, total: int) -> int:
    """Whole-number percentage, half rounded up; 0 when there is nothing to complete."""
    if total <= 0:
        return 0
    return int(completed * 100 / total + 0.5)


class RequirementProgressTracker:
    """
    Turn a set of requirements into progress figures.

    Usage:
        summary = RequirementProgressTracker.summarize(requirements, now)
        summary.completion_percentage
    """

    @staticmethod
    def summarize(
        requirements: Iterable[ApplicationRequirement],
        now: datetime,
    ) -> ProgressSummary:
        reqs = list(requirements)
        counts = {status: 0 for status in RequirementStatus}
        overdue = 0
        for req in reqs:
            counts[req.status] += 1
            if is_requirement_overdue(req, now):
                overdue += 1

        total = len(reqs)
        completed = counts[RequirementStatus.COMPLETED]
        return ProgressSummary(
            total=total,
            completed=completed,
            in_progress=counts[RequirementStatus.IN_PROGRESS],
            not_started=counts[RequirementStatus.NOT_STARTED],
            overdue=overdue,
            completion_percentage=completion_percentage(completed, total),
        )

    @staticmethod
    def detail(req: ApplicationRequirement, now: datetime) -> RequirementProgress:
        return RequirementProgress(
            requirement=req,
            is_overdue=is_requirement_overdue(req, now),
            days_until_deadline=days_until(req.deadline, now) if req.deadline else None,
        )

    @classmethod
    def details(
        cls,
        requirements: Iterable[ApplicationRequirement],
        now: datetime,
    ) -> list[RequirementProgress]:
        """Incomplete first, then by deadline (undated last), then creation order."""
        rows = [cls.detail(r, now) for r in requirements]
        rows.sort(key=lambda p: (
            p.requirement.status == RequirementStatus.COMPLETED,
            p.requirement.deadline is None,
            p.requirement.deadline or now,
            p.requirement.id or 0,
        ))
        return rows
