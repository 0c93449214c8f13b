"""
Requirement writes.

Every status write on a requirement is followed by an automatic transition
check on its application. Reversions (e.g. completed -> in_progress) are
allowed but logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from admit_track.errors import NotFound, ValidationFailed
from admit_track.tracker.models import ApplicationRequirement, RequirementStatus
from admit_track.tracker.progress import (
    ProgressSummary,
    RequirementProgress,
    RequirementProgressTracker,
)
from admit_track.tracker.status import AutoTransitionResult, StatusTransitionEngine
from admit_track.tracker.store import TrackerStore


logger = logging.getLogger(__name__)


@dataclass
class RequirementUpdate:
    requirement: ApplicationRequirement
    previous_status: RequirementStatus
    reverted: bool
    auto_transition: AutoTransitionResult


class RequirementService:
    """
    Update requirements and keep the application status in step.

    Usage:
        service = RequirementService(store, engine)
        update = service.update_status(req_id, RequirementStatus.COMPLETED, owner_id="stu-1")
        update.auto_transition.transitioned
    """

    def __init__(self, store: TrackerStore, engine: Optional[StatusTransitionEngine] = None) -> None:
        self.store = store
        self.engine = engine or StatusTransitionEngine(store)
        self.clock = store.clock

    def update_status(
        self,
        requirement_id: int,
        status: RequirementStatus,
        owner_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> RequirementUpdate:
        req = self._require(requirement_id, owner_id)
        previous = req.status
        reverted = status.rank < previous.rank
        if reverted:
            logger.warning(
                "Requirement #%s of application #%s reverted: %s -> %s",
                requirement_id, req.application_id, previous.value, status.value,
            )

        fields: dict = {"status": status}
        if notes is not None:
            fields["notes"] = notes
        updated = self.store.update_requirement(requirement_id, **fields)
        if updated is None:
            raise NotFound("Requirement", requirement_id)

        if status != previous:
            auto = self.engine.evaluate_auto_transition(updated.application_id)
        else:
            auto = AutoTransitionResult(transitioned=False)
        return RequirementUpdate(
            requirement=updated,
            previous_status=previous,
            reverted=reverted,
            auto_transition=auto,
        )

    def set_deadline(
        self,
        requirement_id: int,
        deadline: Optional[datetime],
        owner_id: Optional[str] = None,
    ) -> ApplicationRequirement:
        self._require(requirement_id, owner_id)
        updated = self.store.update_requirement(requirement_id, deadline=deadline)
        if updated is None:
            raise NotFound("Requirement", requirement_id)
        return updated

    def add_note(
        self,
        requirement_id: int,
        note: str,
        owner_id: Optional[str] = None,
    ) -> ApplicationRequirement:
        if not note or not note.strip():
            raise ValidationFailed("Note text is required")
        self._require(requirement_id, owner_id)
        updated = self.store.append_requirement_note(requirement_id, note.strip())
        if updated is None:
            raise NotFound("Requirement", requirement_id)
        return updated

    def generate_deadlines(
        self,
        application_id: int,
        owner_id: Optional[str] = None,
    ) -> list[ApplicationRequirement]:
        """Give every undated requirement a deadline offset from the application deadline."""
        app = self.store.get_application(application_id, owner_id)
        if app is None:
            raise NotFound("Application", application_id)
        updated = []
        for req in self.store.requirements_for(application_id):
            if req.deadline is not None:
                continue
            deadline = self.store.checklist.requirement_deadline(req.category, app.deadline)
            updated.append(self.store.update_requirement(req.id, deadline=deadline))
        return updated

    def summary(self, application_id: int, owner_id: Optional[str] = None) -> ProgressSummary:
        if self.store.get_application(application_id, owner_id) is None:
            raise NotFound("Application", application_id)
        return RequirementProgressTracker.summarize(
            self.store.requirements_for(application_id), self.clock.now()
        )

    def listing(self, application_id: int, owner_id: Optional[str] = None) -> list[RequirementProgress]:
        if self.store.get_application(application_id, owner_id) is None:
            raise NotFound("Application", application_id)
        return RequirementProgressTracker.details(
            self.store.requirements_for(application_id), self.clock.now()
        )

    def upcoming(self, student_id: str, days_ahead: int = 7) -> list[RequirementProgress]:
        """Incomplete requirements due between now and ``days_ahead`` days out."""
        now = self.clock.now()
        rows = self.store.open_requirements(student_id, now + timedelta(days=days_ahead))
        return [
            RequirementProgressTracker.detail(req, now)
            for req, _app in rows
            if req.deadline >= now
        ]

    def overdue(self, student_id: str) -> list[RequirementProgress]:
        now = self.clock.now()
        rows = self.store.open_requirements(student_id, now)
        return [
            RequirementProgressTracker.detail(req, now)
            for req, _app in rows
            if req.deadline < now
        ]

    def _require(self, requirement_id: int, owner_id: Optional[str]) -> ApplicationRequirement:
        req = self.store.get_requirement(requirement_id, owner_id)
        if req is None:
            raise NotFound("Requirement", requirement_id)
        return req
