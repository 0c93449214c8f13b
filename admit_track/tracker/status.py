"""
Application status state machine.

    not_started -> in_progress -> submitted -> under_review -> decided

Manual requests may advance exactly one step; nothing moves backwards and
nothing leaves ``decided``. Automatic transitions are driven by requirement
progress and never go past ``submitted``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from admit_track.errors import InvalidTransition, NotFound, ValidationFailed
from admit_track.notifications.messages import MessageRenderer
from admit_track.tracker.models import (
    SYSTEM_ACTOR,
    Application,
    ApplicationStatus,
    DecisionOutcome,
    NotificationKind,
    SourceType,
)
from admit_track.tracker.progress import ProgressSummary, RequirementProgressTracker
from admit_track.tracker.store import TrackerStore


logger = logging.getLogger(__name__)


NOTE_AUTO_STARTED = "auto-advanced: requirements started"
NOTE_AUTO_COMPLETED = "auto-advanced: all requirements completed"


@dataclass(frozen=True)
class StatusInfo:
    label: str
    color: str
    description: str
    icon: str


STATUS_INFO: dict[ApplicationStatus, StatusInfo] = {
    ApplicationStatus.NOT_STARTED: StatusInfo(
        label="Not Started",
        color="gray",
        description="Application has been created but work has not begun",
        icon="circle",
    ),
    ApplicationStatus.IN_PROGRESS: StatusInfo(
        label="In Progress",
        color="blue",
        description="Currently working on application requirements",
        icon="clock",
    ),
    ApplicationStatus.SUBMITTED: StatusInfo(
        label="Submitted",
        color="green",
        description="Application has been submitted to the university",
        icon="check",
    ),
    ApplicationStatus.UNDER_REVIEW: StatusInfo(
        label="Under Review",
        color="yellow",
        description="University is reviewing the application",
        icon="eye",
    ),
    ApplicationStatus.DECIDED: StatusInfo(
        label="Decision Received",
        color="purple",
        description="University has made a decision on the application",
        icon="flag",
    ),
}


def get_status_info(status: ApplicationStatus) -> StatusInfo:
    return STATUS_INFO[status]


def next_statuses(status: ApplicationStatus) -> list[ApplicationStatus]:
    """Statuses reachable from ``status`` by one manual step."""
    nxt = status.next()
    return [nxt] if nxt is not None else []


def validate_transition(current: ApplicationStatus, target: ApplicationStatus) -> None:
    allowed = next_statuses(current)
    if target not in allowed:
        raise InvalidTransition(current, target, allowed)


@dataclass
class AutoTransitionResult:
    """Outcome of an automatic transition check."""

    transitioned: bool
    new_status: Optional[ApplicationStatus] = None
    steps: list[tuple[ApplicationStatus, ApplicationStatus]] = field(default_factory=list)
    progress: Optional[ProgressSummary] = None

    def to_dict(self) -> dict:
        return {
            "transitioned": self.transitioned,
            "new_status": self.new_status.value if self.new_status else None,
            "steps": [[a.value, b.value] for a, b in self.steps],
        }


class StatusTransitionEngine:
    """
    Validate and apply status transitions.

    Usage:
        engine = StatusTransitionEngine(store)
        app = engine.request_transition(app_id, "counselor-7", ApplicationStatus.UNDER_REVIEW)
        result = engine.evaluate_auto_transition(app_id)
    """

    def __init__(
        self,
        store: TrackerStore,
        clock=None,
        renderer: Optional[MessageRenderer] = None,
    ) -> None:
        self.store = store
        self.clock = clock or store.clock
        self.renderer = renderer or MessageRenderer()

    # ---- Manual ----

    def request_transition(
        self,
        application_id: int,
        actor_id: str,
        target_status: ApplicationStatus,
        notes: Optional[str] = None,
        owner_id: Optional[str] = None,
        decision: Optional[DecisionOutcome] = None,
    ) -> Application:
        """
        Advance an application by one step on behalf of ``actor_id``.

        Raises NotFound, InvalidTransition or ValidationFailed. The status
        update and its history entry are written atomically.
        """
        if not actor_id:
            raise ValidationFailed("actor_id is required")
        if decision is not None and target_status != ApplicationStatus.DECIDED:
            raise ValidationFailed("A decision can only be recorded when moving to 'decided'")
        if target_status == ApplicationStatus.DECIDED and decision is None:
            raise ValidationFailed("Moving to 'decided' requires a decision outcome")

        app = self._require(application_id, owner_id)
        current = app.status
        validate_transition(current, target_status)

        notification = None
        if actor_id != app.student_id:
            notification = self._status_notification(app, current, target_status, decision)

        entry = self.store.apply_transition(
            application_id,
            expected=current,
            target=target_status,
            changed_by=actor_id,
            notes=notes,
            decision=decision,
            notification=notification,
        )
        if entry is None:
            # another writer moved it between our read and our write
            fresh = self._require(application_id, owner_id)
            raise InvalidTransition(fresh.status, target_status, next_statuses(fresh.status))

        logger.info(
            "Application #%s: %s -> %s by %s",
            application_id, current.value, target_status.value, actor_id,
        )
        return self._require(application_id, owner_id)

    def _status_notification(
        self,
        app: Application,
        current: ApplicationStatus,
        target: ApplicationStatus,
        decision: Optional[DecisionOutcome],
    ) -> dict:
        if target == ApplicationStatus.DECIDED and decision is not None:
            kind = NotificationKind.DECISION_RECEIVED
            msg = self.renderer.decision_received(app.university, decision.value)
        else:
            kind = NotificationKind.STATUS_UPDATE
            msg = self.renderer.status_update(app.university, current.value, target.value)
        return {
            "recipient_id": app.student_id,
            "kind": kind,
            "source_type": SourceType.APPLICATION,
            "source_id": app.id,
            "title": msg.title,
            "message": msg.message,
        }

    # ---- Automatic ----

    def evaluate_auto_transition(
        self,
        application_id: int,
        owner_id: Optional[str] = None,
    ) -> AutoTransitionResult:
        """
        Apply whatever automatic transitions the current requirement progress
        allows, one step at a time.

        Safe to call repeatedly and concurrently: every step is a
        compare-and-set against the persisted status, and a lost race is a
        no-op rather than an error.
        """
        app = self._require(application_id, owner_id)
        result = AutoTransitionResult(transitioned=False)

        while True:
            progress = RequirementProgressTracker.summarize(
                self.store.requirements_for(application_id), self.clock.now()
            )
            result.progress = progress
            step = self._auto_step(app, progress)
            if step is None:
                break
            target, note = step
            entry = self.store.apply_transition(
                application_id,
                expected=app.status,
                target=target,
                changed_by=SYSTEM_ACTOR,
                notes=note,
            )
            if entry is None:
                break
            logger.info(
                "Application #%s auto-advanced: %s -> %s",
                application_id, app.status.value, target.value,
            )
            result.steps.append((app.status, target))
            app = self._require(application_id, owner_id)

        if result.steps:
            result.transitioned = True
            result.new_status = result.steps[-1][1]
        return result

    @staticmethod
    def _auto_step(
        app: Application, progress: ProgressSummary
    ) -> Optional[tuple[ApplicationStatus, str]]:
        if app.status == ApplicationStatus.NOT_STARTED and progress.any_started:
            return ApplicationStatus.IN_PROGRESS, NOTE_AUTO_STARTED
        if (
            app.status == ApplicationStatus.IN_PROGRESS
            and progress.all_completed
            and app.submission_confirmed
        ):
            return ApplicationStatus.SUBMITTED, NOTE_AUTO_COMPLETED
        return None

    def confirm_submission(
        self,
        application_id: int,
        owner_id: Optional[str] = None,
    ) -> AutoTransitionResult:
        """Record the external submission signal, then re-evaluate."""
        if self.store.confirm_submission(application_id, owner_id) is None:
            raise NotFound("Application", application_id)
        return self.evaluate_auto_transition(application_id, owner_id)

    # ---- Lookups ----

    def get_status_info(self, status: ApplicationStatus) -> StatusInfo:
        return get_status_info(status)

    def next_statuses(self, status: ApplicationStatus) -> list[ApplicationStatus]:
        return next_statuses(status)

    def _require(self, application_id: int, owner_id: Optional[str]) -> Application:
        app = self.store.get_application(application_id, owner_id)
        if app is None:
            raise NotFound("Application", application_id)
        return app
