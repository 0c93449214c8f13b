"""
Tests for the status state machine, automatic transitions and requirement writes.
"""

from datetime import datetime, timedelta

import pytest

from admit_track.clock import FixedClock
from admit_track.errors import InvalidTransition, NotFound, ValidationFailed
from admit_track.tracker import (
    SYSTEM_ACTOR,
    ApplicationStatus,
    ApplicationTrack,
    DecisionOutcome,
    NotificationKind,
    RequirementCategory,
    RequirementService,
    RequirementStatus,
    StatusHistoryLog,
    StatusTransitionEngine,
    TrackerStore,
)
from admit_track.tracker.status import (
    NOTE_AUTO_COMPLETED,
    NOTE_AUTO_STARTED,
    get_status_info,
    next_statuses,
)


NOW = datetime(2026, 1, 10, 9, 0)


class _TrackerCase:
    def setup_method(self):
        self.clock = FixedClock(NOW)
        self.store = TrackerStore("sqlite:///:memory:", clock=self.clock)
        self.engine = StatusTransitionEngine(self.store)
        self.service = RequirementService(self.store, self.engine)
        self.log = StatusHistoryLog(self.store)
        self.app = self.store.create_application(
            "stu-1",
            "Example University",
            ApplicationTrack.REGULAR,
            deadline=NOW + timedelta(days=30),
            seed_requirements=False,
        )
        self.reqs = [
            self.store.add_requirement(self.app.id, RequirementCategory.ESSAY, "Personal Statement"),
            self.store.add_requirement(self.app.id, RequirementCategory.TRANSCRIPT, "Transcript"),
            self.store.add_requirement(self.app.id, RequirementCategory.RECOMMENDATION, "Letters"),
        ]

    def _status(self) -> ApplicationStatus:
        return self.store.get_application(self.app.id).status

    def _complete_all(self):
        for req in self.reqs:
            self.service.update_status(req.id, RequirementStatus.COMPLETED)

    def _advance_to(self, target: ApplicationStatus, actor: str = "stu-1"):
        while self._status() != target:
            nxt = self._status().next()
            decision = DecisionOutcome.ACCEPTED if nxt == ApplicationStatus.DECIDED else None
            self.engine.request_transition(self.app.id, actor, nxt, decision=decision)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class TestStatusLookups:
    def test_next_statuses_is_single_forward_step(self):
        assert next_statuses(ApplicationStatus.NOT_STARTED) == [ApplicationStatus.IN_PROGRESS]
        assert next_statuses(ApplicationStatus.UNDER_REVIEW) == [ApplicationStatus.DECIDED]
        assert next_statuses(ApplicationStatus.DECIDED) == []

    def test_status_info_covers_every_status(self):
        for status in ApplicationStatus:
            info = get_status_info(status)
            assert info.label
            assert info.color
        assert get_status_info(ApplicationStatus.DECIDED).label == "Decision Received"


# ---------------------------------------------------------------------------
# Manual transitions
# ---------------------------------------------------------------------------

class TestManualTransitions(_TrackerCase):
    def test_single_step_forward(self):
        app = self.engine.request_transition(self.app.id, "stu-1", ApplicationStatus.IN_PROGRESS)
        assert app.status == ApplicationStatus.IN_PROGRESS
        entries = self.log.history(self.app.id)
        assert len(entries) == 2
        assert entries[-1].from_status == ApplicationStatus.NOT_STARTED
        assert entries[-1].to_status == ApplicationStatus.IN_PROGRESS
        assert entries[-1].changed_by == "stu-1"

    def test_skip_rejected_without_writes(self):
        with pytest.raises(InvalidTransition) as exc:
            self.engine.request_transition(self.app.id, "stu-1", ApplicationStatus.SUBMITTED)
        assert "in_progress" in str(exc.value)
        assert self._status() == ApplicationStatus.NOT_STARTED
        assert len(self.log.history(self.app.id)) == 1

    def test_backwards_rejected(self):
        self._advance_to(ApplicationStatus.SUBMITTED)
        with pytest.raises(InvalidTransition):
            self.engine.request_transition(self.app.id, "stu-1", ApplicationStatus.IN_PROGRESS)
        assert self._status() == ApplicationStatus.SUBMITTED

    def test_same_status_rejected(self):
        with pytest.raises(InvalidTransition):
            self.engine.request_transition(self.app.id, "stu-1", ApplicationStatus.NOT_STARTED)

    def test_decided_is_terminal(self):
        self._advance_to(ApplicationStatus.DECIDED)
        for target in ApplicationStatus:
            decision = DecisionOutcome.REJECTED if target == ApplicationStatus.DECIDED else None
            with pytest.raises(InvalidTransition):
                self.engine.request_transition(self.app.id, "stu-1", target, decision=decision)
        assert self._status() == ApplicationStatus.DECIDED

    def test_decided_requires_decision(self):
        self._advance_to(ApplicationStatus.UNDER_REVIEW)
        with pytest.raises(ValidationFailed):
            self.engine.request_transition(self.app.id, "counselor-7", ApplicationStatus.DECIDED)
        assert self._status() == ApplicationStatus.UNDER_REVIEW

    def test_decision_only_with_decided(self):
        with pytest.raises(ValidationFailed):
            self.engine.request_transition(
                self.app.id, "stu-1", ApplicationStatus.IN_PROGRESS,
                decision=DecisionOutcome.ACCEPTED,
            )

    def test_decision_recorded_and_notified(self):
        self._advance_to(ApplicationStatus.UNDER_REVIEW)
        app = self.engine.request_transition(
            self.app.id, "counselor-7", ApplicationStatus.DECIDED,
            decision=DecisionOutcome.WAITLISTED, notes="Letter received",
        )
        assert app.status == ApplicationStatus.DECIDED
        assert app.decision == DecisionOutcome.WAITLISTED

        notes = self.store.list_notifications("stu-1")
        assert len(notes) == 1
        assert notes[0].kind == NotificationKind.DECISION_RECEIVED
        assert "waitlisted" in notes[0].message
        assert "Example University" in notes[0].message

    def test_status_update_notifies_only_for_other_actors(self):
        self.engine.request_transition(self.app.id, "stu-1", ApplicationStatus.IN_PROGRESS)
        assert self.store.list_notifications("stu-1") == []

        self.engine.request_transition(self.app.id, "counselor-7", ApplicationStatus.SUBMITTED)
        notes = self.store.list_notifications("stu-1")
        assert len(notes) == 1
        assert notes[0].kind == NotificationKind.STATUS_UPDATE
        assert "\"In Progress\" to \"Submitted\"" in notes[0].message

    def test_missing_application(self):
        with pytest.raises(NotFound):
            self.engine.request_transition(9999, "stu-1", ApplicationStatus.IN_PROGRESS)

    def test_owner_mismatch_is_not_found(self):
        with pytest.raises(NotFound):
            self.engine.request_transition(
                self.app.id, "stu-2", ApplicationStatus.IN_PROGRESS, owner_id="stu-2"
            )
        assert self._status() == ApplicationStatus.NOT_STARTED

    def test_actor_required(self):
        with pytest.raises(ValidationFailed):
            self.engine.request_transition(self.app.id, "", ApplicationStatus.IN_PROGRESS)

    def test_lost_compare_and_set_writes_nothing(self):
        entry = self.store.apply_transition(
            self.app.id,
            expected=ApplicationStatus.IN_PROGRESS,
            target=ApplicationStatus.SUBMITTED,
            changed_by="stu-1",
        )
        assert entry is None
        assert self._status() == ApplicationStatus.NOT_STARTED
        assert len(self.store.history_for(self.app.id)) == 1


# ---------------------------------------------------------------------------
# Automatic transitions
# ---------------------------------------------------------------------------

class TestAutoTransitions(_TrackerCase):
    def test_starting_a_requirement_starts_the_application(self):
        update = self.service.update_status(self.reqs[0].id, RequirementStatus.IN_PROGRESS)
        assert update.auto_transition.transitioned
        assert update.auto_transition.new_status == ApplicationStatus.IN_PROGRESS
        assert self._status() == ApplicationStatus.IN_PROGRESS

        last = self.log.history(self.app.id)[-1]
        assert last.changed_by == SYSTEM_ACTOR
        assert last.notes == NOTE_AUTO_STARTED
        assert last.is_automatic()

    def test_full_lifecycle(self):
        self.service.update_status(self.reqs[0].id, RequirementStatus.IN_PROGRESS)
        self._complete_all()
        # complete but not confirmed: stays in progress
        assert self._status() == ApplicationStatus.IN_PROGRESS

        result = self.engine.confirm_submission(self.app.id)
        assert result.transitioned
        assert result.steps == [(ApplicationStatus.IN_PROGRESS, ApplicationStatus.SUBMITTED)]
        assert result.progress.completion_percentage == 100

        entries = self.log.history(self.app.id)
        assert [(e.from_status, e.to_status) for e in entries] == [
            (None, ApplicationStatus.NOT_STARTED),
            (ApplicationStatus.NOT_STARTED, ApplicationStatus.IN_PROGRESS),
            (ApplicationStatus.IN_PROGRESS, ApplicationStatus.SUBMITTED),
        ]
        assert entries[-1].notes == NOTE_AUTO_COMPLETED
        assert self.log.verify_chain(self.app.id).valid

    def test_confirmed_then_completed_advances_two_steps(self):
        self.engine.confirm_submission(self.app.id)
        assert self._status() == ApplicationStatus.NOT_STARTED

        for req in self.reqs[:-1]:
            self.store.update_requirement(req.id, status=RequirementStatus.COMPLETED)
        update = self.service.update_status(self.reqs[-1].id, RequirementStatus.COMPLETED)

        assert update.auto_transition.steps == [
            (ApplicationStatus.NOT_STARTED, ApplicationStatus.IN_PROGRESS),
            (ApplicationStatus.IN_PROGRESS, ApplicationStatus.SUBMITTED),
        ]
        assert self._status() == ApplicationStatus.SUBMITTED
        assert len(self.log.history(self.app.id)) == 3

    def test_idempotent(self):
        self.service.update_status(self.reqs[0].id, RequirementStatus.IN_PROGRESS)
        before = len(self.log.history(self.app.id))

        again = self.engine.evaluate_auto_transition(self.app.id)
        assert not again.transitioned
        assert again.steps == []
        assert len(self.log.history(self.app.id)) == before

    def test_never_goes_past_submitted(self):
        self.engine.confirm_submission(self.app.id)
        self._complete_all()
        assert self._status() == ApplicationStatus.SUBMITTED

        result = self.engine.evaluate_auto_transition(self.app.id)
        assert not result.transitioned
        assert self._status() == ApplicationStatus.SUBMITTED

    def test_no_requirements_never_auto_submits(self):
        app = self.store.create_application(
            "stu-1", "Empty College", ApplicationTrack.ROLLING,
            deadline=NOW + timedelta(days=60), seed_requirements=False,
        )
        self.engine.request_transition(app.id, "stu-1", ApplicationStatus.IN_PROGRESS)
        result = self.engine.confirm_submission(app.id)
        assert not result.transitioned
        assert self.store.get_application(app.id).status == ApplicationStatus.IN_PROGRESS

    def test_confirm_submission_missing_application(self):
        with pytest.raises(NotFound):
            self.engine.confirm_submission(4242)

    def test_reverting_a_requirement_never_moves_status_back(self):
        self.service.update_status(self.reqs[0].id, RequirementStatus.COMPLETED)
        assert self._status() == ApplicationStatus.IN_PROGRESS

        update = self.service.update_status(self.reqs[0].id, RequirementStatus.NOT_STARTED)
        assert update.reverted
        assert update.previous_status == RequirementStatus.COMPLETED
        assert not update.auto_transition.transitioned
        assert self._status() == ApplicationStatus.IN_PROGRESS

    def test_unchanged_status_skips_evaluation(self):
        self.service.update_status(self.reqs[0].id, RequirementStatus.IN_PROGRESS)
        update = self.service.update_status(self.reqs[0].id, RequirementStatus.IN_PROGRESS)
        assert not update.reverted
        assert not update.auto_transition.transitioned

    def test_automatic_transitions_do_not_notify(self):
        self.service.update_status(self.reqs[0].id, RequirementStatus.IN_PROGRESS)
        assert self.store.list_notifications("stu-1") == []


# ---------------------------------------------------------------------------
# Requirement service
# ---------------------------------------------------------------------------

class TestRequirementService(_TrackerCase):
    def test_update_missing_requirement(self):
        with pytest.raises(NotFound):
            self.service.update_status(777, RequirementStatus.COMPLETED)

    def test_update_other_students_requirement(self):
        with pytest.raises(NotFound):
            self.service.update_status(self.reqs[0].id, RequirementStatus.COMPLETED, owner_id="stu-2")

    def test_add_note_appends_timestamped_lines(self):
        self.service.add_note(self.reqs[0].id, "Asked Ms. Rivera")
        self.clock.advance(days=1)
        req = self.service.add_note(self.reqs[0].id, "  Draft sent  ")
        assert req.notes == "[2026-01-10 09:00] Asked Ms. Rivera\n[2026-01-11 09:00] Draft sent"

    def test_add_empty_note_rejected(self):
        with pytest.raises(ValidationFailed):
            self.service.add_note(self.reqs[0].id, "   ")

    def test_generate_deadlines_fills_only_undated(self):
        fixed = NOW + timedelta(days=3)
        self.service.set_deadline(self.reqs[0].id, fixed)
        updated = self.service.generate_deadlines(self.app.id)

        assert {r.id for r in updated} == {self.reqs[1].id, self.reqs[2].id}
        by_id = {r.id: r for r in self.store.requirements_for(self.app.id)}
        assert by_id[self.reqs[0].id].deadline == fixed
        assert by_id[self.reqs[1].id].deadline == self.app.deadline - timedelta(days=14)
        assert by_id[self.reqs[2].id].deadline == self.app.deadline - timedelta(days=28)

    def test_upcoming_and_overdue(self):
        self.service.set_deadline(self.reqs[0].id, NOW + timedelta(days=2))
        self.service.set_deadline(self.reqs[1].id, NOW - timedelta(days=1))
        self.service.set_deadline(self.reqs[2].id, NOW + timedelta(days=20))

        assert [p.requirement.id for p in self.service.upcoming("stu-1", days_ahead=7)] == [self.reqs[0].id]
        overdue = self.service.overdue("stu-1")
        assert [p.requirement.id for p in overdue] == [self.reqs[1].id]
        assert overdue[0].is_overdue

    def test_completed_requirements_are_not_overdue(self):
        self.service.set_deadline(self.reqs[1].id, NOW - timedelta(days=1))
        self.service.update_status(self.reqs[1].id, RequirementStatus.COMPLETED)
        assert self.service.overdue("stu-1") == []

    def test_summary_for_application(self):
        self.service.update_status(self.reqs[0].id, RequirementStatus.COMPLETED)
        summary = self.service.summary(self.app.id)
        assert summary.total == 3
        assert summary.completed == 1
        assert summary.completion_percentage == 33

    def test_summary_scoped_to_owner(self):
        with pytest.raises(NotFound):
            self.service.summary(self.app.id, owner_id="stu-2")
