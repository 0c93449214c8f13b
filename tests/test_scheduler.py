"""
Tests for the notification scheduler, its trigger and its configuration.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from admit_track.clock import FixedClock
from admit_track.errors import NotFound, StoreUnavailable, Unauthorized, ValidationFailed
from admit_track.notifications import NotificationInbox
from admit_track.scheduler import (
    TASK_CLEANUP,
    TASK_DEADLINE_REMINDERS,
    TASK_OVERDUE_DEADLINES,
    NotificationScheduler,
    SchedulerConfig,
    handle_trigger,
    load_scheduler_config,
)
from admit_track.tracker import (
    ApplicationTrack,
    NotificationKind,
    RequirementCategory,
    SourceType,
    TrackerStore,
)


NOW = datetime(2026, 1, 10, 9, 0)
SECRET = "s3cret-token"


class _SchedulerCase:
    def setup_method(self):
        self.clock = FixedClock(NOW)
        self.store = TrackerStore("sqlite:///:memory:", clock=self.clock)
        self.config = SchedulerConfig(trigger_secret=SECRET)
        self.scheduler = NotificationScheduler(self.store, self.config)

    def _app(self, days: int, student: str = "stu-1", university: str = "Example University"):
        return self.store.create_application(
            student, university, ApplicationTrack.REGULAR,
            deadline=NOW + timedelta(days=days), seed_requirements=False,
        )

    def _notifications(self, student: str = "stu-1"):
        return self.store.list_notifications(student, limit=100)


# ---------------------------------------------------------------------------
# Reminders and overdue
# ---------------------------------------------------------------------------

class TestDeadlineReminders(_SchedulerCase):
    def test_warning_reminder_created_once(self):
        app = self._app(days=2)
        first = self.scheduler.process_deadline_reminders()
        assert first.success
        assert (first.created, first.skipped) == (1, 0)

        second = self.scheduler.process_deadline_reminders()
        assert (second.created, second.skipped) == (0, 1)

        notes = self._notifications()
        assert len(notes) == 1
        assert notes[0].kind == NotificationKind.DEADLINE_REMINDER
        assert notes[0].source_type == SourceType.APPLICATION
        assert notes[0].source_id == app.id
        assert notes[0].tier == "warning"

    def test_info_tier_not_notified(self):
        self._app(days=5)
        result = self.scheduler.process_deadline_reminders()
        assert result.created == 0
        assert self._notifications() == []

    def test_escalation_creates_new_notification(self):
        self._app(days=2)
        self.scheduler.process_deadline_reminders()
        self.clock.advance(days=2)
        result = self.scheduler.process_deadline_reminders()
        assert result.created == 1

        tiers = sorted(n.tier for n in self._notifications())
        assert tiers == ["critical", "warning"]

    def test_due_today_is_reminder_not_overdue(self):
        self._app(days=0)
        assert self.scheduler.process_overdue_deadlines().created == 0
        assert self.scheduler.process_deadline_reminders().created == 1
        assert self._notifications()[0].title == "Application Due Today"

    def test_overdue_created_once_and_reminders_skip_it(self):
        self._app(days=-1)
        assert self.scheduler.process_deadline_reminders().created == 0

        first = self.scheduler.process_overdue_deadlines()
        second = self.scheduler.process_overdue_deadlines()
        assert first.created == 1
        assert (second.created, second.skipped) == (0, 1)

        notes = self._notifications()
        assert len(notes) == 1
        assert notes[0].kind == NotificationKind.OVERDUE
        assert notes[0].tier == "critical"

    def test_moved_deadline_alerts_again(self):
        app = self._app(days=20)
        req = self.store.add_requirement(
            app.id, RequirementCategory.ESSAY, "Essay", deadline=NOW + timedelta(days=3),
        )
        assert self.scheduler.process_deadline_reminders().created == 1

        self.store.update_requirement(req.id, deadline=NOW + timedelta(days=2))
        assert self.scheduler.process_deadline_reminders().created == 1
        assert len(self._notifications()) == 2

    def test_each_student_gets_own_notifications(self):
        self._app(days=1, student="stu-1")
        self._app(days=1, student="stu-2")
        result = self.scheduler.process_deadline_reminders()
        assert result.created == 2
        assert len(self._notifications("stu-1")) == 1
        assert len(self._notifications("stu-2")) == 1

    def test_per_student_failure_is_isolated(self, monkeypatch):
        self._app(days=1, student="stu-bad")
        self._app(days=1, student="stu-good")
        original = self.scheduler.aggregator.collect

        def flaky(student_id, *args, **kwargs):
            if student_id == "stu-bad":
                raise RuntimeError("boom")
            return original(student_id, *args, **kwargs)

        monkeypatch.setattr(self.scheduler.aggregator, "collect", flaky)
        result = self.scheduler.process_deadline_reminders()
        assert result.created == 1
        assert len(result.errors) == 1
        assert "stu-bad" in result.errors[0]
        assert len(self._notifications("stu-good")) == 1

    def test_store_unavailable_fails_task(self, monkeypatch):
        self._app(days=1)

        def down():
            raise StoreUnavailable("database is locked")

        monkeypatch.setattr(self.store, "ping", down)
        result = self.scheduler.process_deadline_reminders()
        assert not result.success
        assert "database is locked" in result.error
        assert self._notifications() == []


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------

class TestCleanup(_SchedulerCase):
    def _notify(self, source_id: int):
        return self.store.insert_notification_once(
            "stu-1", NotificationKind.OTHER, SourceType.APPLICATION, source_id,
            "Title", "Message", bucket=str(source_id),
        )

    def test_read_purged_after_retention(self):
        read = self._notify(1)
        self._notify(2)
        self.store.mark_notification_read(read.id, "stu-1")

        self.clock.advance(days=30)
        assert self.scheduler.cleanup_notifications().deleted == 0

        self.clock.advance(days=1)
        result = self.scheduler.cleanup_notifications()
        assert result.deleted == 1
        assert [n.source_id for n in self._notifications()] == [2]

    def test_unread_purged_after_longer_retention(self):
        self._notify(1)
        self.clock.advance(days=181)
        assert self.scheduler.cleanup_notifications().deleted == 1

    def test_unread_kept_forever_when_disabled(self):
        scheduler = NotificationScheduler(
            self.store, SchedulerConfig(unread_retention_days=None), self.clock
        )
        self._notify(1)
        self.clock.advance(days=1000)
        assert scheduler.cleanup_notifications().deleted == 0


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

class TestRunScheduledTasks(_SchedulerCase):
    def test_runs_all_tasks_in_order(self):
        self._app(days=1)
        self._app(days=-2, university="Late University")
        report = self.scheduler.run_scheduled_tasks()

        assert report.success
        assert [r.task for r in report.results] == [
            TASK_DEADLINE_REMINDERS, TASK_OVERDUE_DEADLINES, TASK_CLEANUP,
        ]
        assert report.result_for(TASK_DEADLINE_REMINDERS).created == 1
        assert report.result_for(TASK_OVERDUE_DEADLINES).created == 1
        assert "Scheduled Notification Run" in report.summary()

    def test_rerun_creates_nothing(self):
        self._app(days=1)
        self.scheduler.run_scheduled_tasks()
        report = self.scheduler.run_scheduled_tasks()
        assert report.result_for(TASK_DEADLINE_REMINDERS).created == 0
        assert report.result_for(TASK_DEADLINE_REMINDERS).skipped == 1
        assert len(self._notifications()) == 1

    def test_one_failing_task_does_not_stop_others(self, monkeypatch):
        self._app(days=1)

        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(self.store, "purge_notifications", broken)
        report = self.scheduler.run_scheduled_tasks()
        assert not report.success
        assert report.result_for(TASK_DEADLINE_REMINDERS).success
        cleanup = report.result_for(TASK_CLEANUP)
        assert not cleanup.success
        assert cleanup.error == "disk full"
        assert report.to_dict()["tasks"][TASK_CLEANUP]["success"] is False

    def test_selected_tasks_only(self):
        report = self.scheduler.run_scheduled_tasks([TASK_CLEANUP])
        assert [r.task for r in report.results] == [TASK_CLEANUP]

    def test_unknown_task(self):
        with pytest.raises(ValidationFailed):
            self.scheduler.run_task("send-emails")
        with pytest.raises(ValidationFailed):
            self.scheduler.run_scheduled_tasks(["cleanup", "send-emails"])


# ---------------------------------------------------------------------------
# Trigger
# ---------------------------------------------------------------------------

class TestTrigger(_SchedulerCase):
    def test_wrong_secret_has_no_side_effects(self):
        self._app(days=1)
        with pytest.raises(Unauthorized):
            handle_trigger(self.scheduler, "guess", "all")
        assert self._notifications() == []

    def test_missing_credential(self):
        with pytest.raises(Unauthorized):
            handle_trigger(self.scheduler, None, "all")

    def test_unset_secret_rejects_everything(self):
        scheduler = NotificationScheduler(self.store, SchedulerConfig(), self.clock)
        with pytest.raises(Unauthorized):
            handle_trigger(scheduler, "", "all")

    def test_single_task(self):
        self._app(days=1)
        response = handle_trigger(self.scheduler, SECRET, TASK_DEADLINE_REMINDERS)
        assert response["success"]
        assert response["task"] == TASK_DEADLINE_REMINDERS
        assert response["timestamp"] == NOW.isoformat()
        assert response["result"]["created"] == 1

    def test_all_tasks(self):
        response = handle_trigger(self.scheduler, SECRET)
        assert response["task"] == "all"
        assert set(response["result"]["tasks"]) == {
            TASK_DEADLINE_REMINDERS, TASK_OVERDUE_DEADLINES, TASK_CLEANUP,
        }

    def test_unknown_task_after_auth(self):
        with pytest.raises(ValidationFailed):
            handle_trigger(self.scheduler, SECRET, "reindex")

    def test_explicit_secret_overrides_config(self):
        response = handle_trigger(self.scheduler, "other", TASK_CLEANUP, expected_secret="other")
        assert response["success"]


class TestBrokenStore:
    def setup_method(self):
        self.clock = FixedClock(NOW)

    def _corrupt_scheduler(self, tmp_path):
        path = tmp_path / "tracker.db"
        store = TrackerStore(f"sqlite:///{path}", clock=self.clock)
        store.create_application(
            "stu-1", "Example University", ApplicationTrack.REGULAR,
            deadline=NOW + timedelta(days=1), seed_requirements=False,
        )
        store.engine.dispose()
        path.write_bytes(b"this is not a sqlite file " * 512)
        return NotificationScheduler(store, SchedulerConfig(trigger_secret=SECRET))

    @pytest.mark.parametrize("task", [
        TASK_DEADLINE_REMINDERS, TASK_OVERDUE_DEADLINES, TASK_CLEANUP,
    ])
    def test_single_task_reports_failure(self, tmp_path, task):
        scheduler = self._corrupt_scheduler(tmp_path)
        response = handle_trigger(scheduler, SECRET, task)
        assert response["success"] is False
        assert response["result"]["task"] == task
        assert "Store unavailable" in response["result"]["error"]

    def test_all_tasks_report_failure(self, tmp_path):
        scheduler = self._corrupt_scheduler(tmp_path)
        response = handle_trigger(scheduler, SECRET, "all")
        assert response["success"] is False
        tasks = response["result"]["tasks"]
        assert set(tasks) == {TASK_DEADLINE_REMINDERS, TASK_OVERDUE_DEADLINES, TASK_CLEANUP}
        assert all(not t["success"] and t["error"] for t in tasks.values())

    def test_unexpected_error_in_single_task(self, tmp_path, monkeypatch):
        scheduler = self._corrupt_scheduler(tmp_path)

        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(scheduler.store, "purge_notifications", broken)
        result = scheduler.run_task(TASK_CLEANUP)
        assert not result.success
        assert result.error == "disk full"
        assert result.completed_at == NOW


class TestSharedDatabase:
    """Separate stores on one database file, as two trigger processes would have."""

    def setup_method(self):
        self.clock = FixedClock(NOW)

    def _scheduler(self, url: str) -> NotificationScheduler:
        store = TrackerStore(url, clock=self.clock)
        return NotificationScheduler(store, SchedulerConfig(trigger_secret=SECRET))

    def _seed(self, url: str):
        store = TrackerStore(url, clock=self.clock)
        store.create_application(
            "stu-1", "Example University", ApplicationTrack.REGULAR,
            deadline=NOW + timedelta(days=1), seed_requirements=False,
        )
        store.create_application(
            "stu-1", "Late University", ApplicationTrack.REGULAR,
            deadline=NOW - timedelta(days=2), seed_requirements=False,
        )
        return store

    def test_second_store_skips_existing(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'shared.db'}"
        store = self._seed(url)
        first = self._scheduler(url).run_scheduled_tasks()
        second = self._scheduler(url).run_scheduled_tasks()

        assert first.result_for(TASK_DEADLINE_REMINDERS).created == 1
        assert first.result_for(TASK_OVERDUE_DEADLINES).created == 1
        assert second.result_for(TASK_DEADLINE_REMINDERS).skipped == 1
        assert second.result_for(TASK_OVERDUE_DEADLINES).skipped == 1
        assert len(store.list_notifications("stu-1", limit=100)) == 2

    def test_parallel_runs_do_not_duplicate(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'shared.db'}"
        store = self._seed(url)
        schedulers = [self._scheduler(url) for _ in range(2)]

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(lambda s: s.process_deadline_reminders(), schedulers))

        assert sum(r.created for r in results) == 1
        notes = store.list_notifications("stu-1", limit=100)
        assert len(notes) == 1
        assert notes[0].kind == NotificationKind.DEADLINE_REMINDER


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------

class TestNotificationInbox(_SchedulerCase):
    def setup_method(self):
        super().setup_method()
        self.inbox = NotificationInbox(self.store)
        self._app(days=1, student="stu-1")
        self._app(days=2, student="stu-1", university="Second University")
        self._app(days=1, student="stu-2")
        self.scheduler.process_deadline_reminders()

    def test_unread_count_and_mark_read(self):
        assert self.inbox.unread_count("stu-1") == 2
        first = self.inbox.list_notifications("stu-1")[0]
        self.inbox.mark_read(first.id, "stu-1")
        assert self.inbox.unread_count("stu-1") == 1
        assert len(self.inbox.list_notifications("stu-1", unread_only=True)) == 1

    def test_scoped_to_recipient(self):
        other = self.inbox.list_notifications("stu-2")[0]
        with pytest.raises(NotFound):
            self.inbox.mark_read(other.id, "stu-1")
        with pytest.raises(NotFound):
            self.inbox.delete(other.id, "stu-1")
        assert self.inbox.unread_count("stu-2") == 1

    def test_mark_all_read(self):
        assert self.inbox.mark_all_read("stu-1") == 2
        assert self.inbox.unread_count("stu-1") == 0
        assert self.inbox.unread_count("stu-2") == 1

    def test_delete(self):
        note = self.inbox.list_notifications("stu-1")[0]
        self.inbox.delete(note.id, "stu-1")
        assert len(self.inbox.list_notifications("stu-1")) == 1

    def test_page(self):
        page = self.inbox.page("stu-1", limit=1)
        assert len(page["notifications"]) == 1
        assert page["next_offset"] == 1
        assert page["unread"] == 2
        assert self.inbox.page("stu-1", limit=1, offset=1)["next_offset"] == 2

    @pytest.mark.parametrize("limit,offset", [(0, 0), (101, 0), (10, -1)])
    def test_bad_paging(self, limit, offset):
        with pytest.raises(ValidationFailed):
            self.inbox.list_notifications("stu-1", limit=limit, offset=offset)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

class TestSchedulerConfig:
    def test_defaults(self):
        config = SchedulerConfig()
        assert config.read_retention_days == 30
        assert config.unread_retention_days == 180
        assert config.reminder_window_days == 7

    def test_load_reads_secret_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "scheduler.json"
        path.write_text(json.dumps({
            "read_retention_days": 14,
            "unread_retention_days": 90,
            "secret_env": "MY_TRIGGER_SECRET",
        }))
        monkeypatch.setenv("MY_TRIGGER_SECRET", "abc")
        config = load_scheduler_config(path)
        assert config.read_retention_days == 14
        assert config.unread_retention_days == 90
        assert config.trigger_secret == "abc"
        assert config.to_dict()["trigger_secret_set"] is True
        assert "abc" not in json.dumps(config.to_dict())

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_scheduler_config(tmp_path / "nope.json")

    @pytest.mark.parametrize("kwargs", [
        {"read_retention_days": 0},
        {"read_retention_days": 60, "unread_retention_days": 30},
        {"reminder_window_days": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            SchedulerConfig(**kwargs)

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("ADMIT_TRACK_TRIGGER_SECRET", "xyz")
        assert SchedulerConfig.from_environment().trigger_secret == "xyz"
