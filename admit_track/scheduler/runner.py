"""
Notification scheduler: turns deadline urgency into once-only notifications.

Invoked by an external recurring trigger. Runs three independent tasks:
deadline reminders, overdue detection, and notification cleanup. Each task
returns a result instead of raising; one task failing never stops the
others, and re-running any task is safe because dedup is enforced by the
store's unique constraint.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from admit_track.errors import StoreUnavailable, ValidationFailed
from admit_track.notifications.messages import MessageRenderer, RenderedMessage
from admit_track.scheduler.config import SchedulerConfig
from admit_track.tracker.alerts import DeadlineAlert, DeadlineAlertAggregator
from admit_track.tracker.deadlines import UrgencyTier
from admit_track.tracker.models import NotificationKind
from admit_track.tracker.store import TrackerStore


logger = logging.getLogger(__name__)


TASK_DEADLINE_REMINDERS = "deadline-reminders"
TASK_OVERDUE_DEADLINES = "overdue-deadlines"
TASK_CLEANUP = "cleanup"
ALL_TASKS = (TASK_DEADLINE_REMINDERS, TASK_OVERDUE_DEADLINES, TASK_CLEANUP)

REMINDER_TIERS = (UrgencyTier.WARNING, UrgencyTier.CRITICAL)


@dataclass
class TaskResult:
    """Result of one scheduler task."""

    task: str
    success: bool = True
    created: int = 0
    skipped: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "task": self.task,
            "success": self.success,
            "created": self.created,
            "skipped": self.skipped,
            "deleted": self.deleted,
            "errors": list(self.errors),
            "error": self.error,
        }


@dataclass
class ScheduledRunReport:
    """Per-task results of one scheduling cycle."""

    started_at: datetime
    completed_at: Optional[datetime] = None
    results: list[TaskResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)

    def result_for(self, task: str) -> Optional[TaskResult]:
        for r in self.results:
            if r.task == task:
                return r
        return None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "tasks": {r.task: r.to_dict() for r in self.results},
        }

    def summary(self) -> str:
        """Format a human-readable run summary."""
        lines = [
            "=== Scheduled Notification Run ===",
            f"Started:  {self.started_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        ]
        if self.completed_at:
            elapsed = (self.completed_at - self.started_at).total_seconds()
            lines.append(
                f"Finished: {self.completed_at.strftime('%Y-%m-%d %H:%M:%S UTC')} in {elapsed:.1f}s"
            )
        lines.append("")

        for r in self.results:
            status = "OK" if r.success else "FAIL"
            lines.append(
                f"  {status:4s} | {r.task:20s} | created {r.created:4d} | "
                f"skipped {r.skipped:4d} | deleted {r.deleted:4d}"
            )
            if r.error:
                lines.append(f"         Error: {r.error}")
            for item_error in r.errors:
                lines.append(f"         Item: {item_error}")

        lines.append("")
        lines.append("=== End Run ===")
        return "\n".join(lines)


class NotificationScheduler:
    """
    Run the scheduled notification tasks.

    Usage:
        scheduler = NotificationScheduler(store, SchedulerConfig.from_environment())
        report = scheduler.run_scheduled_tasks()
        print(report.summary())
    """

    def __init__(
        self,
        store: TrackerStore,
        config: Optional[SchedulerConfig] = None,
        clock=None,
        aggregator: Optional[DeadlineAlertAggregator] = None,
        renderer: Optional[MessageRenderer] = None,
    ) -> None:
        self.store = store
        self.config = config or SchedulerConfig()
        self.clock = clock or store.clock
        self.aggregator = aggregator or DeadlineAlertAggregator(store, self.clock)
        self.renderer = renderer or MessageRenderer()
        self._tasks: dict[str, Callable[[], TaskResult]] = {
            TASK_DEADLINE_REMINDERS: self.process_deadline_reminders,
            TASK_OVERDUE_DEADLINES: self.process_overdue_deadlines,
            TASK_CLEANUP: self.cleanup_notifications,
        }

    # ---- Tasks ----

    def process_deadline_reminders(self) -> TaskResult:
        """One reminder per (student, source, tier, deadline) for due-soon items."""
        return self._notify(
            TASK_DEADLINE_REMINDERS,
            NotificationKind.DEADLINE_REMINDER,
            lambda a: a.tier in REMINDER_TIERS and not a.is_overdue,
            self.renderer.deadline_reminder,
        )

    def process_overdue_deadlines(self) -> TaskResult:
        """One overdue notice per (student, source, deadline) for missed items."""
        return self._notify(
            TASK_OVERDUE_DEADLINES,
            NotificationKind.OVERDUE,
            lambda a: a.is_overdue,
            self.renderer.overdue,
        )

    def cleanup_notifications(self) -> TaskResult:
        """Purge old read notifications, and very old unread ones."""
        result = TaskResult(task=TASK_CLEANUP, started_at=self.clock.now())
        now = result.started_at
        read_before = now - timedelta(days=self.config.read_retention_days)
        unread_before = None
        if self.config.unread_retention_days is not None:
            unread_before = now - timedelta(days=self.config.unread_retention_days)

        try:
            read_deleted, unread_deleted = self.store.purge_notifications(read_before, unread_before)
        except StoreUnavailable as e:
            logger.error("Cleanup aborted, store unavailable: %s", e)
            result.success = False
            result.error = f"Store unavailable: {e}"
        else:
            result.deleted = read_deleted + unread_deleted
            logger.info(
                "Cleaned up %d read and %d unread notifications", read_deleted, unread_deleted
            )
        result.completed_at = self.clock.now()
        return result

    # ---- Orchestration ----

    def run_task(self, task: str) -> TaskResult:
        """Run one task; any failure comes back as an unsuccessful result."""
        runner = self._tasks.get(task)
        if runner is None:
            raise ValidationFailed(
                f"Unknown task '{task}'. Known: {', '.join(self._tasks)}"
            )
        started_at = self.clock.now()
        try:
            return runner()
        except Exception as e:
            logger.exception("Task %s failed", task)
            return TaskResult(
                task=task,
                success=False,
                error=str(e),
                started_at=started_at,
                completed_at=self.clock.now(),
            )

    def run_scheduled_tasks(self, tasks: Optional[Iterable[str]] = None) -> ScheduledRunReport:
        """
        Run the selected tasks (all by default) in order, each isolated.

        Returns a report even when every task failed.
        """
        selected = list(tasks) if tasks is not None else list(ALL_TASKS)
        for task in selected:
            if task not in self._tasks:
                raise ValidationFailed(
                    f"Unknown task '{task}'. Known: {', '.join(self._tasks)}"
                )

        report = ScheduledRunReport(started_at=self.clock.now())
        logger.info("Running scheduled notification tasks: %s", ", ".join(selected))
        for task in selected:
            report.results.append(self.run_task(task))
        report.completed_at = self.clock.now()

        logger.info(
            "Scheduled tasks completed: %s",
            ", ".join(f"{r.task}={'ok' if r.success else 'failed'}" for r in report.results),
        )
        return report

    # ---- Internals ----

    def _notify(
        self,
        task: str,
        kind: NotificationKind,
        wanted: Callable[[DeadlineAlert], bool],
        render: Callable[[DeadlineAlert], RenderedMessage],
    ) -> TaskResult:
        result = TaskResult(task=task, started_at=self.clock.now())
        now = result.started_at

        try:
            self.store.ping()
            students = self.store.student_ids()
        except StoreUnavailable as e:
            logger.error("Task %s aborted, store unavailable: %s", task, e)
            result.success = False
            result.error = f"Store unavailable: {e}"
            result.completed_at = self.clock.now()
            return result

        for student_id in students:
            try:
                alerts = self.aggregator.collect(
                    student_id, self.config.reminder_window_days, now=now
                )
            except Exception as e:
                logger.exception("Task %s: could not collect alerts for %s", task, student_id)
                result.errors.append(f"student {student_id}: {e}")
                continue

            for alert in alerts:
                if not wanted(alert):
                    continue
                try:
                    msg = render(alert)
                    created = self.store.insert_notification_once(
                        recipient_id=student_id,
                        kind=kind,
                        source_type=alert.source_type,
                        source_id=alert.source_id,
                        title=msg.title,
                        message=msg.message,
                        tier=alert.tier.value,
                        bucket=alert.bucket,
                    )
                except Exception as e:
                    logger.exception(
                        "Task %s: notification for %s %s #%s failed",
                        task, student_id, alert.source_type.value, alert.source_id,
                    )
                    result.errors.append(
                        f"student {student_id} {alert.source_type.value} #{alert.source_id}: {e}"
                    )
                    continue

                if created is None:
                    result.skipped += 1
                else:
                    result.created += 1

        logger.info(
            "Task %s: created %d, skipped %d, errors %d",
            task, result.created, result.skipped, len(result.errors),
        )
        result.completed_at = self.clock.now()
        return result
