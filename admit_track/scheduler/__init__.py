from admit_track.scheduler.config import DEFAULT_SECRET_ENV, SchedulerConfig, load_scheduler_config
from admit_track.scheduler.runner import (
    ALL_TASKS,
    TASK_CLEANUP,
    TASK_DEADLINE_REMINDERS,
    TASK_OVERDUE_DEADLINES,
    NotificationScheduler,
    ScheduledRunReport,
    TaskResult,
)
from admit_track.scheduler.trigger import TASK_ALL, TASK_CHOICES, check_credential, handle_trigger

__all__ = [
    "ALL_TASKS",
    "DEFAULT_SECRET_ENV",
    "NotificationScheduler",
    "ScheduledRunReport",
    "SchedulerConfig",
    "TASK_ALL",
    "TASK_CHOICES",
    "TASK_CLEANUP",
    "TASK_DEADLINE_REMINDERS",
    "TASK_OVERDUE_DEADLINES",
    "TaskResult",
    "check_credential",
    "handle_trigger",
    "load_scheduler_config",
]
