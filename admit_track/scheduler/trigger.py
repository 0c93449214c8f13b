"""
Authenticated entry point for the external recurring trigger.

The caller presents a shared secret and a task name; nothing runs unless
the secret matches.
"""

from __future__ import annotations

import hmac
import logging
from typing import Any, Optional

from admit_track.errors import Unauthorized, ValidationFailed
from admit_track.scheduler.runner import ALL_TASKS, NotificationScheduler


logger = logging.getLogger(__name__)


TASK_ALL = "all"
TASK_CHOICES = ALL_TASKS + (TASK_ALL,)


def check_credential(credential: Optional[str], expected_secret: Optional[str]) -> None:
    """Raise Unauthorized unless ``credential`` equals a non-empty secret."""
    if not expected_secret or not credential:
        raise Unauthorized("Missing trigger credential")
    if not hmac.compare_digest(credential.encode("utf-8"), expected_secret.encode("utf-8")):
        raise Unauthorized("Invalid trigger credential")


def handle_trigger(
    scheduler: NotificationScheduler,
    credential: Optional[str],
    task: str = TASK_ALL,
    expected_secret: Optional[str] = None,
) -> dict[str, Any]:
    """
    Authenticate, then run one task or all of them.

    ``expected_secret`` defaults to the scheduler config's secret. Rejected
    calls have no side effects.
    """
    secret = expected_secret if expected_secret is not None else scheduler.config.trigger_secret
    try:
        check_credential(credential, secret)
    except Unauthorized:
        logger.warning("Rejected trigger call for task '%s'", task)
        raise

    if task not in TASK_CHOICES:
        raise ValidationFailed(f"Unknown task '{task}'. Choose from: {', '.join(TASK_CHOICES)}")

    now = scheduler.clock.now()
    if task == TASK_ALL:
        report = scheduler.run_scheduled_tasks()
        return {
            "success": report.success,
            "task": task,
            "timestamp": now.isoformat(),
            "result": report.to_dict(),
        }

    result = scheduler.run_task(task)
    return {
        "success": result.success,
        "task": task,
        "timestamp": now.isoformat(),
        "result": result.to_dict(),
    }
