"""
Scheduler configuration.

Retention windows and the reminder lookahead are policy values kept out of
code. The trigger secret never lives in the JSON file: the file names the
environment variable that holds it.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional


DEFAULT_SECRET_ENV = "ADMIT_TRACK_TRIGGER_SECRET"


@dataclass
class SchedulerConfig:
    """Settings for the notification scheduler.

    Attributes:
        read_retention_days: Read notifications older than this are purged.
        unread_retention_days: Unread notifications older than this are
                               purged; None keeps unread ones forever.
        reminder_window_days: Lookahead used when collecting alerts for
                              reminders.
        trigger_secret: Shared secret the external trigger must present.
        secret_env: Environment variable the secret was read from.
    """

    read_retention_days: int = 30
    unread_retention_days: Optional[int] = 180
    reminder_window_days: int = 7
    trigger_secret: str = ""
    secret_env: str = DEFAULT_SECRET_ENV

    def __post_init__(self) -> None:
        if self.read_retention_days < 1:
            raise ValueError("read_retention_days must be at least 1")
        if self.unread_retention_days is not None and self.unread_retention_days < self.read_retention_days:
            raise ValueError("unread_retention_days must not be shorter than read_retention_days")
        if not 1 <= self.reminder_window_days <= 365:
            raise ValueError("reminder_window_days must be between 1 and 365")

    @classmethod
    def from_environment(cls, secret_env: str = DEFAULT_SECRET_ENV) -> "SchedulerConfig":
        """Defaults, with the trigger secret taken from ``secret_env``."""
        return cls(trigger_secret=os.environ.get(secret_env, ""), secret_env=secret_env)

    def to_dict(self) -> dict[str, Any]:
        return {
            "read_retention_days": self.read_retention_days,
            "unread_retention_days": self.unread_retention_days,
            "reminder_window_days": self.reminder_window_days,
            "secret_env": self.secret_env,
            "trigger_secret_set": bool(self.trigger_secret),
        }


def load_scheduler_config(config_path: str | Path) -> SchedulerConfig:
    """Load a SchedulerConfig from a JSON file.

    The trigger secret is read from the environment variable named in the
    ``secret_env`` field (default ``ADMIT_TRACK_TRIGGER_SECRET``). If the
    variable is unset the secret is empty and every trigger call is
    rejected.

    Args:
        config_path: Path to the scheduler config JSON file.

    Returns:
        A fully populated SchedulerConfig instance.

    Raises:
        FileNotFoundError: If config_path does not exist.
        json.JSONDecodeError: If the JSON is malformed.
        ValueError: If a retention or window value is out of range.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Scheduler config not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = json.load(f)

    secret_env = raw.get("secret_env", DEFAULT_SECRET_ENV)
    return SchedulerConfig(
        read_retention_days=raw.get("read_retention_days", 30),
        unread_retention_days=raw.get("unread_retention_days", 180),
        reminder_window_days=raw.get("reminder_window_days", 7),
        trigger_secret=os.environ.get(secret_env, "") if secret_env else "",
        secret_env=secret_env,
    )
