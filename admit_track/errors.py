"""
Error kinds raised by the tracker core.

Deterministic failures (not found, invalid transition, bad input) propagate
to the immediate caller. StoreUnavailable is the only error that aborts a
scheduler task.
"""

from __future__ import annotations

from typing import Any


class TrackerError(Exception):
    """Base class for all tracker errors."""


class NotFound(TrackerError, LookupError):
    """A referenced record does not exist or is not visible to the caller."""

    def __init__(self, kind: str, record_id: Any) -> None:
        super().__init__(f"{kind} #{record_id} not found")
        self.kind = kind
        self.record_id = record_id


class InvalidTransition(TrackerError):
    """A requested status change violates the application state machine."""

    def __init__(self, from_status: Any, to_status: Any, allowed: list | None = None) -> None:
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        message = f"Invalid status transition from {from_value} to {to_value}."
        if allowed is not None:
            options = ", ".join(getattr(s, "value", str(s)) for s in allowed) or "none"
            message += f" Allowed transitions: {options}"
        super().__init__(message)
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = allowed or []


class ValidationFailed(TrackerError, ValueError):
    """Malformed input to an entry point."""


class Unauthorized(TrackerError):
    """Trigger credential missing or mismatched."""


class StoreUnavailable(TrackerError):
    """The underlying data store cannot be reached."""
