"""
Status history ledger queries.

Entries are written only by the store's transactional transition path; this
module reads them back for audit, "recent changes" feeds and statistics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from admit_track.errors import NotFound
from admit_track.tracker.models import Application, ApplicationStatus, StatusHistoryEntry
from admit_track.tracker.store import TrackerStore


@dataclass
class ChainCheck:
    """Result of replaying one application's history chain."""

    application_id: int
    valid: bool
    problems: list[str] = field(default_factory=list)


@dataclass
class StatusStatistics:
    total: int
    by_status: dict[str, int]
    recent_changes: int

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "by_status": self.by_status,
            "recent_changes": self.recent_changes,
        }


def replay_chain(application_id: int, entries: list[StatusHistoryEntry],
                 current: Optional[ApplicationStatus] = None) -> ChainCheck:
    """
    Check that a history chain starts at creation, links each entry's
    ``from_status`` to the previous ``to_status``, only ever moves forward
    by one step, and ends at ``current`` when given.
    """
    problems: list[str] = []
    previous: Optional[ApplicationStatus] = None
    for i, entry in enumerate(entries):
        if i == 0:
            if entry.from_status is not None:
                problems.append(f"entry #{entry.id}: first entry has a prior status")
        elif entry.from_status != previous:
            problems.append(
                f"entry #{entry.id}: from {_value(entry.from_status)} does not follow {_value(previous)}"
            )
        if entry.from_status is not None and entry.to_status.rank != entry.from_status.rank + 1:
            problems.append(
                f"entry #{entry.id}: {_value(entry.from_status)} -> {_value(entry.to_status)} "
                "is not a single forward step"
            )
        previous = entry.to_status

    if current is not None and previous != current:
        problems.append(f"chain ends at {_value(previous)} but application is {_value(current)}")
    return ChainCheck(application_id=application_id, valid=not problems, problems=problems)


def _value(status: Optional[ApplicationStatus]) -> Optional[str]:
    return status.value if status is not None else None


class StatusHistoryLog:
    """
    Read the append-only status ledger.

    Usage:
        log = StatusHistoryLog(store)
        entries = log.history(app_id)
        feed = log.recent_changes("stu-1", limit=5)
    """

    RECENT_WINDOW = timedelta(days=7)

    def __init__(self, store: TrackerStore, clock=None) -> None:
        self.store = store
        self.clock = clock or store.clock

    def history(self, application_id: int, owner_id: Optional[str] = None) -> list[StatusHistoryEntry]:
        """Entries for one application, oldest first."""
        if self.store.get_application(application_id, owner_id) is None:
            raise NotFound("Application", application_id)
        return self.store.history_for(application_id)

    def recent_changes(
        self, student_id: str, limit: int = 10
    ) -> list[tuple[StatusHistoryEntry, Application]]:
        """Newest entries across all of a student's applications."""
        return self.store.recent_history(student_id, limit=limit)

    def statistics(self, student_id: str) -> StatusStatistics:
        apps = self.store.list_applications(student_id=student_id, limit=10000)
        by_status: dict[str, int] = {}
        for app in apps:
            by_status[app.status.value] = by_status.get(app.status.value, 0) + 1
        since = self.clock.now() - self.RECENT_WINDOW
        return StatusStatistics(
            total=len(apps),
            by_status=by_status,
            recent_changes=self.store.count_history_since(student_id, since),
        )

    def verify_chain(self, application_id: int) -> ChainCheck:
        app = self.store.get_application(application_id)
        if app is None:
            raise NotFound("Application", application_id)
        return replay_chain(application_id, self.store.history_for(application_id), app.status)
