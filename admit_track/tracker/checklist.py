"""
Requirement checklists and default deadlines for new applications.

Covers:
- Default application deadline per track when the university gives none
- Base checklist, plus entries keyed by application system and track
- Requirement deadlines derived from the application deadline
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from admit_track.tracker.models import ApplicationTrack, RequirementCategory


# (month, day, years after the current one) of the default deadline
DEFAULT_TRACK_DEADLINES: dict[ApplicationTrack, tuple[int, int, int]] = {
    ApplicationTrack.EARLY_DECISION: (11, 1, 0),
    ApplicationTrack.EARLY_ACTION: (11, 15, 0),
    ApplicationTrack.REGULAR: (1, 15, 1),
    ApplicationTrack.ROLLING: (5, 1, 1),
}

# Days relative to the application deadline
REQUIREMENT_DEADLINE_OFFSETS: dict[RequirementCategory, int] = {
    RequirementCategory.TRANSCRIPT: -14,
    RequirementCategory.TEST_SCORES: -21,
    RequirementCategory.RECOMMENDATION: -28,
    RequirementCategory.ESSAY: -7,
}


@dataclass(frozen=True)
class ChecklistItem:
    """One requirement to seed on a new application."""

    category: RequirementCategory
    title: str
    description: str = ""


BASE_CHECKLIST: tuple[ChecklistItem, ...] = (
    ChecklistItem(
        RequirementCategory.TRANSCRIPT,
        "Official High School Transcript",
        "Submit official transcript showing all completed coursework and grades",
    ),
    ChecklistItem(
        RequirementCategory.TEST_SCORES,
        "Standardized Test Scores",
        "Submit SAT or ACT scores. Check university requirements for minimum scores.",
    ),
    ChecklistItem(
        RequirementCategory.RECOMMENDATION,
        "Letters of Recommendation",
        "Typically 2-3 letters from teachers, counselors, or mentors who know you well",
    ),
)

SYSTEM_ESSAYS: dict[str, ChecklistItem] = {
    "common app": ChecklistItem(
        RequirementCategory.ESSAY,
        "Common Application Essay",
        "Choose and respond to one of the Common Application essay prompts (650 words max)",
    ),
}

DEFAULT_ESSAY = ChecklistItem(
    RequirementCategory.ESSAY,
    "Personal Statement",
    "Write a personal statement essay as required by the university",
)

SUPPLEMENTAL_ESSAYS = ChecklistItem(
    RequirementCategory.ESSAY,
    "Supplemental Essays",
    "Complete any supplemental essays required by the university",
)

TRACK_EXTRAS: dict[ApplicationTrack, tuple[ChecklistItem, ...]] = {
    ApplicationTrack.EARLY_DECISION: (
        ChecklistItem(
            RequirementCategory.ESSAY,
            "Early Decision Agreement",
            "Sign and submit Early Decision agreement (binding commitment to attend if accepted)",
        ),
        ChecklistItem(
            RequirementCategory.ESSAY,
            "Why This School Essay",
            "Demonstrate your commitment and specific interest in this university",
        ),
    ),
    ApplicationTrack.EARLY_ACTION: (
        ChecklistItem(
            RequirementCategory.ESSAY,
            "Why This School Essay",
            "Explain your specific interest in this university and why it's a good fit",
        ),
    ),
}


class ChecklistBuilder:
    """
    Build the requirement checklist and deadlines for a new application.

    Usage:
        builder = ChecklistBuilder()
        deadline = builder.default_deadline(ApplicationTrack.REGULAR, now)
        items = builder.build("Common App", ApplicationTrack.EARLY_ACTION)
    """

    def __init__(self, custom_offsets: Optional[dict[RequirementCategory, int]] = None) -> None:
        self.offsets = dict(REQUIREMENT_DEADLINE_OFFSETS)
        if custom_offsets:
            self.offsets.update(custom_offsets)

    def build(
        self,
        application_system: Optional[str],
        track: ApplicationTrack,
    ) -> list[ChecklistItem]:
        """Return the checklist for a university application system and track."""
        items = list(BASE_CHECKLIST)
        key = (application_system or "").strip().lower()
        items.append(SYSTEM_ESSAYS.get(key, DEFAULT_ESSAY))
        items.append(SUPPLEMENTAL_ESSAYS)
        items.extend(TRACK_EXTRAS.get(track, ()))
        return items

    def default_deadline(self, track: ApplicationTrack, now: datetime) -> datetime:
        """
        Deadline for a track when the caller does not give one.

        The track default for the current cycle, rolled forward a year if it
        has already passed (rolling deadlines are never rolled).
        """
        month, day, year_offset = DEFAULT_TRACK_DEADLINES[track]
        deadline = datetime(now.year + year_offset, month, day)
        if deadline < now and track != ApplicationTrack.ROLLING:
            deadline = deadline.replace(year=deadline.year + 1)
        return deadline

    def requirement_deadline(
        self,
        category: RequirementCategory,
        application_deadline: datetime,
    ) -> datetime:
        """Deadline for one requirement, offset from the application deadline."""
        return application_deadline + timedelta(days=self.offsets.get(category, -7))
