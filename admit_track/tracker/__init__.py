"""
Application tracker: models, transactional store, status state machine,
requirement progress, deadline urgency, and alert aggregation.
"""

from admit_track.tracker.models import (
    SYSTEM_ACTOR,
    Application,
    ApplicationRequirement,
    ApplicationStatus,
    ApplicationTrack,
    Base,
    DecisionOutcome,
    Notification,
    NotificationKind,
    RequirementCategory,
    RequirementStatus,
    SourceType,
    StatusHistoryEntry,
)
from admit_track.tracker.checklist import ChecklistBuilder
from admit_track.tracker.deadlines import DeadlineUrgencyClassifier, UrgencyTier
from admit_track.tracker.progress import ProgressSummary, RequirementProgressTracker
from admit_track.tracker.store import TrackerStore
from admit_track.tracker.status import AutoTransitionResult, StatusTransitionEngine
from admit_track.tracker.history import StatusHistoryLog
from admit_track.tracker.requirements import RequirementService
from admit_track.tracker.alerts import AlertReport, DeadlineAlert, DeadlineAlertAggregator

__all__ = [
    "SYSTEM_ACTOR",
    "Application",
    "ApplicationRequirement",
    "ApplicationStatus",
    "ApplicationTrack",
    "Base",
    "DecisionOutcome",
    "Notification",
    "NotificationKind",
    "RequirementCategory",
    "RequirementStatus",
    "SourceType",
    "StatusHistoryEntry",
    "ChecklistBuilder",
    "DeadlineUrgencyClassifier",
    "UrgencyTier",
    "ProgressSummary",
    "RequirementProgressTracker",
    "TrackerStore",
    "AutoTransitionResult",
    "StatusTransitionEngine",
    "StatusHistoryLog",
    "RequirementService",
    "AlertReport",
    "DeadlineAlert",
    "DeadlineAlertAggregator",
]
