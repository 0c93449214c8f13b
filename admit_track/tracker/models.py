"""
SQLAlchemy models for university applications, their requirements, the
status history ledger, and persisted notifications.
"""

from __future__ import annotations

import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


SYSTEM_ACTOR = "system"


class Base(DeclarativeBase):
    pass


class ApplicationTrack(enum.Enum):
    EARLY_DECISION = "early_decision"
    EARLY_ACTION = "early_action"
    REGULAR = "regular"
    ROLLING = "rolling"


class ApplicationStatus(enum.Enum):
    """Lifecycle stages of an application, in their only allowed order."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    DECIDED = "decided"

    @property
    def rank(self) -> int:
        return list(ApplicationStatus).index(self)

    def next(self) -> "ApplicationStatus | None":
        order = list(ApplicationStatus)
        if self.rank + 1 < len(order):
            return order[self.rank + 1]
        return None


class DecisionOutcome(enum.Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WAITLISTED = "waitlisted"


class RequirementCategory(enum.Enum):
    ESSAY = "essay"
    RECOMMENDATION = "recommendation"
    TRANSCRIPT = "transcript"
    TEST_SCORES = "test_scores"


class RequirementStatus(enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return list(RequirementStatus).index(self)


class NotificationKind(enum.Enum):
    DEADLINE_REMINDER = "deadline_reminder"
    OVERDUE = "overdue"
    STATUS_UPDATE = "status_update"
    DECISION_RECEIVED = "decision_received"
    OTHER = "other"


class SourceType(enum.Enum):
    APPLICATION = "application"
    REQUIREMENT = "requirement"


class Application(Base):
    """One student's candidacy at one university."""

    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), nullable=False, index=True)
    university = Column(String(256), nullable=False)
    track = Column(Enum(ApplicationTrack), nullable=False)
    status = Column(
        Enum(ApplicationStatus),
        default=ApplicationStatus.NOT_STARTED,
        nullable=False,
        index=True,
    )
    deadline = Column(DateTime, nullable=False, index=True)
    decision = Column(Enum(DecisionOutcome), nullable=True)
    # set only by an external trusted signal (e.g. portal confirmation)
    submission_confirmed = Column(Boolean, default=False, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Application(id={self.id}, student='{self.student_id}', "
            f"university='{self.university}', status={self.status.value})>"
        )


class ApplicationRequirement(Base):
    """One discrete task gating an application."""

    __tablename__ = "application_requirements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(
        Integer,
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category = Column(Enum(RequirementCategory), nullable=False)
    title = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        Enum(RequirementStatus),
        default=RequirementStatus.NOT_STARTED,
        nullable=False,
    )
    deadline = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApplicationRequirement(id={self.id}, application={self.application_id}, "
            f"title='{self.title}', status={self.status.value})>"
        )

    def is_complete(self) -> bool:
        return self.status == RequirementStatus.COMPLETED


class StatusHistoryEntry(Base):
    """Immutable record of one committed status change."""

    __tablename__ = "status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(
        Integer,
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status = Column(Enum(ApplicationStatus), nullable=True)
    to_status = Column(Enum(ApplicationStatus), nullable=False)
    changed_by = Column(String(64), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        from_value = self.from_status.value if self.from_status else None
        return (
            f"<StatusHistoryEntry(id={self.id}, application={self.application_id}, "
            f"{from_value} -> {self.to_status.value}, by='{self.changed_by}')>"
        )

    def is_automatic(self) -> bool:
        return self.changed_by == SYSTEM_ACTOR


class Notification(Base):
    """
    A user-facing record that an alert was raised.

    The unique constraint is the dedup policy: one row per
    (recipient, kind, source, tier, bucket).
    """

    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint(
            "recipient_id",
            "kind",
            "source_type",
            "source_id",
            "tier",
            "bucket",
            name="uq_notification_dedup",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_id = Column(String(64), nullable=False, index=True)
    kind = Column(Enum(NotificationKind), nullable=False)
    title = Column(String(256), nullable=False)
    message = Column(Text, nullable=False)
    source_type = Column(Enum(SourceType), nullable=False)
    source_id = Column(Integer, nullable=False)
    tier = Column(String(16), nullable=False, default="")
    bucket = Column(String(32), nullable=False, default="")
    read = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, recipient='{self.recipient_id}', "
            f"kind={self.kind.value}, source={self.source_type.value}#{self.source_id}, "
            f"tier='{self.tier}', read={self.read})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "kind": self.kind.value,
            "title": self.title,
            "message": self.message,
            "source_type": self.source_type.value,
            "source_id": self.source_id,
            "tier": self.tier or None,
            "read": self.read,
            "created_at": self.created_at.isoformat(),
        }
