"""
Transactional store for applications, requirements, status history and
notifications.

This is the only shared mutable resource. Two guarantees live here rather
than in the services above it:

- a status change and its history entry commit together or not at all,
  guarded by a compare-and-set on the current status;
- notification dedup is a unique constraint, so concurrent scheduler runs
  cannot insert the same alert twice.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import create_engine, delete, func, select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from admit_track.clock import SystemClock
from admit_track.errors import StoreUnavailable
from admit_track.tracker.checklist import ChecklistBuilder
from admit_track.tracker.models import (
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


logger = logging.getLogger(__name__)


class TrackerStore:
    """
    CRUD and transactional interface for the tracker database.

    Usage:
        store = TrackerStore("sqlite:///admit_track.db")
        app = store.create_application("stu-1", "Example University",
                                       ApplicationTrack.REGULAR)
        store.requirements_for(app.id)
    """

    def __init__(
        self,
        db_url: str = "sqlite:///admit_track.db",
        clock=None,
        checklist: Optional[ChecklistBuilder] = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self.checklist = checklist or ChecklistBuilder()
        self.engine = create_engine(db_url, echo=False)
        try:
            Base.metadata.create_all(self.engine)
        except DBAPIError as e:
            raise StoreUnavailable(f"Cannot initialise store at {db_url}: {e}") from e
        self.SessionFactory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.SessionFactory() as session:
                yield session
        except DBAPIError as e:
            raise StoreUnavailable(str(e)) from e

    def ping(self) -> None:
        """Raise StoreUnavailable if the database cannot be reached."""
        with self._session() as session:
            session.execute(text("SELECT 1"))

    # ---- Applications ----

    def create_application(
        self,
        student_id: str,
        university: str,
        track: ApplicationTrack,
        deadline: Optional[datetime] = None,
        application_system: Optional[str] = None,
        notes: Optional[str] = None,
        seed_requirements: bool = True,
        requirement_deadlines: bool = False,
    ) -> Application:
        """
        Create an application, seed its checklist, and write the initial
        history entry, all in one transaction.
        """
        now = self.clock.now()
        if deadline is None:
            deadline = self.checklist.default_deadline(track, now)

        with self._session() as session:
            app = Application(
                student_id=student_id,
                university=university,
                track=track,
                status=ApplicationStatus.NOT_STARTED,
                deadline=deadline,
                notes=notes,
                submission_confirmed=False,
                created_at=now,
                updated_at=now,
            )
            session.add(app)
            session.flush()

            if seed_requirements:
                for item in self.checklist.build(application_system, track):
                    req_deadline = None
                    if requirement_deadlines:
                        req_deadline = self.checklist.requirement_deadline(item.category, deadline)
                    session.add(ApplicationRequirement(
                        application_id=app.id,
                        category=item.category,
                        title=item.title,
                        description=item.description,
                        status=RequirementStatus.NOT_STARTED,
                        deadline=req_deadline,
                        created_at=now,
                        updated_at=now,
                    ))

            session.add(StatusHistoryEntry(
                application_id=app.id,
                from_status=None,
                to_status=ApplicationStatus.NOT_STARTED,
                changed_by=student_id,
                notes="Application created",
                created_at=now,
            ))
            session.commit()
            session.refresh(app)
            return app

    def get_application(
        self, application_id: int, owner_id: Optional[str] = None
    ) -> Optional[Application]:
        with self._session() as session:
            app = session.get(Application, application_id)
            if app is None:
                return None
            if owner_id is not None and app.student_id != owner_id:
                return None
            return app

    def list_applications(
        self,
        student_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Application]:
        with self._session() as session:
            q = select(Application)
            if student_id:
                q = q.where(Application.student_id == student_id)
            if status:
                q = q.where(Application.status == status)
            q = q.order_by(Application.deadline.asc(), Application.id.asc())
            return list(session.scalars(q.offset(offset).limit(limit)))

    def student_ids(self) -> list[str]:
        """Every student that owns at least one application."""
        with self._session() as session:
            q = select(Application.student_id).distinct().order_by(Application.student_id)
            return list(session.scalars(q))

    def confirm_submission(
        self, application_id: int, owner_id: Optional[str] = None
    ) -> Optional[Application]:
        """Record the external signal that the application was submitted."""
        with self._session() as session:
            app = session.get(Application, application_id)
            if app is None or (owner_id is not None and app.student_id != owner_id):
                return None
            app.submission_confirmed = True
            app.updated_at = self.clock.now()
            session.commit()
            session.refresh(app)
            return app

    def delete_application(self, application_id: int, owner_id: Optional[str] = None) -> bool:
        """Delete an application with its requirements, history and notifications."""
        with self._session() as session:
            app = session.get(Application, application_id)
            if app is None or (owner_id is not None and app.student_id != owner_id):
                return False
            req_ids = list(session.scalars(
                select(ApplicationRequirement.id)
                .where(ApplicationRequirement.application_id == application_id)
            ))
            session.execute(delete(Notification).where(
                Notification.source_type == SourceType.APPLICATION,
                Notification.source_id == application_id,
            ))
            if req_ids:
                session.execute(delete(Notification).where(
                    Notification.source_type == SourceType.REQUIREMENT,
                    Notification.source_id.in_(req_ids),
                ))
            session.execute(delete(ApplicationRequirement).where(
                ApplicationRequirement.application_id == application_id
            ))
            session.execute(delete(StatusHistoryEntry).where(
                StatusHistoryEntry.application_id == application_id
            ))
            session.delete(app)
            session.commit()
            return True

    # ---- Status transitions ----

    def apply_transition(
        self,
        application_id: int,
        expected: ApplicationStatus,
        target: ApplicationStatus,
        changed_by: str,
        notes: Optional[str] = None,
        decision: Optional[DecisionOutcome] = None,
        notification: Optional[dict] = None,
    ) -> Optional[StatusHistoryEntry]:
        """
        Move an application from ``expected`` to ``target`` and append the
        history entry atomically.

        Returns None when the application is no longer at ``expected``
        (another writer moved it first); nothing is written in that case.
        ``notification`` holds the fields of a Notification to insert in the
        same transaction; its ``bucket`` defaults to the new history entry id.
        """
        now = self.clock.now()
        values: dict = {"status": target, "updated_at": now}
        if decision is not None:
            values["decision"] = decision

        with self._session() as session:
            result = session.execute(
                update(Application)
                .where(Application.id == application_id, Application.status == expected)
                .values(**values)
            )
            if result.rowcount != 1:
                session.rollback()
                return None

            entry = StatusHistoryEntry(
                application_id=application_id,
                from_status=expected,
                to_status=target,
                changed_by=changed_by,
                notes=notes,
                created_at=now,
            )
            session.add(entry)
            session.flush()

            if notification is not None:
                fields = dict(notification)
                fields.setdefault("bucket", str(entry.id))
                fields.setdefault("tier", "")
                session.add(Notification(read=False, created_at=now, **fields))

            session.commit()
            session.refresh(entry)
            return entry

    def history_for(self, application_id: int) -> list[StatusHistoryEntry]:
        """History entries of one application, oldest first."""
        with self._session() as session:
            q = (
                select(StatusHistoryEntry)
                .where(StatusHistoryEntry.application_id == application_id)
                .order_by(StatusHistoryEntry.created_at.asc(), StatusHistoryEntry.id.asc())
            )
            return list(session.scalars(q))

    def recent_history(
        self,
        student_id: str,
        limit: int = 10,
        since: Optional[datetime] = None,
    ) -> list[tuple[StatusHistoryEntry, Application]]:
        """Newest history entries across a student's applications."""
        with self._session() as session:
            q = (
                select(StatusHistoryEntry, Application)
                .join(Application, Application.id == StatusHistoryEntry.application_id)
                .where(Application.student_id == student_id)
            )
            if since is not None:
                q = q.where(StatusHistoryEntry.created_at >= since)
            q = q.order_by(StatusHistoryEntry.created_at.desc(), StatusHistoryEntry.id.desc())
            return [(entry, app) for entry, app in session.execute(q.limit(limit))]

    def count_history_since(self, student_id: str, since: datetime) -> int:
        with self._session() as session:
            q = (
                select(func.count(StatusHistoryEntry.id))
                .join(Application, Application.id == StatusHistoryEntry.application_id)
                .where(
                    Application.student_id == student_id,
                    StatusHistoryEntry.created_at >= since,
                )
            )
            return session.scalar(q) or 0

    # ---- Requirements ----

    def add_requirement(
        self,
        application_id: int,
        category: RequirementCategory,
        title: str,
        description: str = "",
        deadline: Optional[datetime] = None,
        status: RequirementStatus = RequirementStatus.NOT_STARTED,
    ) -> ApplicationRequirement:
        now = self.clock.now()
        with self._session() as session:
            req = ApplicationRequirement(
                application_id=application_id,
                category=category,
                title=title,
                description=description,
                status=status,
                deadline=deadline,
                created_at=now,
                updated_at=now,
            )
            session.add(req)
            session.commit()
            session.refresh(req)
            return req

    def requirements_for(self, application_id: int) -> list[ApplicationRequirement]:
        with self._session() as session:
            q = (
                select(ApplicationRequirement)
                .where(ApplicationRequirement.application_id == application_id)
                .order_by(ApplicationRequirement.id.asc())
            )
            return list(session.scalars(q))

    def get_requirement(
        self, requirement_id: int, owner_id: Optional[str] = None
    ) -> Optional[ApplicationRequirement]:
        with self._session() as session:
            q = (
                select(ApplicationRequirement, Application.student_id)
                .join(Application, Application.id == ApplicationRequirement.application_id)
                .where(ApplicationRequirement.id == requirement_id)
            )
            row = session.execute(q).first()
            if row is None:
                return None
            req, student_id = row
            if owner_id is not None and student_id != owner_id:
                return None
            return req

    def update_requirement(self, requirement_id: int, **fields) -> Optional[ApplicationRequirement]:
        with self._session() as session:
            req = session.get(ApplicationRequirement, requirement_id)
            if req is None:
                return None
            for key, val in fields.items():
                if hasattr(req, key):
                    setattr(req, key, val)
            req.updated_at = self.clock.now()
            session.commit()
            session.refresh(req)
            return req

    def append_requirement_note(self, requirement_id: int, note: str) -> Optional[ApplicationRequirement]:
        with self._session() as session:
            req = session.get(ApplicationRequirement, requirement_id)
            if req is None:
                return None
            now = self.clock.now()
            entry = f"[{now.strftime('%Y-%m-%d %H:%M')}] {note}"
            req.notes = f"{req.notes}\n{entry}" if req.notes else entry
            req.updated_at = now
            session.commit()
            session.refresh(req)
            return req

    def open_applications(
        self, student_id: str, deadline_until: datetime
    ) -> list[Application]:
        """Non-decided applications with a deadline on or before ``deadline_until``."""
        with self._session() as session:
            q = (
                select(Application)
                .where(
                    Application.student_id == student_id,
                    Application.status != ApplicationStatus.DECIDED,
                    Application.deadline <= deadline_until,
                )
                .order_by(Application.deadline.asc(), Application.id.asc())
            )
            return list(session.scalars(q))

    def open_requirements(
        self, student_id: str, deadline_until: datetime
    ) -> list[tuple[ApplicationRequirement, Application]]:
        """Incomplete requirements of non-decided applications due by ``deadline_until``."""
        with self._session() as session:
            q = (
                select(ApplicationRequirement, Application)
                .join(Application, Application.id == ApplicationRequirement.application_id)
                .where(
                    Application.student_id == student_id,
                    Application.status != ApplicationStatus.DECIDED,
                    ApplicationRequirement.status != RequirementStatus.COMPLETED,
                    ApplicationRequirement.deadline.is_not(None),
                    ApplicationRequirement.deadline <= deadline_until,
                )
                .order_by(ApplicationRequirement.deadline.asc(), ApplicationRequirement.id.asc())
            )
            return [(req, app) for req, app in session.execute(q)]

    # ---- Notifications ----

    def insert_notification_once(
        self,
        recipient_id: str,
        kind: NotificationKind,
        source_type: SourceType,
        source_id: int,
        title: str,
        message: str,
        tier: str = "",
        bucket: str = "",
    ) -> Optional[Notification]:
        """
        Insert a notification unless one with the same dedup key exists.

        Returns the new row, or None when the unique constraint rejected it.
        """
        with self._session() as session:
            notification = Notification(
                recipient_id=recipient_id,
                kind=kind,
                source_type=source_type,
                source_id=source_id,
                title=title,
                message=message,
                tier=tier,
                bucket=bucket,
                read=False,
                created_at=self.clock.now(),
            )
            session.add(notification)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return None
            session.refresh(notification)
            return notification

    def list_notifications(
        self,
        recipient_id: str,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        with self._session() as session:
            q = select(Notification).where(Notification.recipient_id == recipient_id)
            if unread_only:
                q = q.where(Notification.read.is_(False))
            q = q.order_by(Notification.created_at.desc(), Notification.id.desc())
            return list(session.scalars(q.offset(offset).limit(limit)))

    def count_unread(self, recipient_id: str) -> int:
        with self._session() as session:
            q = select(func.count(Notification.id)).where(
                Notification.recipient_id == recipient_id,
                Notification.read.is_(False),
            )
            return session.scalar(q) or 0

    def mark_notification_read(self, notification_id: int, recipient_id: str) -> bool:
        with self._session() as session:
            result = session.execute(
                update(Notification)
                .where(Notification.id == notification_id, Notification.recipient_id == recipient_id)
                .values(read=True)
            )
            session.commit()
            return result.rowcount > 0

    def mark_all_notifications_read(self, recipient_id: str) -> int:
        with self._session() as session:
            result = session.execute(
                update(Notification)
                .where(Notification.recipient_id == recipient_id, Notification.read.is_(False))
                .values(read=True)
            )
            session.commit()
            return result.rowcount

    def delete_notification(self, notification_id: int, recipient_id: str) -> bool:
        with self._session() as session:
            result = session.execute(
                delete(Notification)
                .where(Notification.id == notification_id, Notification.recipient_id == recipient_id)
            )
            session.commit()
            return result.rowcount > 0

    def purge_notifications(
        self,
        read_before: datetime,
        unread_before: Optional[datetime] = None,
    ) -> tuple[int, int]:
        """
        Delete read notifications created before ``read_before`` and, when
        given, unread ones created before ``unread_before``.

        Returns (read_deleted, unread_deleted).
        """
        with self._session() as session:
            read_result = session.execute(
                delete(Notification).where(
                    Notification.read.is_(True),
                    Notification.created_at < read_before,
                )
            )
            unread_deleted = 0
            if unread_before is not None:
                unread_result = session.execute(
                    delete(Notification).where(
                        Notification.read.is_(False),
                        Notification.created_at < unread_before,
                    )
                )
                unread_deleted = unread_result.rowcount
            session.commit()
            return read_result.rowcount, unread_deleted
