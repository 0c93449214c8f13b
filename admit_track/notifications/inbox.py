"""
Recipient-scoped access to persisted notifications.
"""

from __future__ import annotations

from admit_track.errors import NotFound, ValidationFailed
from admit_track.tracker.models import Notification
from admit_track.tracker.store import TrackerStore


MAX_PAGE_SIZE = 100


class NotificationInbox:
    """
    List, mark read, and delete a recipient's notifications.

    Every operation is scoped to ``recipient_id``; another user's
    notification is reported as not found.
    """

    def __init__(self, store: TrackerStore) -> None:
        self.store = store

    def list_notifications(
        self,
        recipient_id: str,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationFailed(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationFailed("offset must not be negative")
        return self.store.list_notifications(
            recipient_id, unread_only=unread_only, limit=limit, offset=offset
        )

    def unread_count(self, recipient_id: str) -> int:
        return self.store.count_unread(recipient_id)

    def mark_read(self, notification_id: int, recipient_id: str) -> None:
        if not self.store.mark_notification_read(notification_id, recipient_id):
            raise NotFound("Notification", notification_id)

    def mark_all_read(self, recipient_id: str) -> int:
        return self.store.mark_all_notifications_read(recipient_id)

    def delete(self, notification_id: int, recipient_id: str) -> None:
        if not self.store.delete_notification(notification_id, recipient_id):
            raise NotFound("Notification", notification_id)

    def page(
        self,
        recipient_id: str,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> dict:
        items = self.list_notifications(recipient_id, unread_only=unread_only, limit=limit, offset=offset)
        return {
            "notifications": [n.to_dict() for n in items],
            "limit": limit,
            "offset": offset,
            "unread": self.unread_count(recipient_id),
            "next_offset": offset + limit if len(items) == limit else None,
        }
