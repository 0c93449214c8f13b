"""
Notification copy and recipient inboxes.
"""

from admit_track.notifications.messages import MessageRenderer, RenderedMessage
from admit_track.notifications.inbox import NotificationInbox

__all__ = [
    "MessageRenderer",
    "RenderedMessage",
    "NotificationInbox",
]
