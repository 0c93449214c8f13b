"""
Notification copy.

Titles and messages are Jinja2 templates rendered from a small context, so
the wording for "due today", "due soon" and "already missed" can differ
without branching in the scheduler.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from jinja2 import BaseLoader, Environment


STATUS_LABELS = {
    "not_started": "Not Started",
    "in_progress": "In Progress",
    "submitted": "Submitted",
    "under_review": "Under Review",
    "decided": "Decision Received",
}


TEMPLATES: dict[str, dict[str, str]] = {
    "application_reminder": {
        "title": "{% if days == 0 %}Application Due Today{% else %}Application Deadline Approaching{% endif %}",
        "message": (
            "Your application to {{ university }} is "
            "{% if days == 0 %}due today{% else %}due in {{ days }} day{{ 's' if days != 1 }}{% endif %} "
            "({{ deadline }})."
        ),
    },
    "requirement_reminder": {
        "title": "{% if days == 0 %}Requirement Due Today{% else %}Requirement Due Soon{% endif %}",
        "message": (
            "\"{{ title }}\" is "
            "{% if days == 0 %}due today{% else %}due in {{ days }} day{{ 's' if days != 1 }}{% endif %} "
            "({{ deadline }})."
        ),
    },
    "application_overdue": {
        "title": "Application Deadline Overdue",
        "message": (
            "Your application to {{ university }} is {{ overdue }} day{{ 's' if overdue != 1 }} "
            "overdue (was due {{ deadline }})."
        ),
    },
    "requirement_overdue": {
        "title": "Requirement Overdue",
        "message": (
            "\"{{ title }}\" is {{ overdue }} day{{ 's' if overdue != 1 }} "
            "overdue (was due {{ deadline }})."
        ),
    },
    "status_update": {
        "title": "Application Status Updated",
        "message": (
            "Your application to {{ university }} changed from "
            "\"{{ labels[from_status] }}\" to \"{{ labels[to_status] }}\"."
        ),
    },
    "decision_received": {
        "title": "Decision Received",
        "message": "{{ university }} has made a decision: you have been {{ decision }}.",
    },
}


@dataclass
class RenderedMessage:
    title: str
    message: str


class MessageRenderer:
    """
    Render notification titles and messages.

    Usage:
        renderer = MessageRenderer()
        msg = renderer.deadline_reminder(alert)
    """

    def __init__(self, templates: Optional[dict[str, dict[str, str]]] = None) -> None:
        self._jinja_env = Environment(
            loader=BaseLoader(),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._templates = dict(TEMPLATES)
        if templates:
            self._templates.update(templates)

    def _render(self, name: str, **ctx: Any) -> RenderedMessage:
        template = self._templates[name]
        ctx.setdefault("labels", STATUS_LABELS)
        title = self._jinja_env.from_string(template["title"]).render(**ctx)
        message = self._jinja_env.from_string(template["message"]).render(**ctx)
        return RenderedMessage(title=title, message=message)

    def deadline_reminder(self, alert) -> RenderedMessage:
        name = f"{alert.source_type.value}_reminder"
        return self._render(
            name,
            title=alert.title,
            university=alert.university,
            days=alert.days_until,
            deadline=_format_date(alert.deadline),
        )

    def overdue(self, alert) -> RenderedMessage:
        name = f"{alert.source_type.value}_overdue"
        return self._render(
            name,
            title=alert.title,
            university=alert.university,
            overdue=abs(alert.days_until),
            deadline=_format_date(alert.deadline),
        )

    def status_update(self, university: str, from_status: str, to_status: str) -> RenderedMessage:
        return self._render(
            "status_update",
            university=university,
            from_status=from_status,
            to_status=to_status,
        )

    def decision_received(self, university: str, decision: str) -> RenderedMessage:
        return self._render(
            "decision_received",
            university=university,
            decision=decision,
        )


def _format_date(d: datetime) -> str:
    return d.strftime("%B %d, %Y")
