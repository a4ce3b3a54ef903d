"""Rendering of reminder messages.

Messages are plain text. The first line is the headline (email subject,
bold Slack header); the rest is the body.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.config import settings

if TYPE_CHECKING:
    from datetime import datetime

    from src.deadlines.models import Deadline
    from src.deadlines.urgency import UrgencyClassifier


def headline(deadline: Deadline, days: int) -> str:
    if days < 0:
        overdue = -days
        return f"Overdue by {overdue} day{'s' if overdue != 1 else ''}: {deadline.title}"
    if days == 0:
        return f"Due today: {deadline.title}"
    if days == 1:
        return f"Due tomorrow: {deadline.title}"
    return f"Due in {days} days: {deadline.title}"


def deadline_link(deadline: Deadline) -> str | None:
    if not settings.app_base_url:
        return None
    base = settings.app_base_url.rstrip("/")
    return f"{base}/dashboard/labs/{deadline.lab_id}/deadlines"


def render_reminder(
    deadline: Deadline,
    now: datetime,
    classifier: UrgencyClassifier,
) -> str:
    """Render the reminder text for *deadline* as of *now*."""
    days = classifier.days_until(deadline, now)
    tier = classifier.classify(deadline, now)

    lines = [
        headline(deadline, days),
        "",
        f"{deadline.category.label} · {deadline.priority.value.capitalize()} priority"
        f" · {tier.label}",
        f"Due: {deadline.due_date.strftime('%A, %B %d, %Y').replace(' 0', ' ')}",
    ]
    if deadline.description:
        lines += ["", deadline.description]
    if deadline.completion_requirements:
        lines += ["", "Requirements:", deadline.completion_requirements]
    if deadline.external_url:
        lines += ["", f"Submission link: {deadline.external_url}"]
    link = deadline_link(deadline)
    if link:
        lines += ["", f"View deadlines: {link}"]
    return "\n".join(lines)
