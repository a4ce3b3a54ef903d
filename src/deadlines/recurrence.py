"""Recurrence patterns and expansion of recurring deadlines.

Patterns are short free-text strings as entered on the deadline form:

- ``daily``, ``weekly``, ``biweekly``, ``monthly``, ``quarterly``,
  ``yearly`` / ``annually``
- ``every N days`` / ``weeks`` / ``months`` / ``years`` (singular accepted,
  ``N`` optional: ``every month``)

The next due date is always computed from the *original* due date in whole
intervals, so a deadline left unattended for several cycles jumps straight
to the first future occurrence, and month-end dates clamp without drifting
(Jan 31 → Feb 29 → Mar 31, not Mar 29).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from dateutil.relativedelta import relativedelta

from src.deadlines.errors import MalformedRecurrence
from src.deadlines.models import DeadlineStatus, make_id

if TYPE_CHECKING:
    from src.deadlines.models import Deadline

logger = logging.getLogger(__name__)

_ALIASES: dict[str, tuple[str, int]] = {
    "daily": ("days", 1),
    "weekly": ("weeks", 1),
    "biweekly": ("weeks", 2),
    "fortnightly": ("weeks", 2),
    "monthly": ("months", 1),
    "quarterly": ("months", 3),
    "yearly": ("years", 1),
    "annually": ("years", 1),
}

_EVERY_RE = re.compile(r"^every\s+(?:(-?\d+)\s+)?(day|week|month|year)s?$")

# Statuses that close out a cycle and call for the next one.
_EXPANDABLE = frozenset({DeadlineStatus.COMPLETED, DeadlineStatus.MISSED})


@dataclass(frozen=True)
class RecurrencePattern:
    unit: str
    interval: int

    def offset(self, cycles: int) -> relativedelta:
        """The distance covered by *cycles* whole intervals."""
        return relativedelta(**{self.unit: self.interval * cycles})

    def __str__(self) -> str:
        unit = self.unit if self.interval != 1 else self.unit[:-1]
        return f"every {self.interval} {unit}"


def parse_recurrence(text: str | None) -> RecurrencePattern:
    """Parse a recurrence pattern string. Raises MalformedRecurrence."""
    if not text or not text.strip():
        raise MalformedRecurrence(text, "pattern is empty")

    normalized = " ".join(text.strip().lower().split())
    if normalized in _ALIASES:
        unit, interval = _ALIASES[normalized]
        return RecurrencePattern(unit, interval)

    match = _EVERY_RE.match(normalized)
    if match is None:
        raise MalformedRecurrence(text)

    interval = int(match.group(1)) if match.group(1) else 1
    if interval <= 0:
        raise MalformedRecurrence(text, "interval must be positive")
    return RecurrencePattern(match.group(2) + "s", interval)


def next_due_date(original: date, pattern: RecurrencePattern, today: date) -> date:
    """First occurrence strictly after *today*, at least one interval past *original*."""
    if pattern.unit in ("days", "weeks"):
        step = pattern.interval * (7 if pattern.unit == "weeks" else 1)
        cycles = 1
        if original <= today:
            cycles = (today - original).days // step + 1
        return original + timedelta(days=step * cycles)

    months_per_cycle = pattern.interval * (12 if pattern.unit == "years" else 1)
    elapsed_months = (today.year - original.year) * 12 + (today.month - original.month)
    cycles = max(1, elapsed_months // months_per_cycle)
    candidate = original + pattern.offset(cycles)
    while candidate <= today:
        cycles += 1
        candidate = original + pattern.offset(cycles)
    return candidate


class RecurrenceExpander:
    """Creates the next instance of a recurring deadline."""

    def is_expandable(self, deadline: Deadline) -> bool:
        return deadline.is_recurring and deadline.status in _EXPANDABLE

    def next_instance(self, deadline: Deadline, today: date, now: datetime) -> Deadline:
        """Build the next instance. Raises MalformedRecurrence."""
        pattern = parse_recurrence(deadline.recurrence_pattern)
        due = next_due_date(deadline.due_date, pattern, today)
        return replace(
            deadline,
            id=make_id(),
            due_date=due,
            status=DeadlineStatus.PENDING,
            recurrence_parent_id=deadline.id,
            reminder_schedule=list(deadline.reminder_schedule),
            reminder_recipients=list(deadline.reminder_recipients),
            tags=list(deadline.tags),
            created_at=now,
            updated_at=now,
            completed_at=None,
            completed_by=None,
            completion_notes=None,
        )

    def expand(self, deadline: Deadline, today: date, now: datetime) -> Deadline | None:
        """Return the next instance, or None when the deadline does not recur.

        A malformed pattern is logged and skipped; the source deadline stays
        in its terminal state with no successor.
        """
        if not self.is_expandable(deadline):
            return None
        try:
            instance = self.next_instance(deadline, today, now)
        except MalformedRecurrence as exc:
            logger.warning(
                "Skipping recurrence for deadline %s ('%s'): %s",
                deadline.id,
                deadline.title,
                exc,
            )
            return None
        logger.info(
            "Expanded recurring deadline %s ('%s') → %s due %s",
            deadline.id,
            deadline.title,
            instance.id,
            instance.due_date.isoformat(),
        )
        return instance
