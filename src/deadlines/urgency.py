"""Urgency classification: pure mapping of (due date, status, now) to a tier."""

from __future__ import annotations

from datetime import UTC, date, datetime, tzinfo
from typing import TYPE_CHECKING

from src.config import settings
from src.deadlines.models import RESOLVED_STATUSES, DeadlineStatus, UrgencyTier

if TYPE_CHECKING:
    from src.deadlines.models import Deadline


def local_today(now: datetime, tz: tzinfo | None = None) -> date:
    """The calendar date of *now* in *tz* (naive datetimes are taken as UTC)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return now.astimezone(tz or UTC).date()


def days_until(due_date: date, now: datetime, tz: tzinfo | None = None) -> int:
    """Whole calendar days from *now* to *due_date*.

    A deadline is due by the end of its due day, so anything due later today
    is ``0`` and the first moment of the following day is already ``-1``.
    """
    return (due_date - local_today(now, tz)).days


def classify(
    due_date: date,
    status: DeadlineStatus | str,
    now: datetime,
    *,
    tz: tzinfo | None = None,
    due_this_week_days: int = 3,
    due_soon_days: int = 7,
) -> UrgencyTier:
    """Map a deadline's due date and status to its urgency tier at *now*."""
    if DeadlineStatus(status) in RESOLVED_STATUSES:
        return UrgencyTier.RESOLVED

    remaining = days_until(due_date, now, tz)
    if remaining < 0:
        return UrgencyTier.OVERDUE
    if remaining == 0:
        return UrgencyTier.DUE_TODAY
    if remaining <= due_this_week_days:
        return UrgencyTier.DUE_THIS_WEEK
    if remaining <= due_soon_days:
        return UrgencyTier.DUE_SOON
    return UrgencyTier.UPCOMING


class UrgencyClassifier:
    """Binds tier thresholds and the display timezone from settings."""

    def __init__(
        self,
        *,
        tz: tzinfo | None = None,
        due_this_week_days: int | None = None,
        due_soon_days: int | None = None,
    ) -> None:
        self._tz = tz or settings.get_timezone()
        self._due_this_week_days = (
            settings.urgency_due_this_week_days
            if due_this_week_days is None
            else due_this_week_days
        )
        self._due_soon_days = (
            settings.urgency_due_soon_days if due_soon_days is None else due_soon_days
        )
        if self._due_soon_days < self._due_this_week_days:
            msg = "due_soon_days must not be smaller than due_this_week_days"
            raise ValueError(msg)

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def classify(self, deadline: Deadline, now: datetime) -> UrgencyTier:
        return classify(
            deadline.due_date,
            deadline.status,
            now,
            tz=self._tz,
            due_this_week_days=self._due_this_week_days,
            due_soon_days=self._due_soon_days,
        )

    def days_until(self, deadline: Deadline, now: datetime) -> int:
        return days_until(deadline.due_date, now, self._tz)
