"""Deadline and Reminder data models."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import StrEnum


class DeadlineStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    MISSED = "missed"
    CANCELLED = "cancelled"


OPEN_STATUSES = frozenset({DeadlineStatus.PENDING, DeadlineStatus.IN_PROGRESS})
TERMINAL_STATUSES = frozenset(
    {DeadlineStatus.COMPLETED, DeadlineStatus.MISSED, DeadlineStatus.CANCELLED}
)
# Statuses that no longer need anyone's attention (missed still does).
RESOLVED_STATUSES = frozenset({DeadlineStatus.COMPLETED, DeadlineStatus.CANCELLED})


class DeadlineCategory(StrEnum):
    GRANT_DEADLINE = "grant_deadline"
    PAPER_SUBMISSION = "paper_submission"
    CONFERENCE_ABSTRACT = "conference_abstract"
    IRB_SUBMISSION = "irb_submission"
    ETHICS_REVIEW = "ethics_review"
    DATA_COLLECTION = "data_collection"
    ANALYSIS_COMPLETION = "analysis_completion"
    MILESTONE = "milestone"
    PRESENTATION = "presentation"
    MEETING = "meeting"
    OTHER = "other"

    @property
    def label(self) -> str:
        """Human-readable name, e.g. ``"Irb Submission"`` → ``"IRB Submission"``."""
        words = self.value.split("_")
        return " ".join(w.upper() if w == "irb" else w.capitalize() for w in words)


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class UrgencyTier(StrEnum):
    """Display bucket derived from due date and status. Never persisted."""

    OVERDUE = "overdue"
    DUE_TODAY = "due_today"
    DUE_THIS_WEEK = "due_this_week"
    DUE_SOON = "due_soon"
    UPCOMING = "upcoming"
    RESOLVED = "resolved"

    @property
    def rank(self) -> int:
        """Sort key: most pressing first, resolved last."""
        return _URGENCY_ORDER.index(self)

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


_URGENCY_ORDER = list(UrgencyTier)


class ReminderState(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    RETIRED = "retired"


def make_id() -> str:
    """Generate a new deadline or reminder ID."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_iso(value: datetime | None) -> str | None:
    """Serialize a timestamp as fixed-width UTC ISO 8601 (sorts lexically)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


# -- Deadline ------------------------------------------------------------------


@dataclass
class Deadline:
    """A tracked, time-bound obligation owned by a lab.

    Attributes:
        id: Unique identifier (UUID hex).
        lab_id: Owning lab (tenant).
        title: Short name shown in lists and reminders.
        category: One of :class:`DeadlineCategory`.
        due_date: Calendar date; the deadline is due by the end of that day.
        priority: One of :class:`Priority`.
        status: One of :class:`DeadlineStatus`.
        notification_lead_days: Days before the due date for the main reminder.
        reminder_schedule: Additional lead days, each producing its own reminder.
        reminder_recipients: Explicit recipients; falls back to the responsible
            party, then the creator.
        notification_channel: Channel name override (None → router default).
        is_recurring: Whether completing/missing this deadline spawns the next one.
        recurrence_pattern: e.g. ``"monthly"`` or ``"every 2 weeks"``.
        recurrence_parent_id: The deadline this instance was expanded from.
    """

    id: str
    lab_id: str
    title: str
    category: DeadlineCategory
    due_date: date
    priority: Priority = Priority.MEDIUM
    status: DeadlineStatus = DeadlineStatus.PENDING
    description: str = ""
    responsible_party: str | None = None
    external_url: str | None = None
    completion_requirements: str | None = None
    notification_lead_days: int = 7
    reminder_schedule: list[int] = field(default_factory=list)
    reminder_recipients: list[str] = field(default_factory=list)
    notification_channel: str | None = None
    is_recurring: bool = False
    recurrence_pattern: str | None = None
    recurrence_parent_id: str | None = None
    tags: list[str] = field(default_factory=list)
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    completed_by: str | None = None
    completion_notes: str | None = None

    def __post_init__(self) -> None:
        self.category = DeadlineCategory(self.category)
        self.priority = Priority(self.priority)
        self.status = DeadlineStatus(self.status)
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    # -- Convenience properties ------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def lead_times(self) -> list[int]:
        """All configured lead days, largest (earliest reminder) first."""
        return sorted({self.notification_lead_days, *self.reminder_schedule}, reverse=True)

    @property
    def recipients(self) -> list[str]:
        if self.reminder_recipients:
            return list(dict.fromkeys(self.reminder_recipients))
        if self.responsible_party:
            return [self.responsible_party]
        if self.created_by:
            return [self.created_by]
        return []

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching ``DEADLINE_COLUMNS``."""
        return (
            self.id,
            self.lab_id,
            self.title,
            self.category.value,
            self.due_date.isoformat(),
            self.priority.value,
            self.status.value,
            self.description,
            self.responsible_party,
            self.external_url,
            self.completion_requirements,
            self.notification_lead_days,
            json.dumps(self.reminder_schedule),
            json.dumps(self.reminder_recipients),
            self.notification_channel,
            int(self.is_recurring),
            self.recurrence_pattern,
            self.recurrence_parent_id,
            json.dumps(self.tags),
            self.created_by,
            to_iso(self.created_at),
            to_iso(self.updated_at),
            to_iso(self.completed_at),
            self.completed_by,
            self.completion_notes,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Deadline:
        """Deserialize from a row selected in ``DEADLINE_COLUMNS`` order."""
        return cls(
            id=row[0],
            lab_id=row[1],
            title=row[2],
            category=DeadlineCategory(row[3]),
            due_date=date.fromisoformat(row[4]),
            priority=Priority(row[5]),
            status=DeadlineStatus(row[6]),
            description=row[7] or "",
            responsible_party=row[8],
            external_url=row[9],
            completion_requirements=row[10],
            notification_lead_days=int(row[11]),
            reminder_schedule=json.loads(row[12] or "[]"),
            reminder_recipients=json.loads(row[13] or "[]"),
            notification_channel=row[14],
            is_recurring=bool(row[15]),
            recurrence_pattern=row[16],
            recurrence_parent_id=row[17],
            tags=json.loads(row[18] or "[]"),
            created_by=row[19],
            created_at=from_iso(row[20]),
            updated_at=from_iso(row[21]),
            completed_at=from_iso(row[22]),
            completed_by=row[23],
            completion_notes=row[24],
        )


DEADLINE_COLUMNS = (
    "id",
    "lab_id",
    "title",
    "category",
    "due_date",
    "priority",
    "status",
    "description",
    "responsible_party",
    "external_url",
    "completion_requirements",
    "notification_lead_days",
    "reminder_schedule",
    "reminder_recipients",
    "notification_channel",
    "is_recurring",
    "recurrence_pattern",
    "recurrence_parent_id",
    "tags",
    "created_by",
    "created_at",
    "updated_at",
    "completed_at",
    "completed_by",
    "completion_notes",
)


# -- Reminder ------------------------------------------------------------------


@dataclass
class Reminder:
    """A scheduled, at-most-once notification for one deadline and lead time.

    ``sent_at`` is written once by the dispatcher; ``retired_at`` marks a
    reminder that re-planning made obsolete before it fired. Neither row is
    ever deleted.
    """

    id: str
    deadline_id: str
    lab_id: str
    lead_days: int
    due_date: date
    recipient: str
    fire_at: datetime
    channel: str | None = None
    created_at: datetime | None = None
    sent_at: datetime | None = None
    retired_at: datetime | None = None
    attempts: int = 0
    last_attempt_at: datetime | None = None
    last_error: str | None = None
    claim_token: str | None = None
    claimed_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.created_at is None:
            self.created_at = utcnow()

    @property
    def state(self) -> ReminderState:
        if self.sent_at is not None:
            return ReminderState.SENT
        if self.retired_at is not None:
            return ReminderState.RETIRED
        return ReminderState.PENDING

    @property
    def key(self) -> tuple[str, int, str]:
        """Idempotency key: at most one live reminder per key."""
        return (self.deadline_id, self.lead_days, self.recipient)

    def to_row(self) -> tuple:
        """Serialize to a tuple matching ``REMINDER_COLUMNS``."""
        return (
            self.id,
            self.deadline_id,
            self.lab_id,
            self.lead_days,
            self.due_date.isoformat(),
            self.recipient,
            self.channel,
            to_iso(self.fire_at),
            to_iso(self.created_at),
            to_iso(self.sent_at),
            to_iso(self.retired_at),
            self.attempts,
            to_iso(self.last_attempt_at),
            self.last_error,
            self.claim_token,
            to_iso(self.claimed_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Reminder:
        return cls(
            id=row[0],
            deadline_id=row[1],
            lab_id=row[2],
            lead_days=int(row[3]),
            due_date=date.fromisoformat(row[4]),
            recipient=row[5],
            channel=row[6],
            fire_at=from_iso(row[7]),
            created_at=from_iso(row[8]),
            sent_at=from_iso(row[9]),
            retired_at=from_iso(row[10]),
            attempts=int(row[11] or 0),
            last_attempt_at=from_iso(row[12]),
            last_error=row[13],
            claim_token=row[14],
            claimed_at=from_iso(row[15]),
        )


REMINDER_COLUMNS = (
    "id",
    "deadline_id",
    "lab_id",
    "lead_days",
    "due_date",
    "recipient",
    "channel",
    "fire_at",
    "created_at",
    "sent_at",
    "retired_at",
    "attempts",
    "last_attempt_at",
    "last_error",
    "claim_token",
    "claimed_at",
)
