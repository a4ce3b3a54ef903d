"""Validated input models for creating and editing deadlines."""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.config import settings
from src.deadlines.errors import MalformedRecurrence
from src.deadlines.models import (
    Deadline,
    DeadlineCategory,
    DeadlineStatus,
    Priority,
    make_id,
)
from src.deadlines.recurrence import parse_recurrence

LeadDays = Annotated[int, Field(ge=0)]

_NOT_NULLABLE = frozenset({
    "title",
    "category",
    "due_date",
    "priority",
    "description",
    "notification_lead_days",
    "reminder_schedule",
    "reminder_recipients",
    "is_recurring",
    "tags",
})


def _check_pattern(is_recurring: bool | None, pattern: str | None) -> None:
    if not is_recurring:
        return
    if not pattern:
        msg = "recurring deadlines need a recurrence_pattern"
        raise ValueError(msg)
    try:
        parse_recurrence(pattern)
    except MalformedRecurrence as exc:
        raise ValueError(str(exc)) from exc


class DeadlineDraft(BaseModel):
    """Fields a lab member supplies when creating a deadline."""

    lab_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=500)
    category: DeadlineCategory = DeadlineCategory.OTHER
    due_date: date
    priority: Priority = Priority.MEDIUM
    status: DeadlineStatus = DeadlineStatus.PENDING
    description: str = ""
    responsible_party: str | None = None
    external_url: str | None = None
    completion_requirements: str | None = None
    notification_lead_days: LeadDays = Field(
        default_factory=lambda: settings.default_notification_lead_days
    )
    reminder_schedule: list[LeadDays] = Field(default_factory=list)
    reminder_recipients: list[str] = Field(default_factory=list)
    notification_channel: str | None = None
    is_recurring: bool = False
    recurrence_pattern: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_by: str | None = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "title must not be blank"
            raise ValueError(msg)
        return value

    @field_validator("status")
    @classmethod
    def _open_status(cls, value: DeadlineStatus) -> DeadlineStatus:
        if value not in (DeadlineStatus.PENDING, DeadlineStatus.IN_PROGRESS):
            msg = "new deadlines start as pending or in_progress"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def _recurrence_consistent(self) -> DeadlineDraft:
        _check_pattern(self.is_recurring, self.recurrence_pattern)
        return self

    def to_deadline(self, now: datetime) -> Deadline:
        """Build a new Deadline with a fresh id."""
        return Deadline(id=make_id(), created_at=now, updated_at=now, **self.model_dump())


class DeadlinePatch(BaseModel):
    """A partial edit. Only explicitly provided fields are applied.

    Status is deliberately absent: status changes go through ``set_status``
    so the state machine sees them.
    """

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=500)
    category: DeadlineCategory | None = None
    due_date: date | None = None
    priority: Priority | None = None
    description: str | None = None
    responsible_party: str | None = None
    external_url: str | None = None
    completion_requirements: str | None = None
    notification_lead_days: LeadDays | None = None
    reminder_schedule: list[LeadDays] | None = None
    reminder_recipients: list[str] | None = None
    notification_channel: str | None = None
    is_recurring: bool | None = None
    recurrence_pattern: str | None = None
    tags: list[str] | None = None

    @model_validator(mode="after")
    def _no_null_required(self) -> DeadlinePatch:
        cleared = sorted(
            name
            for name in self.model_fields_set & _NOT_NULLABLE
            if getattr(self, name) is None
        )
        if cleared:
            msg = f"cannot clear required field(s): {', '.join(cleared)}"
            raise ValueError(msg)
        return self

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually set, including explicit ``None``s."""
        return self.model_dump(exclude_unset=True)

    @staticmethod
    def validate_result(merged: Deadline) -> None:
        """Check invariants on the deadline as it would look after the edit."""
        _check_pattern(merged.is_recurring, merged.recurrence_pattern)
