"""Deadline tracking: models, persistence, lifecycle and reminder planning."""

from src.deadlines.errors import (
    ConcurrentWriteLost,
    DeadlineError,
    DeadlineNotFound,
    InvalidDeadline,
    InvalidTransition,
    MalformedRecurrence,
    TransportFailure,
)
from src.deadlines.lifecycle import LifecycleManager
from src.deadlines.models import (
    Deadline,
    DeadlineCategory,
    DeadlineStatus,
    Priority,
    Reminder,
    ReminderState,
    UrgencyTier,
)
from src.deadlines.planner import ReminderPlanner
from src.deadlines.recurrence import RecurrenceExpander, parse_recurrence
from src.deadlines.schemas import DeadlineDraft, DeadlinePatch
from src.deadlines.service import DeadlineService
from src.deadlines.store import DeadlineStore
from src.deadlines.urgency import UrgencyClassifier

__all__ = [
    "ConcurrentWriteLost",
    "Deadline",
    "DeadlineCategory",
    "DeadlineDraft",
    "DeadlineError",
    "DeadlineNotFound",
    "DeadlinePatch",
    "DeadlineService",
    "DeadlineStatus",
    "DeadlineStore",
    "InvalidDeadline",
    "InvalidTransition",
    "LifecycleManager",
    "MalformedRecurrence",
    "Priority",
    "RecurrenceExpander",
    "Reminder",
    "ReminderPlanner",
    "ReminderState",
    "TransportFailure",
    "UrgencyClassifier",
    "UrgencyTier",
    "parse_recurrence",
]
