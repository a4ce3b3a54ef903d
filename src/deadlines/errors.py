"""Error conditions raised and reported by the deadline engine."""

from __future__ import annotations


class DeadlineError(Exception):
    """Base class for deadline engine errors."""


class DeadlineNotFound(DeadlineError):
    def __init__(self, deadline_id: str) -> None:
        self.deadline_id = deadline_id
        super().__init__(f"Deadline not found: {deadline_id}")


class InvalidDeadline(DeadlineError, ValueError):
    """A create or edit request would break a deadline invariant."""


class InvalidTransition(DeadlineError):
    """A status change the state machine does not allow.

    The message is meant to be shown to the user as the rejection reason.
    """

    def __init__(
        self,
        deadline_id: str,
        current: str,
        requested: str,
        reason: str | None = None,
    ) -> None:
        self.deadline_id = deadline_id
        self.current = current
        self.requested = requested
        self.reason = reason or f"cannot change status from {current} to {requested}"
        super().__init__(self.reason)


class MalformedRecurrence(DeadlineError, ValueError):
    """A recurrence pattern that cannot produce a next due date."""

    def __init__(self, pattern: str | None, reason: str = "unrecognised pattern") -> None:
        self.pattern = pattern
        super().__init__(f"Malformed recurrence pattern {pattern!r}: {reason}")


class TransportFailure(DeadlineError):
    """A reminder could not be delivered (error, refusal or timeout)."""

    def __init__(self, reminder_id: str, attempts: int, detail: str) -> None:
        self.reminder_id = reminder_id
        self.attempts = attempts
        self.detail = detail
        super().__init__(f"Reminder {reminder_id} not delivered (attempt {attempts}): {detail}")


class ConcurrentWriteLost(DeadlineError):
    """A conditional write found the row already changed by another writer."""
