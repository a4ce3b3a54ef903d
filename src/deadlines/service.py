"""DeadlineService: the operations the dashboard and API call."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from src.deadlines.errors import ConcurrentWriteLost, DeadlineNotFound, InvalidDeadline
from src.deadlines.models import DeadlineStatus, utcnow
from src.deadlines.schemas import DeadlineDraft, DeadlinePatch
from src.deadlines.urgency import UrgencyClassifier

if TYPE_CHECKING:
    from datetime import datetime

    from src.deadlines.lifecycle import LifecycleManager
    from src.deadlines.models import Deadline, Reminder, UrgencyTier
    from src.deadlines.planner import ReminderPlanner
    from src.deadlines.store import DeadlineStore
    from src.scheduler.engine import SchedulerLoop, TickResult

logger = logging.getLogger(__name__)

# Edits to any of these change which reminders a deadline should have.
_REPLAN_FIELDS = frozenset({
    "due_date",
    "notification_lead_days",
    "reminder_schedule",
    "reminder_recipients",
    "responsible_party",
    "notification_channel",
    "is_recurring",
    "recurrence_pattern",
})

_EDIT_ATTEMPTS = 3


class DeadlineService:
    """Create, edit and close deadlines, keeping their reminders in step.

    Args:
        store: DeadlineStore for persistence.
        planner: ReminderPlanner that re-plans reminders after changes.
        lifecycle: LifecycleManager for status transitions.
        loop: SchedulerLoop behind ``run_scheduler_tick`` (optional).
        classifier: UrgencyClassifier for ``classify_urgency``.
    """

    def __init__(
        self,
        store: DeadlineStore,
        planner: ReminderPlanner,
        lifecycle: LifecycleManager,
        loop: SchedulerLoop | None = None,
        classifier: UrgencyClassifier | None = None,
    ) -> None:
        self._store = store
        self._planner = planner
        self._lifecycle = lifecycle
        self._loop = loop
        self._classifier = classifier or UrgencyClassifier()

    # -- Writes ----------------------------------------------------------------

    async def create_deadline(
        self,
        draft: DeadlineDraft | dict[str, Any],
        *,
        now: datetime | None = None,
    ) -> Deadline:
        """Persist a new deadline and plan its reminders.

        Raises InvalidDeadline if *draft* is a dict that fails validation.
        """
        now = now or utcnow()
        if not isinstance(draft, DeadlineDraft):
            try:
                draft = DeadlineDraft.model_validate(draft)
            except ValidationError as exc:
                raise InvalidDeadline(str(exc)) from exc

        deadline = draft.to_deadline(now)
        await self._store.add_deadline(deadline)
        await self._planner.apply(deadline, now)
        return deadline

    async def edit_deadline(
        self,
        deadline_id: str,
        patch: DeadlinePatch | dict[str, Any],
        *,
        now: datetime | None = None,
    ) -> Deadline:
        """Apply a partial edit and re-plan reminders if scheduling inputs changed.

        The write is guarded by the status read just before it; if a status
        change lands in between, the edit is re-validated against the new
        state and retried. Raises DeadlineNotFound, or InvalidDeadline when
        the result would break an invariant (including moving the due date
        of a deadline that is, or has meanwhile become, completed).
        """
        now = now or utcnow()
        if not isinstance(patch, DeadlinePatch):
            try:
                patch = DeadlinePatch.model_validate(patch)
            except ValidationError as exc:
                raise InvalidDeadline(str(exc)) from exc

        for _ in range(_EDIT_ATTEMPTS):
            current = await self._store.get_deadline(deadline_id)
            if current is None:
                raise DeadlineNotFound(deadline_id)

            changes = {
                name: value
                for name, value in patch.changes().items()
                if getattr(current, name) != value
            }
            if not changes:
                return current

            if "due_date" in changes and current.status == DeadlineStatus.COMPLETED:
                msg = "the due date of a completed deadline cannot be changed"
                raise InvalidDeadline(msg)

            edited = replace(current, **changes, updated_at=now)
            try:
                DeadlinePatch.validate_result(edited)
            except ValueError as exc:
                raise InvalidDeadline(str(exc)) from exc

            if await self._store.update_deadline(edited, expected_status=current.status):
                break
            logger.debug("Edit of deadline %s raced a status change; retrying", deadline_id)
        else:
            msg = f"deadline {deadline_id} kept changing status during the edit"
            raise ConcurrentWriteLost(msg)

        logger.info("Edited deadline %s: %s", deadline_id, ", ".join(sorted(changes)))
        if _REPLAN_FIELDS & changes.keys():
            await self._planner.apply(edited, now)
        return edited

    async def set_status(
        self,
        deadline_id: str,
        new_status: DeadlineStatus | str,
        *,
        actor_id: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> Deadline:
        """Change a deadline's status through the state machine."""
        return await self._lifecycle.set_status(
            deadline_id, new_status, actor_id=actor_id, notes=notes, now=now
        )

    # -- Reads -----------------------------------------------------------------

    def classify_urgency(self, deadline: Deadline, now: datetime | None = None) -> UrgencyTier:
        return self._classifier.classify(deadline, now or utcnow())

    async def get_deadline(self, deadline_id: str) -> Deadline:
        deadline = await self._store.get_deadline(deadline_id)
        if deadline is None:
            raise DeadlineNotFound(deadline_id)
        return deadline

    async def list_deadlines(self, lab_id: str, *, include_terminal: bool = True) -> list[Deadline]:
        return await self._store.list_deadlines(lab_id, include_terminal=include_terminal)

    async def list_reminders(self, deadline_id: str) -> list[Reminder]:
        return await self._store.list_reminders(deadline_id)

    # -- Scheduling ------------------------------------------------------------

    async def run_scheduler_tick(self, now: datetime | None = None) -> TickResult | None:
        """Run one scheduler tick on demand (None if a tick is already running)."""
        if self._loop is None:
            msg = "DeadlineService was created without a SchedulerLoop"
            raise RuntimeError(msg)
        return await self._loop.run_tick(now)
