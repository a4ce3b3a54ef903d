"""LifecycleManager: the deadline status state machine.

::

    pending ──► in_progress ──► completed | missed | cancelled
       └────────────────────────► completed | missed | cancelled

``completed``, ``missed`` and ``cancelled`` are terminal.  Users may start,
complete or cancel an open deadline; only the time-driven sweep marks one
``missed``.  Every status write is a compare-and-set on the status read
just before, so a user completing a deadline and the sweep missing it can
race safely: whichever commits first wins and the other is rejected.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, tzinfo
from typing import TYPE_CHECKING

from src.config import settings
from src.deadlines.errors import DeadlineNotFound, InvalidTransition
from src.deadlines.models import OPEN_STATUSES, DeadlineStatus, utcnow
from src.deadlines.recurrence import RecurrenceExpander
from src.deadlines.urgency import local_today

if TYPE_CHECKING:
    from src.deadlines.models import Deadline
    from src.deadlines.planner import ReminderPlanner
    from src.deadlines.store import DeadlineStore

logger = logging.getLogger(__name__)

USER_TRANSITIONS: dict[DeadlineStatus, frozenset[DeadlineStatus]] = {
    DeadlineStatus.PENDING: frozenset({
        DeadlineStatus.IN_PROGRESS,
        DeadlineStatus.COMPLETED,
        DeadlineStatus.CANCELLED,
    }),
    DeadlineStatus.IN_PROGRESS: frozenset({
        DeadlineStatus.COMPLETED,
        DeadlineStatus.CANCELLED,
    }),
}


def can_transition(
    current: DeadlineStatus,
    new: DeadlineStatus,
    *,
    automatic: bool = False,
) -> bool:
    """Whether the state machine allows *current* → *new*."""
    if automatic:
        return current in OPEN_STATUSES and new == DeadlineStatus.MISSED
    return new in USER_TRANSITIONS.get(current, frozenset())


def _rejection_reason(current: DeadlineStatus, new: DeadlineStatus) -> str:
    if current not in OPEN_STATUSES:
        return f"deadline is already {current.value} and can no longer change status"
    if new == DeadlineStatus.MISSED:
        return "deadlines are marked missed automatically once their due date passes"
    return f"cannot change status from {current.value} to {new.value}"


class LifecycleManager:
    """Applies user and time-driven status transitions.

    Args:
        store: DeadlineStore for reads and conditional writes.
        planner: ReminderPlanner used to retire reminders of closed deadlines
            and to plan reminders for freshly expanded instances.
        expander: RecurrenceExpander (a default one is created if omitted).
        tz: Timezone that decides which calendar day "today" is.
    """

    def __init__(
        self,
        store: DeadlineStore,
        planner: ReminderPlanner,
        expander: RecurrenceExpander | None = None,
        *,
        tz: tzinfo | None = None,
    ) -> None:
        self._store = store
        self._planner = planner
        self._expander = expander or RecurrenceExpander()
        self._tz = tz or settings.get_timezone()

    # -- User-driven -----------------------------------------------------------

    async def set_status(
        self,
        deadline_id: str,
        new_status: DeadlineStatus | str,
        *,
        actor_id: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> Deadline:
        """Apply a user-requested status change.

        Raises DeadlineNotFound, or InvalidTransition when the change is not
        allowed or another writer moved the deadline first. The stored status
        is unchanged whenever InvalidTransition is raised.
        """
        now = now or utcnow()
        deadline = await self._store.get_deadline(deadline_id)
        if deadline is None:
            raise DeadlineNotFound(deadline_id)

        try:
            new = DeadlineStatus(new_status)
        except ValueError:
            raise InvalidTransition(
                deadline_id,
                deadline.status.value,
                str(new_status),
                reason=f"unknown status: {new_status}",
            ) from None

        if not can_transition(deadline.status, new):
            raise InvalidTransition(
                deadline_id,
                deadline.status.value,
                new.value,
                reason=_rejection_reason(deadline.status, new),
            )

        won = await self._store.compare_and_set_status(
            deadline_id, deadline.status, new, now=now, actor_id=actor_id, notes=notes
        )
        if not won:
            current = await self._store.get_deadline(deadline_id)
            current_status = current.status if current else deadline.status
            logger.info(
                "Status change %s → %s on %s lost to a concurrent update (now %s)",
                deadline.status.value,
                new.value,
                deadline_id,
                current_status.value,
            )
            raise InvalidTransition(
                deadline_id,
                current_status.value,
                new.value,
                reason=f"deadline was changed to {current_status.value} in the meantime",
            )

        updated = await self._store.get_deadline(deadline_id)
        if updated is None:
            raise DeadlineNotFound(deadline_id)
        await self._after_close(updated, now)
        await self.expand(updated, now)
        return updated

    # -- Time-driven -----------------------------------------------------------

    async def sweep(self, now: datetime | None = None) -> list[Deadline]:
        """Mark every open deadline whose due date has passed as missed.

        Returns the deadlines this sweep transitioned. Running it again with
        the same *now* finds nothing left to do.
        """
        now = now or utcnow()
        today = local_today(now, self._tz)
        candidates = await self._store.list_open_past_due(today)

        missed: list[Deadline] = []
        for deadline in candidates:
            try:
                won = await self._store.compare_and_set_status(
                    deadline.id, deadline.status, DeadlineStatus.MISSED, now=now
                )
                if not won:
                    logger.debug(
                        "Deadline %s changed before it could be marked missed", deadline.id
                    )
                    continue
                closed = replace(deadline, status=DeadlineStatus.MISSED, updated_at=now)
                await self._after_close(closed, now)
                missed.append(closed)
            except Exception:
                logger.exception("Failed to mark deadline %s missed", deadline.id)

        if missed:
            logger.info("Lifecycle sweep marked %d deadline(s) missed", len(missed))
        return missed

    # -- Recurrence ------------------------------------------------------------

    async def expand(self, deadline: Deadline, now: datetime | None = None) -> Deadline | None:
        """Persist the next instance of a closed recurring deadline.

        At most one successor exists per deadline; if another writer got
        there first this returns None.
        """
        now = now or utcnow()
        if not self._expander.is_expandable(deadline):
            return None
        if await self._store.get_successor(deadline.id) is not None:
            logger.debug("Deadline %s already has a successor", deadline.id)
            return None

        instance = self._expander.expand(deadline, local_today(now, self._tz), now)
        if instance is None:
            return None

        try:
            await self._store.add_deadline(instance)
        except Exception:
            if await self._store.get_successor(deadline.id) is not None:
                logger.debug("Lost race expanding deadline %s", deadline.id)
                return None
            raise

        await self._planner.apply(instance, now)
        return instance

    async def expand_all(self, deadlines: list[Deadline], now: datetime) -> list[Deadline]:
        """Expand each deadline, isolating failures. Returns the new instances."""
        created: list[Deadline] = []
        for deadline in deadlines:
            try:
                instance = await self.expand(deadline, now)
            except Exception:
                logger.exception("Failed to expand recurring deadline %s", deadline.id)
                continue
            if instance is not None:
                created.append(instance)
        return created

    async def recover_unexpanded(self, now: datetime | None = None) -> int:
        """Expand closed recurring deadlines that never got a successor.

        Covers a crash between closing a deadline and expanding it. Returns
        the number of instances created.
        """
        now = now or utcnow()
        pending = await self._store.list_unexpanded_recurring()
        created = await self.expand_all(pending, now)
        if created:
            logger.info("Recovered %d unexpanded recurring deadline(s)", len(created))
        return len(created)

    # -- Internal --------------------------------------------------------------

    async def _after_close(self, deadline: Deadline, now: datetime) -> None:
        """Retire the pending reminders of a deadline that just closed."""
        if deadline.is_terminal:
            await self._planner.apply(deadline, now)
