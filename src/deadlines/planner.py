"""ReminderPlanner: turns a deadline's lead times into reminder records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import TYPE_CHECKING

from src.config import settings
from src.deadlines.models import Reminder, ReminderState, make_id

if TYPE_CHECKING:
    from collections.abc import Iterable

    from src.deadlines.models import Deadline
    from src.deadlines.store import DeadlineStore

logger = logging.getLogger(__name__)


@dataclass
class ReminderPlan:
    """Reminders to insert and pending reminders to retire."""

    create: list[Reminder] = field(default_factory=list)
    retire: list[Reminder] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.create and not self.retire


class ReminderPlanner:
    """Computes and materializes the reminder set of a deadline.

    Planning is idempotent: a reminder already sent or pending for the same
    ``(deadline, lead days, recipient)`` and the same due date satisfies the
    plan, so re-planning an unchanged deadline writes nothing.

    Args:
        store: DeadlineStore for reading and writing reminders.
        tz: Timezone in which reminders fire at ``reminder_hour``.
        reminder_hour: Local hour of day reminders fire (default from settings).
    """

    def __init__(
        self,
        store: DeadlineStore,
        *,
        tz: tzinfo | None = None,
        reminder_hour: int | None = None,
    ) -> None:
        self._store = store
        self._tz = tz or settings.get_timezone()
        self._reminder_hour = settings.reminder_hour if reminder_hour is None else reminder_hour

    def fire_time(self, due_date: date, lead_days: int) -> datetime:
        """When the reminder for *lead_days* before *due_date* fires, in UTC."""
        local = datetime.combine(
            due_date - timedelta(days=lead_days),
            time(hour=self._reminder_hour),
            tzinfo=self._tz,
        )
        return local.astimezone(UTC)

    def desired(self, deadline: Deadline, now: datetime) -> dict[tuple[int, str], datetime]:
        """Map ``(lead_days, recipient)`` to fire time for the current configuration.

        Lead times that have already elapsed collapse into one reminder per
        recipient, keyed on the smallest elapsed lead and firing at *now*,
        so a late-created deadline still gets exactly one prompt notice.
        """
        if deadline.is_terminal:
            return {}

        future: dict[int, datetime] = {}
        elapsed: list[int] = []
        for lead in deadline.lead_times:
            fire_at = self.fire_time(deadline.due_date, lead)
            if fire_at > now:
                future[lead] = fire_at
            else:
                elapsed.append(lead)

        wanted: dict[tuple[int, str], datetime] = {}
        for recipient in deadline.recipients:
            for lead, fire_at in future.items():
                wanted[(lead, recipient)] = fire_at
            if elapsed:
                wanted[(min(elapsed), recipient)] = now
        return wanted

    def plan(
        self,
        deadline: Deadline,
        now: datetime,
        existing: Iterable[Reminder] = (),
    ) -> ReminderPlan:
        """Diff the desired reminder set against *existing* reminders. Pure."""
        wanted = self.desired(deadline, now)
        existing = [r for r in existing if r.state != ReminderState.RETIRED]

        def _matches(reminder: Reminder) -> bool:
            return (
                (reminder.lead_days, reminder.recipient) in wanted
                and reminder.due_date == deadline.due_date
            )

        # Sent reminders are history: they satisfy a matching desire but
        # are never retired or rewritten.
        satisfied = {
            (r.lead_days, r.recipient)
            for r in existing
            if r.state == ReminderState.SENT and _matches(r)
        }

        plan = ReminderPlan()
        for reminder in existing:
            if reminder.state != ReminderState.PENDING:
                continue
            slot = (reminder.lead_days, reminder.recipient)
            current_channel = reminder.channel == deadline.notification_channel
            if _matches(reminder) and current_channel and slot not in satisfied:
                satisfied.add(slot)
            else:
                plan.retire.append(reminder)

        for (lead, recipient), fire_at in wanted.items():
            if (lead, recipient) in satisfied:
                continue
            plan.create.append(
                Reminder(
                    id=make_id(),
                    deadline_id=deadline.id,
                    lab_id=deadline.lab_id,
                    lead_days=lead,
                    due_date=deadline.due_date,
                    recipient=recipient,
                    channel=deadline.notification_channel,
                    fire_at=fire_at,
                    created_at=now,
                )
            )
        return plan

    async def apply(self, deadline: Deadline, now: datetime) -> ReminderPlan:
        """Plan against the stored reminders and write the result."""
        if not deadline.is_terminal and not deadline.recipients:
            logger.warning(
                "Deadline %s ('%s') has no reminder recipients", deadline.id, deadline.title
            )
        existing = await self._store.list_reminders(deadline.id)
        plan = self.plan(deadline, now, existing)
        if plan.is_empty:
            return plan

        for reminder in plan.retire:
            if not await self._store.retire_reminder(reminder.id, now):
                # Sent (or retired) by someone else since we read it.
                logger.debug("Reminder %s changed before it could be retired", reminder.id)
        await self._store.add_reminders(plan.create)

        logger.info(
            "Planned reminders for deadline %s: %d new, %d retired",
            deadline.id,
            len(plan.create),
            len(plan.retire),
        )
        return plan
