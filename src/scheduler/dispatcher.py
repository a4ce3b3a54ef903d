"""ReminderDispatcher: delivers due reminders at most once each."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from src.config import settings
from src.deadlines.errors import TransportFailure
from src.deadlines.models import RESOLVED_STATUSES, make_id, utcnow
from src.deadlines.urgency import UrgencyClassifier
from src.notifications.messages import render_reminder

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from src.deadlines.models import Reminder
    from src.deadlines.store import DeadlineStore
    from src.notifications.router import NotificationRouter

logger = logging.getLogger(__name__)


class ReminderDispatcher:
    """Sends every due reminder and records each send exactly once.

    Each reminder is first *claimed* with a conditional write, so concurrent
    sweeps (in this process or another replica) never both call the
    transport for it. ``sent_at`` is then written only on transport success,
    again conditionally, so it can never be written twice.

    Args:
        store: DeadlineStore holding reminders and their deadlines.
        router: NotificationRouter used as the transport.
        classifier: UrgencyClassifier for message wording.
        timeout: Seconds to wait for one send before counting it as failed.
        lease_seconds: Age after which another sweep may take over a claim.
    """

    def __init__(
        self,
        store: DeadlineStore,
        router: NotificationRouter,
        *,
        classifier: UrgencyClassifier | None = None,
        timeout: float | None = None,
        lease_seconds: int | None = None,
    ) -> None:
        self._store = store
        self._router = router
        self._classifier = classifier or UrgencyClassifier()
        self._timeout = timeout or settings.transport_timeout_seconds
        self._lease_seconds = lease_seconds or settings.reminder_claim_lease_seconds
        if self._lease_seconds <= self._timeout:
            msg = (
                f"Claim lease ({self._lease_seconds}s) must exceed the send timeout "
                f"({self._timeout:g}s)"
            )
            raise ValueError(msg)

    async def sweep(
        self,
        now: datetime | None = None,
        *,
        should_continue: Callable[[], bool] | None = None,
    ) -> int:
        """Deliver all due reminders. Returns how many were sent.

        A failure on one reminder never stops the others. *should_continue*
        is checked between reminders (never mid-send) so a shutdown can end
        the sweep early.
        """
        now = now or utcnow()
        due = await self._store.list_due_reminders(now)
        sent = 0
        for index, reminder in enumerate(due):
            if should_continue is not None and not should_continue():
                logger.info("Reminder sweep stopping early; %d left", len(due) - index)
                break
            try:
                if await self._deliver(reminder, now):
                    sent += 1
            except Exception:
                logger.exception("Unexpected error dispatching reminder %s", reminder.id)

        if due:
            logger.info("Reminder sweep: %d due, %d sent", len(due), sent)
        return sent

    async def _deliver(self, reminder: Reminder, now: datetime) -> bool:
        token = make_id()
        claimed = await self._store.claim_reminder(
            reminder.id, token, now, self._lease_seconds
        )
        if not claimed:
            logger.debug("Reminder %s claimed or sent by another sweep", reminder.id)
            return False

        deadline = await self._store.get_deadline(reminder.deadline_id)
        if (
            deadline is None
            or deadline.status in RESOLVED_STATUSES
            or reminder.due_date != deadline.due_date
        ):
            await self._store.retire_reminder(
                reminder.id, now, token=token, lease_seconds=self._lease_seconds
            )
            logger.info("Retired reminder %s: deadline no longer needs it", reminder.id)
            return False

        message = render_reminder(deadline, now, self._classifier)
        detail = await self._send(reminder, message)
        if detail is not None:
            failure = TransportFailure(reminder.id, reminder.attempts + 1, detail)
            logger.warning("%s", failure)
            await self._store.release_reminder(reminder.id, token, now, detail)
            return False

        if not await self._store.mark_reminder_sent(reminder.id, token, now):
            logger.warning(
                "Reminder %s was sent but its claim expired before it was recorded", reminder.id
            )
            return False

        logger.info(
            "Sent reminder %s for '%s' to %s (%d day lead)",
            reminder.id,
            deadline.title,
            reminder.recipient,
            reminder.lead_days,
        )
        return True

    async def _send(self, reminder: Reminder, message: str) -> str | None:
        """Call the transport. Returns None on success, else a failure description."""
        try:
            ok = await asyncio.wait_for(
                self._router.send(reminder.recipient, message, channel=reminder.channel),
                timeout=self._timeout,
            )
        except TimeoutError:
            return f"timed out after {self._timeout:g}s"
        except Exception as exc:
            logger.exception("Transport raised for reminder %s", reminder.id)
            return f"{type(exc).__name__}: {exc}"
        if not ok:
            return "transport reported failure"
        return None
