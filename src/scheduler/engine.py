"""SchedulerLoop: the periodic tick driving status and reminder sweeps."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.config import settings
from src.deadlines.models import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable

    from src.deadlines.lifecycle import LifecycleManager
    from src.scheduler.dispatcher import ReminderDispatcher

logger = logging.getLogger(__name__)

TICK_JOB_ID = "deadline-scheduler-tick"


@dataclass
class TickResult:
    """What one tick did."""

    now: datetime
    missed: list[str] = field(default_factory=list)
    sent: int = 0
    expanded: list[str] = field(default_factory=list)
    failed_steps: list[str] = field(default_factory=list)


class SchedulerLoop:
    """Runs the lifecycle sweep, reminder sweep and recurrence expansion on a timer.

    Ticks are single-flight: APScheduler never starts a second instance of
    the job while one runs (``max_instances=1``, missed runs coalesced), and
    a direct ``run_tick`` call during a tick is skipped rather than queued.

    Args:
        lifecycle: LifecycleManager for auto-miss and expansion.
        dispatcher: ReminderDispatcher for sending due reminders.
        interval_seconds: Tick interval (default from settings).
        clock: Returns the current time; injectable for tests.
        timezone: IANA timezone string for APScheduler (default from settings).
    """

    def __init__(
        self,
        lifecycle: LifecycleManager,
        dispatcher: ReminderDispatcher,
        *,
        interval_seconds: int | None = None,
        clock: Callable[[], datetime] | None = None,
        timezone: str | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._dispatcher = dispatcher
        self._interval = interval_seconds or settings.scheduler_tick_seconds
        self._clock = clock or utcnow
        self._timezone = timezone or settings.scheduler_timezone
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._tick_lock = asyncio.Lock()
        self._running = False
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Recover unexpanded recurring deadlines, then start ticking immediately."""
        try:
            await self._lifecycle.recover_unexpanded(self._clock())
        except Exception:
            logger.exception("Recurring deadline recovery failed")

        self._stopping = False
        self._scheduler.add_job(
            self.run_tick,
            trigger=IntervalTrigger(seconds=self._interval, timezone=self._timezone),
            id=TICK_JOB_ID,
            name="Deadline scheduler tick",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            replace_existing=True,
            next_run_time=datetime.now(self._scheduler.timezone),
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            "Scheduler loop started (interval=%ds, tz=%s)", self._interval, self._timezone
        )

    async def stop(self) -> None:
        """Stop scheduling ticks and wait for an in-flight tick to finish.

        The scheduler is only shut down once the tick lock is free: shutting
        down cancels pending job futures, which would interrupt a send.
        """
        if not self._running:
            return
        self._stopping = True
        self._scheduler.pause()
        async with self._tick_lock:
            self._running = False
        self._scheduler.shutdown(wait=False)
        logger.info("Scheduler loop stopped")

    # -- Ticking ---------------------------------------------------------------

    async def run_tick(self, now: datetime | None = None) -> TickResult | None:
        """Run one tick. Returns None if another tick was already running.

        Steps run in order so a recurring deadline missed in step 1 is
        expanded in step 3 of the same tick. A failing step is logged and
        the remaining steps still run.
        """
        if self._tick_lock.locked():
            logger.warning("Scheduler tick skipped: previous tick still running")
            return None

        async with self._tick_lock:
            now = now or self._clock()
            result = TickResult(now=now)

            missed = []
            try:
                missed = await self._lifecycle.sweep(now)
                result.missed = [d.id for d in missed]
            except Exception:
                logger.exception("Lifecycle sweep failed")
                result.failed_steps.append("lifecycle")

            try:
                result.sent = await self._dispatcher.sweep(
                    now, should_continue=lambda: not self._stopping
                )
            except Exception:
                logger.exception("Reminder sweep failed")
                result.failed_steps.append("dispatch")

            try:
                expanded = await self._lifecycle.expand_all(missed, now)
                result.expanded = [d.id for d in expanded]
            except Exception:
                logger.exception("Recurrence expansion failed")
                result.failed_steps.append("expand")

            logger.info(
                "Tick at %s: %d missed, %d reminder(s) sent, %d expanded",
                now.isoformat(),
                len(result.missed),
                result.sent,
                len(result.expanded),
            )
            return result
