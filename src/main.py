"""Deadline scheduler entry point: ``python -m src.main``."""

from __future__ import annotations

import asyncio
import logging
import signal

from src.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def _init_notifications() -> None:
    """Register channels that have credentials and set the default."""
    from src.notifications.email_channel import EmailChannel
    from src.notifications.router import NotificationRouter

    router = NotificationRouter.get()
    if settings.resend_api_key:
        router.register_channel(EmailChannel())
    if settings.slack_bot_token:
        from slack_sdk.web.async_client import AsyncWebClient

        from src.notifications.slack_channel import SlackChannel

        router.register_channel(SlackChannel(AsyncWebClient(token=settings.slack_bot_token)))

    default = router.choose_default(settings.default_notification_channel)
    if default is None:
        logger.warning("No notification channels configured; reminders will fail and retry")
        return
    logger.info(
        "Notifications initialized: channels=%s, default=%s",
        list(router.channel_names),
        default,
    )


def _init_scheduler():
    """Build the store, planner, lifecycle, dispatcher and loop."""
    from src.deadlines.lifecycle import LifecycleManager
    from src.deadlines.planner import ReminderPlanner
    from src.deadlines.store import DeadlineStore
    from src.notifications.router import NotificationRouter
    from src.scheduler.dispatcher import ReminderDispatcher
    from src.scheduler.engine import SchedulerLoop

    store = DeadlineStore.get()
    planner = ReminderPlanner(store)
    lifecycle = LifecycleManager(store, planner)
    dispatcher = ReminderDispatcher(store, NotificationRouter.get())
    return SchedulerLoop(lifecycle, dispatcher)


async def run() -> None:
    """Run the scheduler until SIGINT or SIGTERM."""
    from src.mail.client import close_session

    _init_notifications()
    loop = _init_scheduler()

    stop_event = asyncio.Event()
    event_loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        event_loop.add_signal_handler(sig, stop_event.set)

    await loop.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        await loop.stop()
        await close_session()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
