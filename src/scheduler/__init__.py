"""Reminder delivery and the periodic scheduler tick."""

from src.scheduler.dispatcher import ReminderDispatcher
from src.scheduler.engine import SchedulerLoop, TickResult

__all__ = [
    "ReminderDispatcher",
    "SchedulerLoop",
    "TickResult",
]
