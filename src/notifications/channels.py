"""NotificationChannel protocol: interface for all reminder delivery channels."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all notification channels must satisfy.

    Channels never raise on delivery problems; they log and return False so
    the dispatcher can keep the reminder pending and retry it.
    """

    @property
    def name(self) -> str:
        """Unique channel identifier (e.g. 'email', 'slack')."""
        ...

    async def send(self, recipient: str, message: str) -> bool:
        """Deliver a rendered reminder. Returns True on success.

        The first line of *message* is its subject/headline.
        """
        ...
