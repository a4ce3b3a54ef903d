"""NotificationRouter: delivers rendered reminders through named channels."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.notifications.channels import NotificationChannel

logger = logging.getLogger(__name__)


class NotificationRouter:
    """Maps a reminder's channel name to a registered transport.

    A reminder without a channel goes to the default channel, or to the only
    registered channel when no default was chosen. Singleton accessed via
    ``NotificationRouter.get()``.
    """

    _instance: NotificationRouter | None = None

    def __init__(self) -> None:
        self._channels: dict[str, NotificationChannel] = {}
        self._default: str = ""

    @classmethod
    def get(cls) -> NotificationRouter:
        """Return the singleton instance, creating it if needed."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset singleton: for tests only."""
        cls._instance = None

    @property
    def channel_names(self) -> tuple[str, ...]:
        """Registered channel names, in registration order."""
        return tuple(self._channels)

    @property
    def default_channel_name(self) -> str:
        return self._default

    def register_channel(self, channel: NotificationChannel) -> None:
        """Register a transport. Raises ValueError on a duplicate name."""
        if channel.name in self._channels:
            msg = f"Channel '{channel.name}' is already registered"
            raise ValueError(msg)
        self._channels[channel.name] = channel

    def set_default_channel(self, name: str) -> None:
        """Set the default channel by name. Raises KeyError if not registered."""
        if name not in self._channels:
            msg = f"Channel '{name}' is not registered"
            raise KeyError(msg)
        self._default = name

    def choose_default(self, preferred: str) -> str | None:
        """Make *preferred* the default, else the first registered channel.

        Returns the chosen name, or None when nothing is registered.
        """
        if not self._channels:
            return None
        if preferred not in self._channels:
            fallback = next(iter(self._channels))
            logger.warning(
                "Default notification channel '%s' is not registered; using '%s'",
                preferred,
                fallback,
            )
            preferred = fallback
        self._default = preferred
        return preferred

    def _resolve(self, name: str | None) -> NotificationChannel | None:
        if name:
            return self._channels.get(name)
        if self._default:
            return self._channels.get(self._default)
        if len(self._channels) == 1:
            return next(iter(self._channels.values()))
        return None

    async def send(
        self,
        recipient: str,
        message: str,
        *,
        channel: str | None = None,
    ) -> bool:
        """Send a rendered reminder. Returns False if no channel resolves."""
        transport = self._resolve(channel)
        if transport is None:
            logger.warning(
                "No channel resolved for reminder to %s (requested=%s)", recipient, channel
            )
            return False
        return await transport.send(recipient, message)
