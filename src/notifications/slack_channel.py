"""Slack implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from slack_sdk.web.async_client import AsyncWebClient

logger = logging.getLogger(__name__)


class SlackChannel:
    """Sends reminders as Slack DMs. Recipients are Slack user IDs."""

    def __init__(self, client: AsyncWebClient) -> None:
        self._client = client

    @property
    def name(self) -> str:
        return "slack"

    async def _open_dm(self, user_id: str) -> str | None:
        """Open (or retrieve) a DM channel with a user. Returns channel ID."""
        try:
            resp = await self._client.conversations_open(users=[user_id])
            return resp["channel"]["id"]
        except Exception:
            logger.exception("SlackChannel: failed to open DM for user_id=%s", user_id)
            return None

    async def send(self, recipient: str, message: str) -> bool:
        """Post the reminder, with its headline in bold, to the user's DM."""
        channel_id = await self._open_dm(recipient)
        if not channel_id:
            return False
        headline, _, body = message.partition("\n")
        blocks = [{"type": "section", "text": {"type": "mrkdwn", "text": f"*{headline}*"}}]
        if body.strip():
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": body.strip()}})
        try:
            await self._client.chat_postMessage(channel=channel_id, text=headline, blocks=blocks)
            return True
        except Exception:
            logger.exception("SlackChannel.send failed for user_id=%s", recipient)
            return False
