"""Email implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging

from src.mail.client import send_email

logger = logging.getLogger(__name__)


class EmailChannel:
    """Sends reminders by email (Resend). Recipients are email addresses."""

    @property
    def name(self) -> str:
        return "email"

    async def send(self, recipient: str, message: str) -> bool:
        """Send the reminder; its first line becomes the subject."""
        if "@" not in recipient:
            logger.error("EmailChannel: recipient is not an email address: %s", recipient)
            return False
        subject, _, body = message.partition("\n")
        return await send_email(recipient, subject.strip(), body.strip() or subject.strip())
