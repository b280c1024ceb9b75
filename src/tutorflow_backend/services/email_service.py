'''
Transactional e-mail delivery through Resend.
'''
import asyncio
from typing import Optional

import resend

from ..common.config import settings
from ..common.exceptions import EmailDeliveryError
from ..common.logger import log
from ..models.cancellation import EmailMessage


class EmailService:
    """
    Sends HTML e-mails. `send_many` is meant for fire-and-forget use: it
    never raises, failures are only logged.
    """
    def __init__(self, api_key: Optional[str] = None, from_address: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.from_address = from_address or settings.EMAIL_FROM_ADDRESS

    async def send(self, message: EmailMessage) -> dict:
        resend.api_key = self.api_key
        params = {
            "from": self.from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        try:
            response = await asyncio.to_thread(resend.Emails.send, params)
        except Exception as e:
            log.error(f"Email send error to {message.to}: {e}")
            raise EmailDeliveryError(f"Failed to send email to {message.to}: {e}") from e
        log.info(f"Email '{message.subject}' sent to {message.to}.")
        return response

    async def send_many(self, messages: list[EmailMessage]) -> int:
        """Returns how many messages were accepted by the provider."""
        sent = 0
        for message in messages:
            try:
                await self.send(message)
                sent += 1
            except EmailDeliveryError as e:
                log.warning(f"Notification e-mail dropped: {e}")
        return sent


def get_email_service() -> EmailService:
    """FastAPI dependency; overridden in tests."""
    return EmailService()
