"""
Twilio service for outbound SMS.
Used for review requests and card guarantee links.
"""

import logging
from typing import Optional
from twilio.rest import Client
from twilio.base.exceptions import TwilioException

from app.config.settings import settings

logger = logging.getLogger(__name__)


class SmsService:
    """Service class for Twilio SMS operations."""

    def __init__(self):
        """Twilio client is created lazily so the app starts without credentials."""
        self._client: Optional[Client] = None

    @property
    def is_configured(self) -> bool:
        return bool(settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from_number)

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
        return self._client

    async def send_sms(self, to_number: str, body: str) -> str:
        """
        Send an SMS.

        Args:
            to_number: Recipient in E.164 format
            body: Message text

        Returns:
            str: The message SID

        Raises:
            ValueError: If Twilio is not configured or the number is missing
            TwilioException: If there's an error with the Twilio API
        """
        if not to_number:
            raise ValueError("Numéro de téléphone requis")
        if not self.is_configured:
            raise ValueError("Configuration SMS manquante")

        try:
            message = self.client.messages.create(
                to=to_number,
                from_=settings.twilio_from_number,
                body=body,
            )
            logger.info(f"📱 SMS sent to {to_number} (sid={message.sid})")
            return message.sid
        except TwilioException as e:
            logger.error(f"Twilio error sending SMS to {to_number}: {e}")
            raise


# Global SMS service instance
sms_service = SmsService()
