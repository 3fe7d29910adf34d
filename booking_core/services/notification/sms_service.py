"""SMS sending through Twilio"""
import logging
from typing import Optional

from twilio.rest import Client
from twilio.base.exceptions import TwilioException

from booking_core.config.settings import get_settings
from booking_core.core.exceptions import DeliveryError

logger = logging.getLogger(__name__)
settings = get_settings()


class SMSService:
    """Handles SMS sending operations"""

    def __init__(self, client: Optional[Client] = None, from_phone: Optional[str] = None):
        if client is None and settings.TWILIO_ACCOUNT_SID:
            client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        self.client = client
        self.from_phone = from_phone or settings.TWILIO_FROM_NUMBER

    def send_sms(self, to_phone: str, message_body: str) -> str:
        """Send an SMS and return the Twilio message SID"""
        if not self.client:
            logger.error("Twilio client not initialized")
            raise DeliveryError("SMS transport is not configured")

        try:
            message = self.client.messages.create(
                to=to_phone,
                from_=self.from_phone,
                body=message_body
            )
        except TwilioException as e:
            logger.error(f"Twilio error sending SMS to {to_phone}: {str(e)}")
            raise DeliveryError(f"Twilio rejected SMS: {e}") from e

        logger.info(f"SMS sent successfully to {to_phone}: {message.sid}")
        return message.sid
