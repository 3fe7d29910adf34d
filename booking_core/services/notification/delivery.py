"""Delivery collaborator used by the notification sweep"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

from booking_core.core.exceptions import DeliveryError
from booking_core.models.notification import NotificationChannel
from booking_core.services.notification.email_service import EmailService
from booking_core.services.notification.sms_service import SMSService
from booking_core.services.notification.templates import render_email, render_sms

logger = logging.getLogger(__name__)


def reply_address(template_context: Dict[str, Any]) -> Optional[str]:
    """Replies to a customer email reach the host and vice versa."""
    if template_context.get("audience") == "host":
        return template_context.get("customer_email")
    return template_context.get("host_email")


class NotificationDelivery(ABC):
    """Sends one rendered notification. Raises ``DeliveryError`` when it could not."""

    @abstractmethod
    def deliver(self, channel: NotificationChannel, recipient: str, template_context: Dict[str, Any]) -> None:
        pass


class TransportDelivery(NotificationDelivery):
    """Email over SMTP, SMS over Twilio"""

    def __init__(self, email_service: Optional[EmailService] = None, sms_service: Optional[SMSService] = None):
        self.email_service = email_service or EmailService()
        self._sms_service = sms_service

    @property
    def sms_service(self) -> SMSService:
        if self._sms_service is None:
            self._sms_service = SMSService()
        return self._sms_service

    def deliver(self, channel: NotificationChannel, recipient: str, template_context: Dict[str, Any]) -> None:
        try:
            if channel == NotificationChannel.EMAIL:
                subject, html_content, plain_text = render_email(template_context)
                self.email_service.send_email(
                    recipient, subject, html_content, plain_text, reply_to=reply_address(template_context)
                )
            elif channel == NotificationChannel.SMS:
                self.sms_service.send_sms(recipient, render_sms(template_context))
            else:
                raise DeliveryError(f"Unsupported channel: {channel}")
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"{channel.value} delivery to {recipient} failed: {e}") from e
