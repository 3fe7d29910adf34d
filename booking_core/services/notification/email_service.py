import smtplib
from contextlib import contextmanager
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Iterator, Optional
import logging

from booking_core.config.settings import settings

logger = logging.getLogger(__name__)


def build_message(
        to_email: str,
        subject: str,
        html_content: str,
        plain_text: Optional[str] = None,
        reply_to: Optional[str] = None
) -> MIMEMultipart:
    """Multipart booking email with an optional plain text part and Reply-To."""
    message = MIMEMultipart('alternative')
    message['Subject'] = subject
    message['From'] = formataddr((settings.EMAIL_FROM_NAME, settings.EMAIL_FROM_ADDRESS))
    message['To'] = to_email
    if reply_to:
        message['Reply-To'] = reply_to

    if plain_text:
        message.attach(MIMEText(plain_text, 'plain', 'utf-8'))
    message.attach(MIMEText(html_content, 'html', 'utf-8'))
    return message


class EmailService:
    """Booking emails over SMTP. Errors propagate so the sweep can retry."""

    @staticmethod
    @contextmanager
    def smtp_session(timeout: Optional[float] = None) -> Iterator[smtplib.SMTP]:
        timeout = timeout or settings.DELIVERY_TIMEOUT_SECONDS
        if settings.EMAIL_USE_TLS:
            server = smtplib.SMTP(settings.EMAIL_HOST, settings.EMAIL_PORT, timeout=timeout)
        else:
            server = smtplib.SMTP_SSL(settings.EMAIL_HOST, settings.EMAIL_PORT, timeout=timeout)

        try:
            if settings.EMAIL_USE_TLS:
                server.starttls()
            if settings.EMAIL_USERNAME and settings.EMAIL_PASSWORD:
                server.login(settings.EMAIL_USERNAME, settings.EMAIL_PASSWORD)
            yield server
        finally:
            server.quit()

    @staticmethod
    def send_email(
            to_email: str,
            subject: str,
            html_content: str,
            plain_text: Optional[str] = None,
            reply_to: Optional[str] = None,
            timeout: Optional[float] = None
    ) -> bool:
        """
        Hand one booking email to the SMTP relay.

        Args:
            to_email: Recipient address
            subject: Rendered subject line
            html_content: Rendered HTML body
            plain_text: Rendered plain text body
            reply_to: Address replies should go to, usually the other party of the booking
            timeout: Socket timeout in seconds, defaults to DELIVERY_TIMEOUT_SECONDS

        Returns:
            True once the relay accepted the message
        """
        message = build_message(to_email, subject, html_content, plain_text, reply_to)
        try:
            with EmailService.smtp_session(timeout) as server:
                server.sendmail(settings.EMAIL_FROM_ADDRESS, [to_email], message.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP delivery to {to_email} failed: {e}")
            raise

        logger.info(f"Booking email '{subject}' sent to {to_email}")
        return True
