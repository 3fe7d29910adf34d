"""Tests for message rendering and the email/SMS transports."""
from unittest.mock import MagicMock, patch

import pytest
from twilio.base.exceptions import TwilioException

from booking_core.core.exceptions import DeliveryError
from booking_core.models import NotificationChannel, NotificationType
from booking_core.services.notification.delivery import TransportDelivery
from booking_core.services.notification.email_service import EmailService
from booking_core.services.notification.sms_service import SMSService
from booking_core.services.notification.templates import build_template_context, render_email, render_sms
from tests.conftest import MONDAY, NOW, at, make_booking, make_host, make_notification

CONTEXT = {
    "notification_type": "confirmation",
    "audience": "customer",
    "booking_id": "b-1",
    "customer_name": "Carl Customer",
    "customer_email": "carl@example.com",
    "host_name": "Hannah Host",
    "host_email": "host@example.com",
    "date": "Monday, January 07, 2030",
    "start_time": "10:00",
    "end_time": "11:00",
    "timezone": "UTC",
    "app_name": "Booking Core",
}


class TestTemplates:
    def test_context_uses_host_timezone(self, db):
        host = make_host(db, tz="America/New_York")
        booking = make_booking(db, host, at(MONDAY, 15), at(MONDAY, 16))
        notification = make_notification(db, booking, NOW, type=NotificationType.CONFIRMATION)

        context = build_template_context(notification, booking)

        assert context["start_time"] == "10:00"
        assert context["end_time"] == "11:00"
        assert context["timezone"] == "America/New_York"
        assert context["audience"] == "customer"
        assert context["host_name"] == "Hannah Host"

    def test_host_audience(self, db, host):
        booking = make_booking(db, host, at(MONDAY, 10), at(MONDAY, 11))
        notification = make_notification(db, booking, NOW, recipient="host@example.com")
        assert build_template_context(notification, booking)["audience"] == "host"

    def test_customer_confirmation_email(self):
        subject, html_content, plain_text = render_email(CONTEXT)
        assert subject.startswith("Your meeting is confirmed")
        assert "Meeting with Hannah Host" in plain_text
        assert "Hi Carl Customer" in html_content

    def test_host_confirmation_email(self):
        subject, _, plain_text = render_email(dict(CONTEXT, audience="host"))
        assert subject.startswith("New booking received")
        assert "Meeting with Carl Customer" in plain_text

    def test_reminder_sms(self):
        body = render_sms(dict(CONTEXT, notification_type="reminder"))
        assert body.startswith("Booking Core: Upcoming meeting reminder")
        assert "10:00 to 11:00" in body


class TestTransportDelivery:
    def test_email(self):
        email_service = MagicMock()
        TransportDelivery(email_service=email_service).deliver(NotificationChannel.EMAIL, "carl@example.com", CONTEXT)

        to_email, subject, html_content, plain_text = email_service.send_email.call_args.args
        assert to_email == "carl@example.com"
        assert subject.startswith("Your meeting is confirmed")
        assert email_service.send_email.call_args.kwargs["reply_to"] == "host@example.com"

    def test_sms(self):
        sms_service = MagicMock()
        delivery = TransportDelivery(email_service=MagicMock(), sms_service=sms_service)
        delivery.deliver(NotificationChannel.SMS, "+15550100", CONTEXT)

        to_phone, body = sms_service.send_sms.call_args.args
        assert to_phone == "+15550100"
        assert "Meeting with Hannah Host" in body

    def test_transport_errors_become_delivery_errors(self):
        email_service = MagicMock()
        email_service.send_email.side_effect = OSError("connection refused")
        with pytest.raises(DeliveryError, match="connection refused"):
            TransportDelivery(email_service=email_service).deliver(
                NotificationChannel.EMAIL, "carl@example.com", CONTEXT
            )


class TestSMSService:
    def test_unconfigured(self):
        with pytest.raises(DeliveryError):
            SMSService(client=None).send_sms("+15550100", "hello")

    def test_send(self):
        client = MagicMock()
        client.messages.create.return_value.sid = "SM123"
        assert SMSService(client=client, from_phone="+15550199").send_sms("+15550100", "hello") == "SM123"
        client.messages.create.assert_called_once_with(to="+15550100", from_="+15550199", body="hello")

    def test_twilio_error(self):
        client = MagicMock()
        client.messages.create.side_effect = TwilioException("invalid number")
        with pytest.raises(DeliveryError):
            SMSService(client=client, from_phone="+15550199").send_sms("+1555", "hello")


class TestEmailService:
    def test_send_email(self):
        with patch("booking_core.services.notification.email_service.smtplib.SMTP") as smtp:
            server = smtp.return_value
            assert EmailService.send_email("carl@example.com", "Subject", "<p>hi</p>", "hi")

        server.starttls.assert_called_once()
        from_address, recipients, message = server.sendmail.call_args.args
        assert recipients == ["carl@example.com"]
        assert "Subject: Subject" in message
        server.quit.assert_called_once()

    def test_smtp_failure_propagates(self):
        with patch("booking_core.services.notification.email_service.smtplib.SMTP") as smtp:
            smtp.return_value.sendmail.side_effect = OSError("relay denied")
            with pytest.raises(OSError):
                EmailService.send_email("carl@example.com", "Subject", "<p>hi</p>")
            smtp.return_value.quit.assert_called_once()

    def test_reply_to_header(self):
        with patch("booking_core.services.notification.email_service.smtplib.SMTP") as smtp:
            EmailService.send_email("host@example.com", "New booking", "<p>hi</p>", reply_to="carl@example.com")

        message = smtp.return_value.sendmail.call_args.args[2]
        assert "Reply-To: carl@example.com" in message
