"""Message content for confirmation and reminder notifications"""
from typing import Any, Dict, Tuple

from booking_core.config.settings import settings
from booking_core.models.booking import Booking
from booking_core.models.notification import Notification, NotificationType
from booking_core.services.availability.availability_service import resolve_timezone


def build_template_context(notification: Notification, booking: Booking) -> Dict[str, Any]:
    """Everything a transport needs to render ``notification``"""
    host = booking.host
    tz = resolve_timezone(booking.timezone)
    start = booking.start_time.astimezone(tz)
    end = booking.end_time.astimezone(tz)

    to_customer = notification.recipient in (booking.customer_email, booking.customer_phone)

    return {
        "notification_type": notification.type.value,
        "audience": "customer" if to_customer else "host",
        "booking_id": str(booking.id),
        "customer_name": booking.customer_name,
        "customer_email": booking.customer_email,
        "host_name": host.name if host else "",
        "host_email": host.email if host else "",
        "date": start.strftime("%A, %B %d, %Y"),
        "start_time": start.strftime("%H:%M"),
        "end_time": end.strftime("%H:%M"),
        "timezone": tz.key,
        "app_name": settings.APP_NAME,
    }


def _headline(context: Dict[str, Any]) -> str:
    if context["notification_type"] == NotificationType.REMINDER.value:
        return "Upcoming meeting reminder"
    return "Your meeting is confirmed" if context["audience"] == "customer" else "New booking received"


def _summary_line(context: Dict[str, Any]) -> str:
    other = context["host_name"] if context["audience"] == "customer" else context["customer_name"]
    return (
        f"Meeting with {other} on {context['date']} "
        f"from {context['start_time']} to {context['end_time']} ({context['timezone']})"
    )


def render_email(context: Dict[str, Any]) -> Tuple[str, str, str]:
    """Return (subject, html, plain text)"""
    headline = _headline(context)
    summary = _summary_line(context)
    greeting = context["customer_name"] if context["audience"] == "customer" else context["host_name"]
    subject = f"{headline}: {context['date']} {context['start_time']}"

    html_content = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="UTF-8">
    </head>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2 style="color: #333; margin-top: 0;">{headline}</h2>
        <p style="font-size: 16px; color: #555;">Hi {greeting},</p>
        <p style="font-size: 16px; color: #555;">{summary}.</p>
        <p style="font-size: 12px; color: #999;">Booking reference: {context['booking_id']}</p>
        <p style="font-size: 12px; color: #999;">Sent by {context['app_name']}</p>
    </body>
    </html>
    """

    plain_text = (
        f"{headline}\n\n"
        f"Hi {greeting},\n\n"
        f"{summary}.\n\n"
        f"Booking reference: {context['booking_id']}\n"
    )
    return subject, html_content, plain_text


def render_sms(context: Dict[str, Any]) -> str:
    return f"{context['app_name']}: {_headline(context)}. {_summary_line(context)}."
