"""Pick the calendar provider implementation for an integration"""
from sqlalchemy.orm import Session

from booking_core.models.calendar_integration import CalendarIntegration
from booking_core.services.calendar.base import CalendarProvider


def get_calendar_provider(integration: CalendarIntegration, db: Session) -> CalendarProvider:
    """
    Args:
        integration: the host's calendar integration row
        db: session used to persist refreshed tokens

    Raises:
        ValueError: if the provider is not supported
    """
    if integration.provider == "google":
        from booking_core.services.calendar.google_calendar_service import GoogleCalendarProvider
        return GoogleCalendarProvider(integration, db)
    elif integration.provider in ("microsoft", "outlook"):
        from booking_core.services.calendar.outlook_service import OutlookCalendarProvider
        return OutlookCalendarProvider(integration, db)
    else:
        raise ValueError(f"Unsupported calendar provider: {integration.provider}")
