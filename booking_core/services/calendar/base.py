"""
Calendar provider interface.

The availability engine and the confirmation path only ever see
``get_busy_intervals`` and ``create_external_event``; one implementation
exists per provider and is picked once per host by ``get_calendar_provider``.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo
import logging
import re

from sqlalchemy.orm import Session

from booking_core.models.calendar_integration import CalendarIntegration
from booking_core.schemas.booking import BookingRecord
from booking_core.services.scheduling.time_window import TimeWindow

logger = logging.getLogger(__name__)

# Refresh access tokens this long before they expire
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)

_EXTRA_FRACTION = re.compile(r"(\.\d{6})\d+")


class CalendarProvider(ABC):
    """One external calendar account of a host"""

    provider_name = ""

    def __init__(self, integration: CalendarIntegration, db: Session):
        self.integration = integration
        self.db = db

    @property
    def calendar_id(self) -> Optional[str]:
        return (self.integration.provider_config or {}).get("selected_calendar_id")

    def token_needs_refresh(self, now: Optional[datetime] = None) -> bool:
        expires_at = self.integration.token_expires_at
        if expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return expires_at <= now + TOKEN_REFRESH_MARGIN

    @abstractmethod
    def get_busy_intervals(self, range_start: datetime, range_end: datetime) -> list:
        """
        Occupied windows overlapping [range_start, range_end).

        Returns:
            list of TimeWindow in UTC

        Raises:
            CalendarSyncError: if the provider could not be queried
        """
        pass

    @abstractmethod
    def create_external_event(self, booking: BookingRecord) -> Optional[str]:
        """
        Create the booking on the external calendar.

        Returns:
            the provider's event id, or None if the provider returned none

        Raises:
            CalendarSyncError: if the provider rejected the request
        """
        pass


def event_title(booking: BookingRecord) -> str:
    return f"Meeting with {booking.customer_name}"


def parse_provider_datetime(value: str, default_tz: Any = timezone.utc) -> datetime:
    """
    Parse a provider timestamp into an aware UTC datetime.

    Accepts RFC 3339 values (``Z`` or offset), naive values (taken as UTC, the
    way Graph returns them by default) and all-day dates (midnight in
    ``default_tz``).
    """
    if len(value) == 10:
        day = date.fromisoformat(value)
        return datetime.combine(day, time.min, tzinfo=default_tz).astimezone(timezone.utc)

    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    # Graph sends 7 fractional digits
    value = _EXTRA_FRACTION.sub(r"\1", value)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def event_window(start: dict, end: dict, default_tz: ZoneInfo) -> Optional[TimeWindow]:
    """Window of a provider event given its ``start``/``end`` objects"""
    start_value = start.get("dateTime") or start.get("date")
    end_value = end.get("dateTime") or end.get("date")
    if not start_value or not end_value:
        return None
    window = TimeWindow(
        parse_provider_datetime(start_value, default_tz),
        parse_provider_datetime(end_value, default_tz),
    )
    return None if window.is_empty else window
