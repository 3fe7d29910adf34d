from datetime import datetime
from typing import Callable, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from booking_core.models.base import utcnow
from booking_core.models.calendar_integration import CalendarIntegration
from booking_core.schemas.booking import BookingRecord
from booking_core.services.calendar.base import CalendarProvider
from booking_core.services.calendar.factory import get_calendar_provider
from booking_core.services.scheduling.time_window import TimeWindow

logger = logging.getLogger(__name__)

_NOT_LOOKED_UP = object()


class CalendarSyncService:
    """
    Degrading facade over a host's external calendar.

    Neither call raises: busy-interval lookups fall back to an empty list and
    event creation to ``None``, each with a logged warning, so bookings never
    depend on a third-party API being up.
    """

    def __init__(
            self,
            db: Session,
            provider_factory: Callable[[CalendarIntegration, Session], CalendarProvider] = get_calendar_provider
    ):
        self.db = db
        self.provider_factory = provider_factory
        self._providers: Dict[UUID, object] = {}
        self.last_error: Optional[str] = None

    def provider_for(self, user_id: UUID) -> Optional[CalendarProvider]:
        """The provider of the host's primary active integration, looked up once per host"""
        cached = self._providers.get(user_id, _NOT_LOOKED_UP)
        if cached is not _NOT_LOOKED_UP:
            return cached

        integration = self.db.query(CalendarIntegration).filter_by(
            user_id=user_id,
            is_active=True,
            is_primary=True
        ).first()

        provider = None
        if integration:
            try:
                provider = self.provider_factory(integration, self.db)
            except ValueError as e:
                logger.warning(f"Calendar integration {integration.id} unusable: {e}")
        self._providers[user_id] = provider
        return provider

    def get_busy_intervals(self, user_id: UUID, range_start: datetime, range_end: datetime) -> List[TimeWindow]:
        provider = self.provider_for(user_id)
        if provider is None:
            return []

        try:
            busy = provider.get_busy_intervals(range_start, range_end)
        except Exception as e:
            logger.warning(
                f"Busy-interval lookup on {provider.provider_name} failed for user {user_id}, "
                f"treating external calendar as free: {e}"
            )
            self._record_sync(provider, "failed")
            return []

        self._record_sync(provider, "success")
        return busy

    def create_external_event(self, booking: BookingRecord) -> Optional[str]:
        self.last_error = None
        provider = self.provider_for(booking.user_id)
        if provider is None:
            return None

        try:
            return provider.create_external_event(booking)
        except Exception as e:
            self.last_error = str(e)
            logger.warning(f"Creating external event for booking {booking.id} on {provider.provider_name} failed: {e}")
            return None

    def _record_sync(self, provider: CalendarProvider, status: str):
        integration = provider.integration
        integration.last_sync_at = utcnow()
        integration.last_sync_status = status
        self.db.commit()
