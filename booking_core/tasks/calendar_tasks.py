from datetime import datetime, timedelta, timezone
import logging
from uuid import UUID

from booking_core.config.celery_config import celery_app
from booking_core.config.database import SessionLocal
from booking_core.core.exceptions import CalendarSyncError
from booking_core.models.booking import Booking, BookingStatus, CalendarSyncStatus
from booking_core.models.calendar_integration import CalendarIntegration
from booking_core.schemas.booking import BookingRecord
from booking_core.services.calendar.factory import get_calendar_provider

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def sync_calendar_connection(self, integration_id: str):
    """Test calendar connection by fetching busy intervals for the next 7 days"""
    db = SessionLocal()
    try:
        integration = db.query(CalendarIntegration).filter_by(id=UUID(integration_id)).first()
        if not integration or not integration.is_active:
            return {"status": "failed", "reason": "integration_not_found_or_inactive"}

        provider = get_calendar_provider(integration, db)

        start = datetime.now(timezone.utc)
        end = start + timedelta(days=7)
        busy = provider.get_busy_intervals(start, end)

        integration.last_sync_at = datetime.now(timezone.utc)
        integration.last_sync_status = "success"
        db.commit()

        logger.info(f"Successfully tested calendar connection {integration_id}")
        return {"status": "success", "busy_intervals": len(busy)}

    except CalendarSyncError as exc:
        logger.error(f"Calendar sync failed for integration {integration_id}: {exc}")
        db.rollback()
        integration = db.query(CalendarIntegration).filter_by(id=UUID(integration_id)).first()
        if integration:
            integration.last_sync_at = datetime.now(timezone.utc)
            integration.last_sync_status = "failed"
            db.commit()
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def sync_booking_to_calendar(self, booking_id: str):
    """Push a confirmed booking whose external event is missing (push operation)"""
    db = SessionLocal()
    try:
        booking = db.query(Booking).filter_by(id=UUID(booking_id)).first()
        if not booking:
            logger.error(f"Booking {booking_id} not found")
            return {"status": "failed", "reason": "booking_not_found"}
        if booking.status != BookingStatus.CONFIRMED or booking.external_event_id:
            return {"status": "skipped", "reason": "not_confirmed_or_already_synced"}

        integration = db.query(CalendarIntegration).filter_by(
            user_id=booking.user_id,
            is_active=True,
            is_primary=True
        ).first()
        if not integration:
            booking.calendar_sync_status = CalendarSyncStatus.SYNC_DISABLED
            db.commit()
            return {"status": "skipped", "reason": "no_integration"}

        provider = get_calendar_provider(integration, db)
        event_id = provider.create_external_event(BookingRecord.model_validate(booking))
        if not event_id:
            raise CalendarSyncError("Calendar provider returned no event id")

        booking.external_event_id = event_id
        booking.calendar_sync_status = CalendarSyncStatus.SYNCED
        booking.calendar_sync_error = None
        db.commit()

        logger.info(f"Successfully synced booking {booking_id} to {integration.provider}")
        return {"status": "synced", "event_id": event_id}

    except CalendarSyncError as exc:
        logger.error(f"Calendar sync failed for {booking_id}: {exc}")
        db.rollback()
        booking = db.query(Booking).filter_by(id=UUID(booking_id)).first()
        if booking:
            booking.calendar_sync_status = CalendarSyncStatus.FAILED
            booking.calendar_sync_error = str(exc)
            db.commit()
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))
    finally:
        db.close()
