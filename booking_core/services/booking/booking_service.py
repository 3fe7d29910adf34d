from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from booking_core.config.settings import get_settings
from booking_core.core.exceptions import BookingNotFoundError, TransientStoreError
from booking_core.models.base import utcnow
from booking_core.models.booking import Booking, BookingStatus, CalendarSyncStatus
from booking_core.models.notification import (
    Notification,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
)
from booking_core.models.user import User
from booking_core.schemas.booking import BookingRecord, BookingRequest
from booking_core.services.booking import transitions
from booking_core.services.booking.conflict_service import ConflictDetector
from booking_core.services.calendar.calendar_sync_service import CalendarSyncService
from booking_core.services.notification.reminder_service import ReminderScheduler
from booking_core.services.scheduling.time_window import TimeWindow, ensure_utc
from booking_core.utils.my_logging import booking_context

logger = logging.getLogger(__name__)
settings = get_settings()


class BookingService:
    """Booking creation, payment outcome and cancellation"""

    def __init__(
            self,
            db: Session,
            calendar_sync: Optional[CalendarSyncService] = None,
            detector: Optional[ConflictDetector] = None,
            reminders: Optional[ReminderScheduler] = None,
            clock: Callable[[], datetime] = utcnow,
            retry_attempts: Optional[int] = None
    ):
        self.db = db
        self.clock = clock
        self.calendar_sync = calendar_sync or CalendarSyncService(db)
        self.detector = detector or ConflictDetector(db, clock=clock)
        self.reminders = reminders or ReminderScheduler(db, clock=clock)
        self.retry_attempts = retry_attempts or settings.RESERVATION_RETRY_ATTEMPTS

    def create_booking(
            self,
            request: BookingRequest,
            requires_payment: bool = False,
            now: Optional[datetime] = None
    ) -> BookingRecord:
        """
        Reserve the requested window and, unless payment is pending, confirm it.

        Validation, conflict and availability errors from the detector reach
        the caller untouched. ``TransientStoreError`` is retried up to
        ``RESERVATION_RETRY_ATTEMPTS`` times before it is re-raised.
        """
        now = ensure_utc(now or self.clock())
        candidate = TimeWindow(request.start_time, request.end_time)

        # External calendar trouble only means we cannot see busy times
        busy = self.calendar_sync.get_busy_intervals(request.host_user_id, candidate.start, candidate.end)

        initial_status = BookingStatus.PENDING_PAYMENT if requires_payment else BookingStatus.CONFIRMED
        record = self._reserve_with_retry(request, candidate, busy, initial_status, now)

        with booking_context(record.id):
            if record.status == BookingStatus.CONFIRMED:
                record = self._on_confirmed(record, now)
            else:
                logger.info(f"Booking {record.id} awaiting payment")
        return record

    def confirm_payment(self, booking_id: UUID, now: Optional[datetime] = None) -> BookingRecord:
        now = ensure_utc(now or self.clock())
        before = self.get_booking(booking_id)
        with booking_context(booking_id):
            after = transitions.transition(before, BookingStatus.CONFIRMED, now)
            transitions.persist_transition(self.db, before, after)
            self.db.commit()
            return self._on_confirmed(after, now)

    def mark_payment_failed(self, booking_id: UUID) -> BookingRecord:
        before = self.get_booking(booking_id)
        with booking_context(booking_id):
            after = transitions.transition(before, BookingStatus.PAYMENT_FAILED)
            transitions.persist_transition(self.db, before, after)
            self.db.commit()
            return after

    def cancel_booking(self, booking_id: UUID, reason: Optional[str] = None, now: Optional[datetime] = None) -> BookingRecord:
        """Cancel a confirmed booking and stop all of its pending notifications"""
        now = ensure_utc(now or self.clock())
        before = self.get_booking(booking_id)
        with booking_context(booking_id):
            after = transitions.transition(before, BookingStatus.CANCELLED, now, reason)
            transitions.persist_transition(self.db, before, after)
            self.db.commit()

            cancelled = self.reminders.on_booking_cancelled(after)
            logger.info(f"Booking {booking_id} cancelled, {cancelled} notification(s) suppressed")
            return after

    def get_booking(self, booking_id: UUID) -> BookingRecord:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise BookingNotFoundError(f"Booking {booking_id} not found", {"booking_id": str(booking_id)})
        return BookingRecord.model_validate(booking)

    def _reserve_with_retry(self, request, candidate, busy, initial_status, now) -> BookingRecord:
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return self.detector.try_reserve(
                    request.host_user_id,
                    candidate,
                    request.customer(),
                    busy_intervals=busy,
                    initial_status=initial_status,
                    now=now,
                )
            except TransientStoreError as e:
                if attempt == self.retry_attempts:
                    logger.error(f"Reservation for host {request.host_user_id} failed after {attempt} attempts: {e}")
                    raise
                logger.warning(f"Reservation attempt {attempt} for host {request.host_user_id} hit {e}, retrying")

    def _on_confirmed(self, record: BookingRecord, now: datetime) -> BookingRecord:
        host = self.db.query(User).filter(User.id == record.user_id).first()
        host_settings = host.settings if host else None

        self._queue_confirmations(record, host, now)
        self.reminders.on_booking_confirmed(
            record,
            host_settings.reminder_time if host_settings else None,
            now=now,
        )
        return self._sync_external_event(record)

    def _queue_confirmations(self, record: BookingRecord, host: Optional[User], now: datetime) -> List[Notification]:
        recipients = [(NotificationChannel.EMAIL, record.customer_email)]
        if host and host.email:
            recipients.append((NotificationChannel.EMAIL, host.email))
        if record.customer_phone and host and host.settings and host.settings.sms_notifications_enabled:
            recipients.append((NotificationChannel.SMS, record.customer_phone))

        created = []
        for channel, recipient in recipients:
            already_queued = self.db.query(Notification.id).filter(
                Notification.booking_id == record.id,
                Notification.type == NotificationType.CONFIRMATION,
                Notification.channel == channel,
                Notification.recipient == recipient,
            ).first()
            if already_queued:
                continue
            notification = Notification(
                booking_id=record.id,
                type=NotificationType.CONFIRMATION,
                channel=channel,
                recipient=recipient,
                status=NotificationStatus.PENDING,
                scheduled_for=now,
                attempt_count=0,
            )
            self.db.add(notification)
            created.append(notification)
        self.db.commit()

        logger.info(f"Queued {len(created)} confirmation notification(s) for booking {record.id}")
        return created

    def _sync_external_event(self, record: BookingRecord) -> BookingRecord:
        if self.calendar_sync.provider_for(record.user_id) is None:
            status, event_id, error = CalendarSyncStatus.SYNC_DISABLED, None, None
        else:
            event_id = self.calendar_sync.create_external_event(record)
            if event_id:
                status, error = CalendarSyncStatus.SYNCED, None
            else:
                status = CalendarSyncStatus.FAILED
                error = self.calendar_sync.last_error or "Calendar provider returned no event id"
                logger.warning(f"Booking {record.id} confirmed without an external calendar event: {error}")

        self.db.query(Booking).filter(Booking.id == record.id).update({
            Booking.external_event_id: event_id,
            Booking.calendar_sync_status: status,
            Booking.calendar_sync_error: error,
        }, synchronize_session=False)
        self.db.commit()

        return record.model_copy(update={
            "external_event_id": event_id,
            "calendar_sync_status": status,
            "calendar_sync_error": error,
        })
