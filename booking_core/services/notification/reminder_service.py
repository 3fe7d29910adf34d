from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Union
import logging

from sqlalchemy.orm import Session

from booking_core.models.base import utcnow
from booking_core.models.notification import (
    Notification,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
)
from booking_core.models.user import ReminderTime, User
from booking_core.schemas.booking import BookingRecord
from booking_core.schemas.notification import NotificationRecord
from booking_core.services.notification.transitions import cancel, persist_transition
from booking_core.services.scheduling.time_window import ensure_utc

logger = logging.getLogger(__name__)

REMINDER_OFFSETS: Dict[ReminderTime, Optional[timedelta]] = {
    ReminderTime.NONE: None,
    ReminderTime.MINUTES_15: timedelta(minutes=15),
    ReminderTime.MINUTES_30: timedelta(minutes=30),
    ReminderTime.HOUR_1: timedelta(hours=1),
    ReminderTime.HOURS_2: timedelta(hours=2),
    ReminderTime.HOURS_24: timedelta(hours=24),
}

DEFAULT_REMINDER_TIME = ReminderTime.MINUTES_30


def reminder_offset(setting: Union[ReminderTime, str, None]) -> Optional[timedelta]:
    """Offset for a host's reminder setting. Unrecognized values fall back to 30 minutes."""
    try:
        return REMINDER_OFFSETS[ReminderTime(setting)]
    except ValueError:
        logger.warning(f"Unknown reminder setting {setting!r}, using {DEFAULT_REMINDER_TIME.value}")
        return REMINDER_OFFSETS[DEFAULT_REMINDER_TIME]


class ReminderScheduler:
    """Creates reminder notifications for confirmed bookings and cancels them on cancellation"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def on_booking_confirmed(
            self,
            booking: BookingRecord,
            reminder_setting: Union[ReminderTime, str, None],
            now: Optional[datetime] = None
    ) -> List[NotificationRecord]:
        """
        Schedule one email reminder per party (customer, then host).

        A party whose reminder would fire at or before ``now`` gets none.
        Calling this again for the same booking returns the reminders already
        pending instead of creating duplicates.
        """
        offset = reminder_offset(reminder_setting)
        if offset is None:
            logger.info(f"Reminders disabled for booking {booking.id}")
            return []

        now = ensure_utc(now or self.clock())
        fire_at = booking.start_time - offset

        host = self.db.query(User).filter(User.id == booking.user_id).first()
        recipients = [booking.customer_email]
        if host and host.email:
            recipients.append(host.email)

        reminders = []
        for recipient in recipients:
            if fire_at <= now:
                logger.info(
                    f"Skipping reminder for {recipient} on booking {booking.id}: "
                    f"fire time {fire_at.isoformat()} already passed"
                )
                continue

            existing = self.db.query(Notification).filter(
                Notification.booking_id == booking.id,
                Notification.type == NotificationType.REMINDER,
                Notification.recipient == recipient,
                Notification.status == NotificationStatus.PENDING,
            ).first()
            if existing:
                reminders.append(existing)
                continue

            reminder = Notification(
                booking_id=booking.id,
                type=NotificationType.REMINDER,
                channel=NotificationChannel.EMAIL,
                recipient=recipient,
                status=NotificationStatus.PENDING,
                scheduled_for=fire_at,
                attempt_count=0,
            )
            self.db.add(reminder)
            reminders.append(reminder)

        self.db.flush()
        created = [NotificationRecord.model_validate(r) for r in reminders]
        self.db.commit()

        logger.info(f"Scheduled {len(created)} reminder(s) for booking {booking.id} at {fire_at.isoformat()}")
        return created

    def on_booking_cancelled(self, booking: BookingRecord) -> int:
        """Fail every pending notification of the booking so none is delivered afterwards"""
        pending = self.db.query(Notification).filter(
            Notification.booking_id == booking.id,
            Notification.status == NotificationStatus.PENDING,
        ).all()

        cancelled = 0
        for row in pending:
            record = NotificationRecord.model_validate(row)
            if persist_transition(self.db, record, cancel(record)):
                cancelled += 1
        self.db.commit()

        logger.info(f"Cancelled {cancelled} pending notification(s) for booking {booking.id}")
        return cancelled
