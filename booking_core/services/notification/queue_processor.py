from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID, uuid4
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from booking_core.config.settings import get_settings
from booking_core.core.exceptions import DeliveryError, InvalidTransitionError, NotFoundError
from booking_core.models.base import utcnow
from booking_core.models.booking import BookingStatus
from booking_core.models.notification import Notification, NotificationChannel, NotificationStatus
from booking_core.schemas.notification import NotificationRecord, ProcessingSummary
from booking_core.services.notification.delivery import NotificationDelivery, TransportDelivery
from booking_core.services.notification.templates import build_template_context
from booking_core.services.notification.transitions import (
    cancel,
    mark_sent,
    persist_transition,
    record_failure,
    record_resend_failure,
)
from booking_core.services.scheduling.time_window import ensure_utc
from booking_core.utils.my_logging import booking_context

logger = logging.getLogger(__name__)
settings = get_settings()


class NotificationQueueProcessor:
    """
    Delivers due notifications.

    Each sweep picks pending rows whose ``scheduled_for`` has passed, claims
    them one at a time with a conditional UPDATE (token plus lease), calls the
    delivery collaborator under a per-call timeout, and records the outcome
    with a compare-and-set write guarded by the claim. Overlapping sweeps
    therefore never deliver the same row twice, and a row cancelled while its
    delivery is in flight stays failed.
    """

    def __init__(
            self,
            db: Session,
            delivery: Optional[NotificationDelivery] = None,
            clock: Callable[[], datetime] = utcnow,
            max_attempts: Optional[int] = None,
            batch_size: Optional[int] = None,
            lease_seconds: Optional[int] = None,
            delivery_timeout: Optional[float] = None
    ):
        self.db = db
        self.delivery = delivery or TransportDelivery()
        self.clock = clock
        self.max_attempts = max_attempts or settings.NOTIFICATION_MAX_ATTEMPTS
        self.batch_size = batch_size or settings.NOTIFICATION_BATCH_SIZE
        self.lease = timedelta(seconds=lease_seconds or settings.NOTIFICATION_CLAIM_LEASE_SECONDS)
        self.delivery_timeout = delivery_timeout or settings.DELIVERY_TIMEOUT_SECONDS

    def sweep(self, now: Optional[datetime] = None) -> ProcessingSummary:
        now = ensure_utc(now or self.clock())
        due_ids = self._due_ids(now)
        self.db.commit()

        summary = ProcessingSummary()
        if not due_ids:
            logger.info(f"Notification sweep at {now.isoformat()}: nothing due")
            return summary

        logger.info(f"Notification sweep at {now.isoformat()}: {len(due_ids)} due")

        for notification_id in due_ids:
            try:
                outcome = self._process_one(notification_id, now)
            except Exception as e:
                # Store trouble on one row must not stop the batch
                self.db.rollback()
                logger.exception(f"Error processing notification {notification_id}: {e}")
                continue

            if outcome == "skipped":
                summary.skipped += 1
            else:
                summary.attempted += 1
                if outcome == "sent":
                    summary.sent += 1
                elif outcome == "failed":
                    summary.failed += 1

        logger.info(
            f"Notification sweep done: attempted={summary.attempted} sent={summary.sent} "
            f"failed={summary.failed} skipped={summary.skipped}"
        )
        return summary

    def resend(self, notification_id: UUID, now: Optional[datetime] = None) -> NotificationRecord:
        """Manually retry a failed notification. Raises ``DeliveryError`` if it fails again."""
        now = ensure_utc(now or self.clock())
        row = self.db.query(Notification).filter(Notification.id == notification_id).first()
        if not row:
            raise NotFoundError(f"Notification {notification_id} not found")

        record = NotificationRecord.model_validate(row)
        if record.status != NotificationStatus.FAILED:
            raise InvalidTransitionError(f"Only failed notifications can be resent, got {record.status.value}")
        if row.booking.status == BookingStatus.CANCELLED:
            raise InvalidTransitionError(f"Booking {row.booking_id} is cancelled, notification not resent")

        with booking_context(row.booking_id):
            context = build_template_context(row, row.booking)
            try:
                self._deliver(record.channel, record.recipient, context)
            except DeliveryError as e:
                if persist_transition(self.db, record, record_resend_failure(record, str(e))):
                    self.db.commit()
                logger.warning(f"Resend of notification {notification_id} failed: {e}")
                raise

            after = mark_sent(record, now, resend=True)
            persist_transition(self.db, record, after)
            self.db.commit()
            logger.info(f"Resent notification {notification_id} to {record.recipient}")
            return after

    def _due_ids(self, now: datetime) -> List[UUID]:
        rows = (
            self.db.query(Notification.id)
            .filter(
                Notification.status == NotificationStatus.PENDING,
                Notification.scheduled_for <= now,
                or_(Notification.claimed_until.is_(None), Notification.claimed_until <= now),
            )
            .order_by(Notification.scheduled_for)
            .limit(self.batch_size)
            .all()
        )
        return [row.id for row in rows]

    def _claim(self, notification_id: UUID, token: str, now: datetime) -> bool:
        claimed = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.status == NotificationStatus.PENDING,
            or_(Notification.claimed_until.is_(None), Notification.claimed_until <= now),
        ).update({
            Notification.claim_token: token,
            Notification.claimed_until: now + self.lease,
        }, synchronize_session=False)
        self.db.commit()
        return claimed == 1

    def _process_one(self, notification_id: UUID, now: datetime) -> str:
        token = str(uuid4())
        if not self._claim(notification_id, token, now):
            logger.debug(f"Notification {notification_id} already claimed or no longer pending")
            return "skipped"

        row = self.db.query(Notification).filter(Notification.id == notification_id).first()
        record = NotificationRecord.model_validate(row)
        booking = row.booking

        with booking_context(booking.id):
            if booking.status == BookingStatus.CANCELLED:
                persist_transition(self.db, record, cancel(record), claim_token=token)
                self.db.commit()
                logger.info(f"Notification {notification_id} dropped: booking cancelled")
                return "skipped"

            context = build_template_context(row, booking)
            try:
                self._deliver(record.channel, record.recipient, context)
            except DeliveryError as e:
                after = record_failure(record, str(e), self.max_attempts)
                persist_transition(self.db, record, after, claim_token=token)
                self.db.commit()
                logger.warning(
                    f"Delivery of notification {notification_id} failed "
                    f"(attempt {after.attempt_count}/{self.max_attempts}, now {after.status.value}): {e}"
                )
                return "failed"

            sent = persist_transition(self.db, record, mark_sent(record, now), claim_token=token)
            self.db.commit()
            if not sent:
                return "dropped"
            logger.info(f"Notification {notification_id} sent to {record.recipient}")
            return "sent"

    def _deliver(self, channel: NotificationChannel, recipient: str, context: Dict[str, Any]) -> None:
        """Run one delivery call, bounded by ``delivery_timeout``. Every failure becomes ``DeliveryError``."""
        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(self.delivery.deliver, channel, recipient, context)
            future.result(timeout=self.delivery_timeout)
        except FutureTimeoutError as e:
            raise DeliveryError(f"Delivery timed out after {self.delivery_timeout}s") from e
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(str(e)) from e
        finally:
            # A timed-out call keeps its thread; do not block the sweep on it
            executor.shutdown(wait=False)
