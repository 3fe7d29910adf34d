from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional
from uuid import UUID
from zoneinfo import ZoneInfo
import logging

from sqlalchemy import text, update
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from booking_core.config.settings import get_settings
from booking_core.core.exceptions import (
    ConflictError,
    OutOfAvailabilityError,
    TransientStoreError,
    ValidationError,
)
from booking_core.models.availability import AvailabilityRule
from booking_core.models.base import utcnow
from booking_core.models.booking import Booking, BookingStatus, ACTIVE_BOOKING_STATUSES, CalendarSyncStatus
from booking_core.models.user import User
from booking_core.schemas.booking import BookingRecord, CustomerInfo
from booking_core.services.availability.availability_service import AvailabilityEngine, resolve_timezone
from booking_core.services.scheduling.time_window import (
    TimeWindow,
    blocks_with_buffer,
    ensure_utc,
    local_days,
    local_window,
)

logger = logging.getLogger(__name__)
settings = get_settings()


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


class ReservationTransaction:
    """
    Unit of atomicity for one reservation.

    Entering takes an exclusive per-host lock by bumping
    ``users.reservation_lock_version`` (a row lock on PostgreSQL, the write
    lock on SQLite), so reservations for one host are serialized while other
    hosts proceed in parallel. Leaving commits on success and rolls back on
    every other path. Lock waits and statements are bounded by
    ``timeout_seconds``; running out of time, losing the connection or hitting
    a lock error surfaces as ``TransientStoreError``.

    The session should not carry unrelated uncommitted work.
    """

    def __init__(self, db: Session, host_user_id: UUID, timeout_seconds: Optional[int] = None):
        self.db = db
        self.host_user_id = host_user_id
        self.timeout_seconds = timeout_seconds or settings.RESERVATION_TIMEOUT_SECONDS

    def __enter__(self) -> "ReservationTransaction":
        try:
            self._apply_timeouts()
            locked = self._lock_host()
        except Exception as e:
            self.db.rollback()
            if _is_transient(e):
                logger.warning(f"Could not lock host {self.host_user_id}: {e}")
                raise TransientStoreError("Reservation lock unavailable, retry later") from e
            raise

        if not locked:
            self.db.rollback()
            raise ValidationError(f"Unknown host {self.host_user_id}", {"host_user_id": str(self.host_user_id)})
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            try:
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                if _is_transient(e):
                    raise TransientStoreError("Reservation commit failed, retry later") from e
                raise
            return False

        self.db.rollback()
        if _is_transient(exc):
            logger.warning(f"Reservation for host {self.host_user_id} aborted: {exc}")
            raise TransientStoreError("Reservation aborted by the store, retry later") from exc
        return False

    def _apply_timeouts(self):
        if self.db.get_bind().dialect.name != "postgresql":
            # SQLite waits on its busy timeout, set on the connection
            return
        millis = int(self.timeout_seconds * 1000)
        self.db.execute(text(f"SET LOCAL lock_timeout = {millis}"))
        self.db.execute(text(f"SET LOCAL statement_timeout = {millis}"))

    def _lock_host(self) -> bool:
        result = self.db.execute(
            update(User)
            .where(User.id == self.host_user_id)
            .values(reservation_lock_version=User.reservation_lock_version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class ConflictDetector:
    """Admits or rejects candidate bookings for a host"""

    def __init__(
            self,
            db: Session,
            engine: Optional[AvailabilityEngine] = None,
            clock: Callable[[], datetime] = utcnow,
            timeout_seconds: Optional[int] = None
    ):
        self.db = db
        self.clock = clock
        self.engine = engine or AvailabilityEngine(db, clock=clock)
        self.timeout_seconds = timeout_seconds

    def try_reserve(
            self,
            host_user_id: UUID,
            candidate: TimeWindow,
            customer: CustomerInfo,
            busy_intervals: Iterable[TimeWindow] = (),
            initial_status: BookingStatus = BookingStatus.CONFIRMED,
            now: Optional[datetime] = None
    ) -> BookingRecord:
        """
        Reserve ``candidate`` for ``host_user_id`` or raise.

        Raises:
            ValidationError: end <= start, start in the past, or outside the host's hours
            ConflictError: an active booking (padded by the buffer) overlaps the candidate
            OutOfAvailabilityError: the candidate is not one of the currently computable slots
            TransientStoreError: lock or statement timeout, lost connection
        """
        if initial_status not in ACTIVE_BOOKING_STATUSES:
            raise ValueError(f"Bookings cannot be created as {initial_status.value}")

        now = ensure_utc(now or self.clock())
        candidate = TimeWindow(ensure_utc(candidate.start), ensure_utc(candidate.end))
        self._validate(host_user_id, candidate, now)

        host = self.db.query(User).filter(User.id == host_user_id).first()
        tz = resolve_timezone(host.timezone)
        busy_intervals = list(busy_intervals)

        with ReservationTransaction(self.db, host_user_id, self.timeout_seconds):
            buffer = self._buffer_for(host_user_id, candidate, tz)

            conflicts = self._conflicting_bookings(host_user_id, candidate, buffer, tz)
            if conflicts:
                logger.info(
                    f"Rejected {candidate} for host {host_user_id}: overlaps {len(conflicts)} booking(s)"
                )
                raise ConflictError("Requested time overlaps an existing booking", {
                    "conflicting_booking_ids": [str(b.id) for b in conflicts],
                    "buffer_minutes": int(buffer.total_seconds() // 60),
                })

            if not self._is_bookable_slot(host_user_id, candidate, busy_intervals, now):
                raise OutOfAvailabilityError("Requested time is not an available slot", {
                    "start_time": candidate.start.isoformat(),
                    "end_time": candidate.end.isoformat(),
                })

            booking = Booking(
                user_id=host_user_id,
                start_time=candidate.start,
                end_time=candidate.end,
                timezone=tz.key,
                status=initial_status,
                customer_name=customer.name,
                customer_email=customer.email,
                customer_phone=customer.phone,
                calendar_sync_status=CalendarSyncStatus.PENDING,
            )
            self.db.add(booking)
            self.db.flush()
            record = BookingRecord.model_validate(booking)

        logger.info(f"Reserved booking {record.id} for host {host_user_id} at {candidate}")
        return record

    def _validate(self, host_user_id: UUID, candidate: TimeWindow, now: datetime):
        if candidate.is_empty:
            raise ValidationError("End time must be after start time", {
                "start_time": candidate.start.isoformat(),
                "end_time": candidate.end.isoformat(),
            })
        if candidate.start < now:
            raise ValidationError("Cannot book a time in the past", {"start_time": candidate.start.isoformat()})
        if not self.engine.is_within_hours(host_user_id, candidate):
            raise ValidationError("Requested time is outside the host's available hours", {
                "start_time": candidate.start.isoformat(),
                "end_time": candidate.end.isoformat(),
            })

    def _buffer_for(self, host_user_id: UUID, candidate: TimeWindow, tz: ZoneInfo) -> timedelta:
        """Largest buffer among the rules whose window the candidate falls in"""
        day = next(local_days(candidate, tz))
        rules = (
            self.db.query(AvailabilityRule)
            .filter(AvailabilityRule.user_id == host_user_id, AvailabilityRule.day_of_week == day.weekday())
            .all()
        )
        minutes = [
            r.buffer_minutes or 0
            for r in rules
            if local_window(day, r.start_time, r.end_time, tz).overlaps(candidate)
        ]
        return timedelta(minutes=max(minutes, default=0))

    def _conflicting_bookings(
            self,
            host_user_id: UUID,
            candidate: TimeWindow,
            buffer: timedelta,
            tz: ZoneInfo
    ) -> List[Booking]:
        search = candidate.expand(buffer)
        nearby = (
            self.db.query(Booking)
            .filter(
                Booking.user_id == host_user_id,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                Booking.start_time < search.end,
                Booking.end_time > search.start,
            )
            .all()
        )
        return [
            b for b in nearby
            if blocks_with_buffer(TimeWindow(b.start_time, b.end_time), candidate, buffer, tz)
        ]

    def _is_bookable_slot(
            self,
            host_user_id: UUID,
            candidate: TimeWindow,
            busy_intervals: List[TimeWindow],
            now: datetime
    ) -> bool:
        seconds = candidate.duration.total_seconds()
        if seconds % 60:
            return False
        slots = self.engine.compute_slots(
            host_user_id, candidate.start, candidate.end, int(seconds // 60), busy_intervals, now=now
        )
        return any(slot == candidate for slot in slots)
