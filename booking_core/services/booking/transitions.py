"""Booking status transitions over frozen ``BookingRecord`` values"""
from datetime import datetime
from typing import Dict, FrozenSet, Optional
import logging

from sqlalchemy.orm import Session

from booking_core.core.exceptions import InvalidTransitionError
from booking_core.models.booking import Booking, BookingStatus
from booking_core.schemas.booking import BookingRecord

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING_PAYMENT: frozenset({BookingStatus.CONFIRMED, BookingStatus.PAYMENT_FAILED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.PAYMENT_FAILED: frozenset(),
}


def transition(
        record: BookingRecord,
        target: BookingStatus,
        now: Optional[datetime] = None,
        reason: Optional[str] = None
) -> BookingRecord:
    if target not in ALLOWED_TRANSITIONS[record.status]:
        raise InvalidTransitionError(
            f"Booking {record.id} cannot move from {record.status.value} to {target.value}",
            {"booking_id": str(record.id), "from": record.status.value, "to": target.value},
        )
    changes = {"status": target}
    if target == BookingStatus.CANCELLED:
        changes["cancelled_at"] = now
        changes["cancellation_reason"] = reason
    return record.model_copy(update=changes)


def persist_transition(db: Session, before: BookingRecord, after: BookingRecord) -> None:
    """Compare-and-set write of a status change. Does not commit."""
    updated = db.query(Booking).filter(
        Booking.id == before.id,
        Booking.status == before.status,
    ).update({
        Booking.status: after.status,
        Booking.cancelled_at: after.cancelled_at,
        Booking.cancellation_reason: after.cancellation_reason,
    }, synchronize_session=False)

    if updated != 1:
        raise InvalidTransitionError(
            f"Booking {before.id} is no longer {before.status.value}",
            {"booking_id": str(before.id), "expected": before.status.value},
        )
    logger.info(f"Booking {before.id}: {before.status.value} -> {after.status.value}")
