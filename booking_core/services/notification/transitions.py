"""
Notification state machine.

    pending --delivered-->                      sent
    pending --failed, attempts < max-->         pending (attempt_count + 1)
    pending --failed, attempts reach max-->     failed
    pending --booking cancelled-->              failed ("Booking cancelled")
    failed  --manual resend delivered-->        sent

Transitions are pure functions over frozen ``NotificationRecord`` values.
``persist_transition`` writes one transition with a compare-and-set UPDATE so
a row that changed underneath the caller (cancelled, claimed by another
sweep) is left alone.
"""
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.orm import Session

from booking_core.core.exceptions import InvalidTransitionError
from booking_core.models.notification import Notification, NotificationStatus
from booking_core.schemas.notification import NotificationRecord

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Booking cancelled"


def mark_sent(record: NotificationRecord, now: datetime, resend: bool = False) -> NotificationRecord:
    allowed = NotificationStatus.FAILED if resend else NotificationStatus.PENDING
    if record.status != allowed:
        raise InvalidTransitionError(
            f"Notification {record.id} cannot be marked sent from {record.status.value}"
        )
    return record.model_copy(update={
        "status": NotificationStatus.SENT,
        "sent_at": now,
        "error_message": None,
    })


def record_failure(record: NotificationRecord, error: str, max_attempts: int) -> NotificationRecord:
    """One more failed delivery; the notification fails for good once attempts reach ``max_attempts``"""
    if record.status != NotificationStatus.PENDING:
        raise InvalidTransitionError(
            f"Notification {record.id} cannot record a failure from {record.status.value}"
        )
    attempts = record.attempt_count + 1
    status = NotificationStatus.FAILED if attempts >= max_attempts else NotificationStatus.PENDING
    return record.model_copy(update={
        "status": status,
        "attempt_count": attempts,
        "error_message": error,
    })


def record_resend_failure(record: NotificationRecord, error: str) -> NotificationRecord:
    if record.status != NotificationStatus.FAILED:
        raise InvalidTransitionError(f"Notification {record.id} is not failed")
    return record.model_copy(update={
        "attempt_count": record.attempt_count + 1,
        "error_message": error,
    })


def cancel(record: NotificationRecord) -> NotificationRecord:
    if record.status != NotificationStatus.PENDING:
        raise InvalidTransitionError(
            f"Notification {record.id} cannot be cancelled from {record.status.value}"
        )
    return record.model_copy(update={
        "status": NotificationStatus.FAILED,
        "error_message": CANCELLED_MESSAGE,
    })


def persist_transition(
        db: Session,
        before: NotificationRecord,
        after: NotificationRecord,
        claim_token: Optional[str] = None
) -> bool:
    """
    Write ``after`` only if the row still matches ``before`` (and still holds
    ``claim_token`` when one is given). Releases the claim. Does not commit.

    Returns False when the row moved on in the meantime.
    """
    query = db.query(Notification).filter(
        Notification.id == before.id,
        Notification.status == before.status,
        Notification.attempt_count == before.attempt_count,
    )
    if claim_token is not None:
        query = query.filter(Notification.claim_token == claim_token)

    updated = query.update({
        Notification.status: after.status,
        Notification.attempt_count: after.attempt_count,
        Notification.error_message: after.error_message,
        Notification.sent_at: after.sent_at,
        Notification.claim_token: None,
        Notification.claimed_until: None,
    }, synchronize_session=False)

    if updated != 1:
        logger.warning(
            f"Notification {before.id} changed concurrently, dropped transition "
            f"{before.status.value} -> {after.status.value}"
        )
        return False
    return True
