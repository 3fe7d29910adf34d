import logging
from uuid import UUID

from booking_core.config.celery_config import celery_app
from booking_core.config.database import SessionLocal
from booking_core.services.notification.queue_processor import NotificationQueueProcessor

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def sweep_notifications(self):
    """Deliver every due notification once"""
    db = SessionLocal()
    try:
        summary = NotificationQueueProcessor(db).sweep()
        return summary.model_dump()
    except Exception as exc:
        logger.error(f"Notification sweep failed: {exc}")
        raise self.retry(exc=exc, countdown=30 * (self.request.retries + 1))
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=0)
def resend_notification(self, notification_id: str):
    """Manual resend of a failed notification"""
    db = SessionLocal()
    try:
        record = NotificationQueueProcessor(db).resend(UUID(notification_id))
        return {"status": record.status.value, "notification_id": notification_id}
    finally:
        db.close()
