"""Celery application factory and beat schedule"""
from celery import Celery

from booking_core.config.settings import get_settings

settings = get_settings()

SWEEP_TASK_NAME = "booking_core.tasks.notification_tasks.sweep_notifications"


def create_celery_app() -> Celery:
    """Create the Celery app used by the worker and beat processes"""
    app = Celery(
        "booking_core",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=[
            "booking_core.tasks.notification_tasks",
            "booking_core.tasks.calendar_tasks",
        ],
    )

    app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        beat_schedule={
            "sweep-due-notifications": {
                "task": SWEEP_TASK_NAME,
                "schedule": float(settings.NOTIFICATION_SWEEP_INTERVAL_SECONDS),
                # A sweep older than one interval is superseded by the next one
                "options": {"expires": settings.NOTIFICATION_SWEEP_INTERVAL_SECONDS},
            },
        },
    )
    return app


celery_app = create_celery_app()
