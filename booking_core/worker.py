"""
Celery worker entry point
Runs the notification sweep on the beat schedule and on demand
"""
import logging
from celery.signals import worker_ready, worker_shutdown

from booking_core.config.celery_config import celery_app, SWEEP_TASK_NAME
from booking_core.config.settings import get_settings
from booking_core.utils.my_logging import setup_logging

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)

settings = get_settings()


@worker_ready.connect
def worker_ready_handler(sender=None, **kwargs):
    """Handle worker startup: sweep once right away instead of waiting for the first beat"""
    logger.info("Celery worker ready")
    logger.info(f"Registered tasks: {sorted(name for name in celery_app.tasks.keys() if name.startswith('booking_core'))}")
    celery_app.send_task(SWEEP_TASK_NAME)
    logger.info(f"Queued startup notification sweep, then every {settings.NOTIFICATION_SWEEP_INTERVAL_SECONDS}s")


@worker_shutdown.connect
def worker_shutdown_handler(sender=None, **kwargs):
    """Handle worker shutdown"""
    logger.info("Celery worker shutting down")


if __name__ == "__main__":
    # Worker with an embedded beat scheduler
    celery_app.start([
        'worker',
        '--beat',
        '--loglevel=info',
        '--concurrency=4',
        '--max-tasks-per-child=1000'
    ])
