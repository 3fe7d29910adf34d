"""Logging configuration"""
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from booking_core.config.settings import get_settings

_booking_id: ContextVar[str] = ContextVar("booking_id", default="-")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(booking_id)s] %(message)s"


class BookingContextFilter(logging.Filter):
    """Injects the booking being worked on into every log record"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.booking_id = _booking_id.get()
        return True


@contextmanager
def booking_context(booking_id):
    """Tag log lines emitted inside the block with ``booking_id``"""
    token = _booking_id.set(str(booking_id))
    try:
        yield
    finally:
        _booking_id.reset(token)


def setup_logging(verbose=True):
    """Configure application logging"""
    settings = get_settings()

    if verbose:
        level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    else:
        level = logging.WARNING

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(BookingContextFilter())

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[handler],
        force=True,
    )

    if not verbose:
        # Silence noisy loggers
        noisy_loggers = [
            "sqlalchemy",
            "sqlalchemy.engine",
            "sqlalchemy.pool",
            "sqlalchemy.orm",
            "alembic",
            "celery",
            "kombu",
            "googleapiclient.discovery_cache",
            "msal",
            "urllib3",
        ]
        for name in noisy_loggers:
            logger = logging.getLogger(name)
            logger.setLevel(logging.ERROR)
            logger.propagate = False
