"""Shared test fixtures and helpers."""
import os
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

from cryptography.fernet import Fernet

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("CALENDAR_ENCRYPTION_KEY", Fernet.generate_key().decode())

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from booking_core.core.exceptions import CalendarSyncError, DeliveryError  # noqa: E402
from booking_core.models import (  # noqa: E402
    AvailabilityRule,
    Base,
    Booking,
    BookingStatus,
    CalendarIntegration,
    Notification,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
    ReminderTime,
    User,
    UserSettings,
)
from booking_core.services.calendar.base import CalendarProvider  # noqa: E402
from booking_core.services.calendar.calendar_sync_service import CalendarSyncService  # noqa: E402
from booking_core.services.notification.delivery import NotificationDelivery  # noqa: E402
from booking_core.services.scheduling.time_window import TimeWindow  # noqa: E402
from booking_core.utils.encryption import encrypt_token  # noqa: E402

# 2030-01-07 is a Monday; the clock sits on the Tuesday before it
MONDAY = date(2030, 1, 7)
TUESDAY = MONDAY + timedelta(days=1)
NOW = datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)


def at(day: date, hh: int, mm: int = 0, tz=timezone.utc) -> datetime:
    return datetime.combine(day, time(hh, mm), tzinfo=tz).astimezone(timezone.utc)


def window(day: date, start: str, end: str) -> TimeWindow:
    sh, sm = map(int, start.split(":"))
    eh, em = map(int, end.split(":"))
    return TimeWindow(at(day, sh, sm), at(day, eh, em))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def host(db):
    return make_host(db)


def make_host(
    db,
    email: str = "host@example.com",
    tz: str = "UTC",
    reminder_time: ReminderTime = ReminderTime.MINUTES_30,
    min_notice_minutes: int = 0,
    booking_horizon_days: int = 30,
    sms_notifications_enabled: bool = False,
) -> User:
    """Helper to create a host with settings."""
    user = User(name="Hannah Host", email=email, timezone=tz)
    db.add(user)
    db.flush()
    db.add(UserSettings(
        user_id=user.id,
        reminder_time=reminder_time,
        min_notice_minutes=min_notice_minutes,
        booking_horizon_days=booking_horizon_days,
        sms_notifications_enabled=sms_notifications_enabled,
    ))
    db.commit()
    return user


def make_rule(
    db,
    user: User,
    day_of_week: int = 0,
    start: str = "09:00",
    end: str = "17:00",
    buffer_minutes: int = 0,
    max_bookings_per_day: Optional[int] = None,
) -> AvailabilityRule:
    rule = AvailabilityRule(
        user_id=user.id,
        day_of_week=day_of_week,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end),
        buffer_minutes=buffer_minutes,
        max_bookings_per_day=max_bookings_per_day,
    )
    db.add(rule)
    db.commit()
    return rule


def make_booking(
    db,
    user: User,
    start: datetime,
    end: datetime,
    status: BookingStatus = BookingStatus.CONFIRMED,
    customer_email: str = "carl@example.com",
    customer_phone: Optional[str] = None,
) -> Booking:
    booking = Booking(
        user_id=user.id,
        start_time=start,
        end_time=end,
        timezone=user.timezone,
        status=status,
        customer_name="Carl Customer",
        customer_email=customer_email,
        customer_phone=customer_phone,
    )
    db.add(booking)
    db.commit()
    return booking


def make_notification(
    db,
    booking: Booking,
    scheduled_for: datetime,
    status: NotificationStatus = NotificationStatus.PENDING,
    attempt_count: int = 0,
    type: NotificationType = NotificationType.REMINDER,
    channel: NotificationChannel = NotificationChannel.EMAIL,
    recipient: Optional[str] = None,
) -> Notification:
    notification = Notification(
        booking_id=booking.id,
        type=type,
        channel=channel,
        recipient=recipient or booking.customer_email,
        status=status,
        scheduled_for=scheduled_for,
        attempt_count=attempt_count,
    )
    db.add(notification)
    db.commit()
    return notification


class FakeDelivery(NotificationDelivery):
    """Records deliveries; raises for recipients listed in ``failing``."""

    def __init__(self, failing: Optional[set] = None, on_deliver=None):
        self.failing = failing or set()
        self.on_deliver = on_deliver
        self.calls: List[tuple] = []

    def deliver(self, channel, recipient, template_context):
        self.calls.append((channel, recipient, template_context))
        if self.on_deliver:
            self.on_deliver(channel, recipient, template_context)
        if recipient in self.failing:
            raise DeliveryError(f"mailbox {recipient} unavailable")

    @property
    def recipients(self) -> List[str]:
        return [call[1] for call in self.calls]


class FakeCalendarProvider(CalendarProvider):
    provider_name = "fake"

    def __init__(self, busy=None, event_id: Optional[str] = "evt-123", fail_busy=False, fail_create=False):
        self.integration = None
        self.db = None
        self.busy = busy or []
        self.event_id = event_id
        self.fail_busy = fail_busy
        self.fail_create = fail_create
        self.created = []

    def get_busy_intervals(self, range_start, range_end):
        if self.fail_busy:
            raise CalendarSyncError("provider down")
        return [w for w in self.busy if w.start < range_end and range_start < w.end]

    def create_external_event(self, booking):
        if self.fail_create:
            raise CalendarSyncError("provider rejected event")
        self.created.append(booking.id)
        return self.event_id



def make_integration(db, user: User, provider: str = "google") -> CalendarIntegration:
    integration = CalendarIntegration(
        user_id=user.id,
        provider=provider,
        is_active=True,
        is_primary=True,
        access_token_encrypted=encrypt_token("access-token"),
        refresh_token_encrypted=encrypt_token("refresh-token"),
        token_expires_at=NOW + timedelta(days=365 * 10),
        provider_config={"selected_calendar_id": "primary"},
    )
    db.add(integration)
    db.commit()
    return integration


def calendar_sync_for(db, user: User, provider: FakeCalendarProvider) -> CalendarSyncService:
    """CalendarSyncService whose factory hands out ``provider`` for the host's integration."""
    make_integration(db, user)

    def factory(integration, session):
        provider.integration = integration
        provider.db = session
        return provider

    return CalendarSyncService(db, provider_factory=factory)
