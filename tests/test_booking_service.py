"""Tests for the booking lifecycle: create, payment outcome, cancel."""
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from booking_core.core.exceptions import (
    BookingNotFoundError,
    ConflictError,
    InvalidTransitionError,
    OutOfAvailabilityError,
    TransientStoreError,
    ValidationError,
)
from booking_core.models import (
    Booking,
    BookingStatus,
    CalendarIntegration,
    CalendarSyncStatus,
    Notification,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
)
from booking_core.schemas.booking import BookingRequest
from booking_core.services.booking.booking_service import BookingService
from booking_core.services.booking.conflict_service import ConflictDetector
from booking_core.services.calendar.calendar_sync_service import CalendarSyncService
from tests.conftest import (
    MONDAY,
    NOW,
    FakeCalendarProvider,
    at,
    calendar_sync_for,
    make_host,
    make_rule,
    window,
)


def make_request(host, start=None, end=None, **overrides) -> BookingRequest:
    values = dict(
        host_user_id=host.id,
        start_time=start or at(MONDAY, 10),
        end_time=end or at(MONDAY, 11),
        customer_name="Carl Customer",
        customer_email="Carl@Example.com",
    )
    values.update(overrides)
    return BookingRequest(**values)


def notifications(db, booking_id, type=None):
    query = db.query(Notification).filter(Notification.booking_id == booking_id)
    if type is not None:
        query = query.filter(Notification.type == type)
    return query.all()


@pytest.fixture
def provider():
    return FakeCalendarProvider()


@pytest.fixture
def service(db, clock, host, provider):
    make_rule(db, host)
    return BookingService(db, calendar_sync=calendar_sync_for(db, host, provider), clock=clock)


class TestCreateBooking:
    def test_confirmed_booking(self, db, service, host, provider):
        record = service.create_booking(make_request(host))

        assert record.status == BookingStatus.CONFIRMED
        assert record.customer_email == "carl@example.com"
        assert record.calendar_sync_status == CalendarSyncStatus.SYNCED
        assert record.external_event_id == "evt-123"
        assert provider.created == [record.id]

        row = db.query(Booking).filter(Booking.id == record.id).one()
        assert row.external_event_id == "evt-123"
        assert row.calendar_sync_status == CalendarSyncStatus.SYNCED

    def test_queues_confirmations_and_reminders(self, db, service, host):
        record = service.create_booking(make_request(host))

        confirmations = notifications(db, record.id, NotificationType.CONFIRMATION)
        assert sorted(n.recipient for n in confirmations) == ["carl@example.com", "host@example.com"]
        assert {n.scheduled_for for n in confirmations} == {NOW}
        assert {n.channel for n in confirmations} == {NotificationChannel.EMAIL}

        reminders = notifications(db, record.id, NotificationType.REMINDER)
        assert sorted(n.recipient for n in reminders) == ["carl@example.com", "host@example.com"]
        assert {n.scheduled_for for n in reminders} == {at(MONDAY, 9, 30)}

    def test_sms_confirmation_when_host_enables_it(self, db, clock):
        host = make_host(db, email="texting@example.com", sms_notifications_enabled=True)
        make_rule(db, host)
        service = BookingService(db, calendar_sync=CalendarSyncService(db), clock=clock)

        record = service.create_booking(make_request(host, customer_phone="+15550100"))

        sms = [n for n in notifications(db, record.id, NotificationType.CONFIRMATION)
               if n.channel == NotificationChannel.SMS]
        assert [n.recipient for n in sms] == ["+15550100"]

    def test_no_sms_when_host_disabled_it(self, db, service, host):
        record = service.create_booking(make_request(host, customer_phone="+15550100"))
        assert all(n.channel == NotificationChannel.EMAIL for n in notifications(db, record.id))

    def test_without_calendar_integration(self, db, clock, host):
        make_rule(db, host)
        service = BookingService(db, calendar_sync=CalendarSyncService(db), clock=clock)

        record = service.create_booking(make_request(host))

        assert record.status == BookingStatus.CONFIRMED
        assert record.calendar_sync_status == CalendarSyncStatus.SYNC_DISABLED
        assert record.external_event_id is None

    def test_calendar_failure_does_not_fail_booking(self, db, clock, host):
        make_rule(db, host)
        provider = FakeCalendarProvider(fail_create=True)
        service = BookingService(db, calendar_sync=calendar_sync_for(db, host, provider), clock=clock)

        record = service.create_booking(make_request(host))

        assert record.status == BookingStatus.CONFIRMED
        assert record.calendar_sync_status == CalendarSyncStatus.FAILED
        assert "rejected" in record.calendar_sync_error
        row = db.query(Booking).filter(Booking.id == record.id).one()
        assert row.calendar_sync_status == CalendarSyncStatus.FAILED

    def test_busy_lookup_failure_degrades_to_free(self, db, clock, host):
        make_rule(db, host)
        provider = FakeCalendarProvider(fail_busy=True)
        service = BookingService(db, calendar_sync=calendar_sync_for(db, host, provider), clock=clock)

        record = service.create_booking(make_request(host))

        assert record.status == BookingStatus.CONFIRMED
        integration = db.query(CalendarIntegration).filter_by(user_id=host.id).one()
        assert integration.last_sync_status == "failed"

    def test_external_busy_time_is_not_bookable(self, db, clock, host):
        make_rule(db, host)
        provider = FakeCalendarProvider(busy=[window(MONDAY, "10:30", "11:30")])
        service = BookingService(db, calendar_sync=calendar_sync_for(db, host, provider), clock=clock)

        with pytest.raises(OutOfAvailabilityError):
            service.create_booking(make_request(host))
        assert db.query(Booking).count() == 0

    def test_conflict_is_not_retried(self, db, service, host):
        service.create_booking(make_request(host))
        with pytest.raises(ConflictError):
            service.create_booking(make_request(host, customer_email="other@example.com"))

    def test_past_start_is_rejected(self, db, service, host):
        with pytest.raises(ValidationError):
            service.create_booking(make_request(host), now=at(MONDAY, 12))

    def test_requires_payment(self, db, service, host, provider):
        record = service.create_booking(make_request(host), requires_payment=True)

        assert record.status == BookingStatus.PENDING_PAYMENT
        assert record.calendar_sync_status == CalendarSyncStatus.PENDING
        assert notifications(db, record.id) == []
        assert provider.created == []


class TestTransientRetry:
    def make_flaky_detector(self, db, clock, failures):
        real = ConflictDetector(db, clock=clock)
        detector = MagicMock(spec=ConflictDetector)
        calls = {"count": 0}

        def try_reserve(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] <= failures:
                raise TransientStoreError("lock timeout")
            return real.try_reserve(*args, **kwargs)

        detector.try_reserve.side_effect = try_reserve
        return detector

    def test_transient_error_is_retried(self, db, clock, host):
        make_rule(db, host)
        detector = self.make_flaky_detector(db, clock, failures=2)
        service = BookingService(
            db, calendar_sync=CalendarSyncService(db), detector=detector, clock=clock, retry_attempts=3
        )

        record = service.create_booking(make_request(host))

        assert record.status == BookingStatus.CONFIRMED
        assert detector.try_reserve.call_count == 3

    def test_gives_up_after_max_attempts(self, db, clock, host):
        make_rule(db, host)
        detector = self.make_flaky_detector(db, clock, failures=5)
        service = BookingService(
            db, calendar_sync=CalendarSyncService(db), detector=detector, clock=clock, retry_attempts=3
        )

        with pytest.raises(TransientStoreError):
            service.create_booking(make_request(host))
        assert detector.try_reserve.call_count == 3


class TestPaymentOutcome:
    def test_confirm_payment(self, db, service, host, provider):
        pending = service.create_booking(make_request(host), requires_payment=True)

        record = service.confirm_payment(pending.id)

        assert record.status == BookingStatus.CONFIRMED
        assert record.calendar_sync_status == CalendarSyncStatus.SYNCED
        assert provider.created == [pending.id]
        assert len(notifications(db, pending.id, NotificationType.CONFIRMATION)) == 2
        assert len(notifications(db, pending.id, NotificationType.REMINDER)) == 2

    def test_payment_failed_frees_the_slot(self, db, service, host):
        pending = service.create_booking(make_request(host), requires_payment=True)

        record = service.mark_payment_failed(pending.id)

        assert record.status == BookingStatus.PAYMENT_FAILED
        again = service.create_booking(make_request(host, customer_email="second@example.com"))
        assert again.status == BookingStatus.CONFIRMED

    def test_confirmed_booking_cannot_fail_payment(self, db, service, host):
        record = service.create_booking(make_request(host))
        with pytest.raises(InvalidTransitionError):
            service.mark_payment_failed(record.id)


class TestCancelBooking:
    def test_cancel(self, db, service, host):
        record = service.create_booking(make_request(host))

        cancelled = service.cancel_booking(record.id, reason="customer request")

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancelled_at == NOW
        row = db.query(Booking).filter(Booking.id == record.id).one()
        assert row.status == BookingStatus.CANCELLED
        assert row.cancellation_reason == "customer request"

        pending = [n for n in notifications(db, record.id) if n.status == NotificationStatus.PENDING]
        assert pending == []
        assert {n.error_message for n in notifications(db, record.id)} == {"Booking cancelled"}

    def test_cancelled_slot_is_bookable_again(self, db, service, host):
        record = service.create_booking(make_request(host))
        service.cancel_booking(record.id)
        again = service.create_booking(make_request(host, customer_email="second@example.com"))
        assert again.status == BookingStatus.CONFIRMED

    def test_cancel_twice(self, db, service, host):
        record = service.create_booking(make_request(host))
        service.cancel_booking(record.id)
        with pytest.raises(InvalidTransitionError):
            service.cancel_booking(record.id)

    def test_pending_payment_cannot_be_cancelled(self, db, service, host):
        record = service.create_booking(make_request(host), requires_payment=True)
        with pytest.raises(InvalidTransitionError):
            service.cancel_booking(record.id)

    def test_unknown_booking(self, service):
        with pytest.raises(BookingNotFoundError):
            service.cancel_booking(uuid4())
