"""Tests for reminder scheduling and cancellation."""
from datetime import timedelta

import pytest

from booking_core.models import (
    Notification,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
    ReminderTime,
)
from booking_core.schemas.booking import BookingRecord
from booking_core.services.notification.reminder_service import ReminderScheduler, reminder_offset
from tests.conftest import MONDAY, NOW, at, make_booking, make_notification


@pytest.fixture
def scheduler(db, clock):
    return ReminderScheduler(db, clock=clock)


@pytest.fixture
def booking(db, host):
    return make_booking(db, host, at(MONDAY, 10), at(MONDAY, 11))


def reminders_for(db, booking):
    return db.query(Notification).filter(
        Notification.booking_id == booking.id,
        Notification.type == NotificationType.REMINDER,
    ).all()


class TestReminderOffset:
    @pytest.mark.parametrize("setting, expected", [
        (ReminderTime.MINUTES_15, timedelta(minutes=15)),
        ("1_hour", timedelta(hours=1)),
        ("24_hours", timedelta(hours=24)),
        (ReminderTime.NONE, None),
    ])
    def test_known_settings(self, setting, expected):
        assert reminder_offset(setting) == expected

    def test_unknown_setting_defaults_to_30_minutes(self):
        assert reminder_offset("45_minutes") == timedelta(minutes=30)


class TestOnBookingConfirmed:
    def test_customer_then_host(self, db, scheduler, booking):
        created = scheduler.on_booking_confirmed(BookingRecord.model_validate(booking), ReminderTime.MINUTES_30)

        assert [r.recipient for r in created] == ["carl@example.com", "host@example.com"]
        for reminder in created:
            assert reminder.type == NotificationType.REMINDER
            assert reminder.channel == NotificationChannel.EMAIL
            assert reminder.status == NotificationStatus.PENDING
            assert reminder.scheduled_for == at(MONDAY, 9, 30)
            assert reminder.attempt_count == 0

    def test_no_reminder_when_fire_time_passed(self, db, scheduler, booking):
        created = scheduler.on_booking_confirmed(
            BookingRecord.model_validate(booking), ReminderTime.MINUTES_30, now=at(MONDAY, 9, 40)
        )
        assert created == []
        assert reminders_for(db, booking) == []

    def test_fire_time_equal_to_now_is_skipped(self, db, scheduler, booking):
        created = scheduler.on_booking_confirmed(
            BookingRecord.model_validate(booking), ReminderTime.MINUTES_30, now=at(MONDAY, 9, 30)
        )
        assert created == []

    def test_reminders_disabled(self, db, scheduler, booking):
        assert scheduler.on_booking_confirmed(BookingRecord.model_validate(booking), ReminderTime.NONE) == []
        assert reminders_for(db, booking) == []

    def test_unknown_setting_uses_default_offset(self, db, scheduler, booking):
        created = scheduler.on_booking_confirmed(BookingRecord.model_validate(booking), "45_minutes")
        assert {r.scheduled_for for r in created} == {at(MONDAY, 9, 30)}

    def test_repeated_confirmation_does_not_duplicate(self, db, scheduler, booking):
        record = BookingRecord.model_validate(booking)
        first = scheduler.on_booking_confirmed(record, ReminderTime.HOUR_1)
        second = scheduler.on_booking_confirmed(record, ReminderTime.HOUR_1)

        assert [r.id for r in first] == [r.id for r in second]
        assert len(reminders_for(db, booking)) == 2


class TestOnBookingCancelled:
    def test_fails_every_pending_notification(self, db, scheduler, booking):
        record = BookingRecord.model_validate(booking)
        scheduler.on_booking_confirmed(record, ReminderTime.MINUTES_30)
        make_notification(db, booking, NOW, type=NotificationType.CONFIRMATION)

        assert scheduler.on_booking_cancelled(record) == 3

        rows = db.query(Notification).filter(Notification.booking_id == booking.id).all()
        assert {r.status for r in rows} == {NotificationStatus.FAILED}
        assert {r.error_message for r in rows} == {"Booking cancelled"}

    def test_sent_notifications_are_left_alone(self, db, scheduler, booking):
        sent = make_notification(db, booking, NOW, status=NotificationStatus.SENT)
        pending = make_notification(db, booking, at(MONDAY, 9, 30))

        assert scheduler.on_booking_cancelled(BookingRecord.model_validate(booking)) == 1

        db.refresh(sent)
        db.refresh(pending)
        assert sent.status == NotificationStatus.SENT
        assert pending.status == NotificationStatus.FAILED

    def test_nothing_pending(self, db, scheduler, booking):
        assert scheduler.on_booking_cancelled(BookingRecord.model_validate(booking)) == 0
