from .base import Base
from .user import User, UserSettings, ReminderTime
from .availability import AvailabilityRule
from .booking import Booking, BookingStatus, CalendarSyncStatus, ACTIVE_BOOKING_STATUSES
from .notification import Notification, NotificationType, NotificationChannel, NotificationStatus
from .calendar_integration import CalendarIntegration

__all__ = [
    "Base",
    "User",
    "UserSettings",
    "ReminderTime",
    "AvailabilityRule",
    "Booking",
    "BookingStatus",
    "CalendarSyncStatus",
    "ACTIVE_BOOKING_STATUSES",
    "Notification",
    "NotificationType",
    "NotificationChannel",
    "NotificationStatus",
    "CalendarIntegration",
]
