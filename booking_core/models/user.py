from sqlalchemy import Column, String, Integer, Boolean, ForeignKey, Uuid, CheckConstraint, Enum as SQLAEnum
from sqlalchemy.orm import relationship
import uuid
import enum

from booking_core.models.base import Base, UTCDateTime, utcnow


class ReminderTime(str, enum.Enum):
    """How long before a booking starts the reminder fires"""
    NONE = "none"
    MINUTES_15 = "15_minutes"
    MINUTES_30 = "30_minutes"
    HOUR_1 = "1_hour"
    HOURS_2 = "2_hours"
    HOURS_24 = "24_hours"


BOOKING_HORIZON_CHOICES = (7, 14, 21, 30, 90, 180, 365)


class User(Base):
    """Host whose calendar is being booked"""
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    timezone = Column(String(50), nullable=False, default="UTC")

    # Bumped inside every reservation transaction to take the per-host lock
    reservation_lock_version = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, default=utcnow)

    settings = relationship("UserSettings", back_populates="user", uselist=False)
    availability_rules = relationship("AvailabilityRule", back_populates="user")

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"


class UserSettings(Base):
    """Per-host booking preferences"""
    __tablename__ = "user_settings"
    __table_args__ = (
        CheckConstraint(
            f"booking_horizon_days IN ({', '.join(str(d) for d in BOOKING_HORIZON_CHOICES)})",
            name="ck_user_settings_horizon",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    reminder_time = Column(
        SQLAEnum(ReminderTime, name="reminder_time", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=ReminderTime.MINUTES_30,
    )
    min_notice_minutes = Column(Integer, nullable=False, default=0)
    booking_horizon_days = Column(Integer, nullable=False, default=30)
    meeting_duration = Column(Integer, nullable=False, default=60)
    sms_notifications_enabled = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="settings")
