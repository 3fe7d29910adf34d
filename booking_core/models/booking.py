from sqlalchemy import Column, String, Text, ForeignKey, Uuid, Index, CheckConstraint, Enum as SQLAEnum
from sqlalchemy.orm import relationship
import uuid
import enum

from booking_core.models.base import Base, UTCDateTime, utcnow


class BookingStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"


# Statuses that occupy the host's time
ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED)


class CalendarSyncStatus(str, enum.Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    SYNC_DISABLED = "sync_disabled"


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_bookings_host_window", "user_id", "start_time", "end_time"),
        CheckConstraint("end_time > start_time", name="ck_bookings_order"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Stored as UTC instants, displayed in `timezone`
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    timezone = Column(String(50), nullable=False, default="UTC")

    status = Column(
        SQLAEnum(BookingStatus, name="booking_status", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=BookingStatus.CONFIRMED,
    )

    # Customer info
    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(20), nullable=True)

    # Calendar sync
    external_event_id = Column(String(255), nullable=True)
    calendar_sync_status = Column(
        SQLAEnum(CalendarSyncStatus, name="calendar_sync_status", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=CalendarSyncStatus.PENDING,
    )
    calendar_sync_error = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    host = relationship("User")
    notifications = relationship("Notification", back_populates="booking")

    def __repr__(self):
        return f"<Booking(id={self.id}, {self.start_time}-{self.end_time}, status={self.status})>"
