from sqlalchemy import Column, String, Text, Integer, ForeignKey, Uuid, Index, CheckConstraint, Enum as SQLAEnum
from sqlalchemy.orm import relationship
import uuid
import enum

from booking_core.models.base import Base, UTCDateTime, utcnow


class NotificationType(str, enum.Enum):
    CONFIRMATION = "confirmation"
    REMINDER = "reminder"


class NotificationChannel(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_due", "status", "scheduled_for"),
        CheckConstraint("attempt_count >= 0", name="ck_notifications_attempts"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(
        Uuid(as_uuid=True), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )

    type = Column(
        SQLAEnum(NotificationType, name="notification_type", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
    )
    channel = Column(
        SQLAEnum(NotificationChannel, name="notification_channel", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=NotificationChannel.EMAIL,
    )
    recipient = Column(String(255), nullable=False)

    status = Column(
        SQLAEnum(NotificationStatus, name="notification_status", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=NotificationStatus.PENDING,
    )
    scheduled_for = Column(UTCDateTime, nullable=False)  # set once at creation
    attempt_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    sent_at = Column(UTCDateTime, nullable=True)

    # In-flight claim held by one sweep while it talks to the transport
    claim_token = Column(String(36), nullable=True)
    claimed_until = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow)

    booking = relationship("Booking", back_populates="notifications")

    def __repr__(self):
        return f"<Notification(id={self.id}, type={self.type}, status={self.status})>"
