from sqlalchemy import Column, Integer, Time, ForeignKey, Uuid, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
import uuid

from booking_core.models.base import Base


class AvailabilityRule(Base):
    """Recurring weekly window in which a host accepts bookings"""
    __tablename__ = "availability_rules"
    __table_args__ = (
        UniqueConstraint("user_id", "day_of_week", "start_time", "end_time", name="uq_availability_rule_window"),
        CheckConstraint("start_time < end_time", name="ck_availability_rule_order"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_rule_day"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    day_of_week = Column(Integer, nullable=False)  # 0=Monday, 6=Sunday
    start_time = Column(Time, nullable=False)  # local wall clock
    end_time = Column(Time, nullable=False)
    buffer_minutes = Column(Integer, nullable=False, default=0)  # gap before/after any booking
    max_bookings_per_day = Column(Integer, nullable=True)  # None = unlimited

    user = relationship("User", back_populates="availability_rules")

    def __repr__(self):
        return (
            f"<AvailabilityRule(day={self.day_of_week}, "
            f"{self.start_time}-{self.end_time}, buffer={self.buffer_minutes})>"
        )
