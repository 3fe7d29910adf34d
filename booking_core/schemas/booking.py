# booking_core/schemas/booking.py
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional
from datetime import datetime, timezone
from uuid import UUID

from booking_core.models.booking import BookingStatus, CalendarSyncStatus


class CustomerInfo(BaseModel):
    """Who is booking the host"""
    name: str = Field(..., min_length=1, max_length=100, description="Customer name")
    email: str = Field(..., min_length=3, max_length=255, description="Customer email")
    phone: Optional[str] = Field(None, max_length=20, description="Customer phone (E.164)")

    @field_validator("email")
    @classmethod
    def email_has_at(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v.strip().lower()


class BookingRequest(BaseModel):
    """Booking creation input handed over by the HTTP layer"""
    host_user_id: UUID = Field(..., description="Host being booked")
    start_time: datetime = Field(..., description="Start instant, ISO-8601 UTC")
    end_time: datetime = Field(..., description="End instant, ISO-8601 UTC")
    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_email: str = Field(..., min_length=3, max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=20)

    @field_validator("start_time", "end_time")
    @classmethod
    def as_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def customer(self) -> CustomerInfo:
        return CustomerInfo(name=self.customer_name, email=self.customer_email, phone=self.customer_phone)


class BookingRecord(BaseModel):
    """Immutable snapshot of a booking row"""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    user_id: UUID
    start_time: datetime
    end_time: datetime
    timezone: str
    status: BookingStatus
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    external_event_id: Optional[str] = None
    calendar_sync_status: CalendarSyncStatus = CalendarSyncStatus.PENDING
    calendar_sync_error: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
