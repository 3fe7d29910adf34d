# booking_core/schemas/availability.py
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional
from datetime import datetime, time
from uuid import UUID


class AvailabilityRuleCreate(BaseModel):
    """New weekly availability window"""
    day_of_week: int = Field(..., ge=0, le=6, description="0=Monday ... 6=Sunday")
    start_time: time = Field(..., description="Local start (wall clock)")
    end_time: time = Field(..., description="Local end (wall clock)")
    buffer_minutes: int = Field(0, ge=0, le=240, description="Gap required around bookings")
    max_bookings_per_day: Optional[int] = Field(None, ge=1, description="Daily cap, None for unlimited")

    @field_validator("end_time")
    @classmethod
    def end_after_start(cls, v: time, info) -> time:
        start_time = info.data.get("start_time")
        if start_time and v <= start_time:
            raise ValueError("End time must be after start time")
        return v


class AvailabilityRuleUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value"""
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    buffer_minutes: Optional[int] = Field(None, ge=0, le=240)
    max_bookings_per_day: Optional[int] = Field(None, ge=1)


class AvailabilityRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    day_of_week: int
    start_time: time
    end_time: time
    buffer_minutes: int
    max_bookings_per_day: Optional[int] = None


class SlotResponse(BaseModel):
    """Bookable slot as returned to the HTTP layer"""
    start_time: datetime
    end_time: datetime
    duration_minutes: int
