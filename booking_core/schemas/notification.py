# booking_core/schemas/notification.py
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from uuid import UUID

from booking_core.models.notification import NotificationChannel, NotificationStatus, NotificationType


class NotificationRecord(BaseModel):
    """Immutable snapshot of a notification row"""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    booking_id: UUID
    type: NotificationType
    channel: NotificationChannel
    recipient: str
    status: NotificationStatus
    scheduled_for: datetime
    attempt_count: int = Field(0, ge=0)
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None


class ProcessingSummary(BaseModel):
    """Outcome of one sweep"""
    attempted: int = Field(0, description="Notifications handed to the delivery collaborator")
    sent: int = Field(0, description="Delivered and marked sent")
    failed: int = Field(0, description="Delivery failures, retried later or terminally failed")
    skipped: int = Field(0, description="Due rows another sweep claimed first")
