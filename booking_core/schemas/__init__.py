from .booking import BookingRequest, BookingRecord, CustomerInfo
from .notification import NotificationRecord, ProcessingSummary
from .availability import AvailabilityRuleCreate, AvailabilityRuleUpdate, AvailabilityRuleResponse, SlotResponse
