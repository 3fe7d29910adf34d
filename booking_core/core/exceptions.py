"""Error taxonomy for the scheduling core"""
from typing import Any, Dict, Optional


class SchedulingError(Exception):
    """Base class for errors surfaced to callers of the scheduling core"""

    code = "scheduling_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(SchedulingError):
    """Malformed, past-dated or outside-hours time range. Never retried."""

    code = "bad_request"


class OutOfAvailabilityError(SchedulingError):
    """Candidate window is not inside any currently computable slot"""

    code = "out_of_availability"


class ConflictError(SchedulingError):
    """Candidate window overlaps an active booking of the same host"""

    code = "conflict"


class TransientStoreError(SchedulingError):
    """Lock timeout, serialization failure or lost connection during a reservation.

    Callers may retry a small bounded number of times.
    """

    code = "transient_store_error"


class NotFoundError(SchedulingError):
    code = "not_found"


class BookingNotFoundError(NotFoundError):
    pass


class InvalidTransitionError(SchedulingError):
    """Requested status change is not allowed by the state machine"""

    code = "invalid_transition"


class DeliveryError(Exception):
    """Raised by a notification transport when a message could not be delivered"""


class CalendarSyncError(Exception):
    """Raised by a calendar provider when the remote API call fails"""
