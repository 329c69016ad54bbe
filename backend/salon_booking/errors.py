"""
Booking error taxonomy

Services raise these; main.py turns them into JSON responses.
"""
from typing import Any, Dict, Optional


class BookingError(Exception):
    """Base class for every error the booking core reports to callers"""

    status_code = 400
    code = "booking_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.details}


class NotFoundError(BookingError):
    """Service, booking or user does not exist"""

    status_code = 404
    code = "not_found"


class PolicyViolationError(BookingError):
    """Advance-notice window, cancellation deadline, inactive service, bad transition"""

    status_code = 400
    code = "policy_violation"


class SlotUnavailableError(BookingError):
    """Requested interval overlaps a block or an existing booking, or is outside opening hours"""

    status_code = 409
    code = "slot_unavailable"


class ForbiddenError(BookingError):
    status_code = 403
    code = "forbidden"


class InvalidSignatureError(BookingError):
    """Webhook payload failed verification"""

    status_code = 400
    code = "invalid_signature"


class PaymentProviderError(BookingError):
    """The payment provider API call failed"""

    status_code = 502
    code = "payment_provider_error"
