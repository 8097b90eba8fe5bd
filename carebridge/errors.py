"""
Domain errors for search, availability, shift and waitlist operations.

Each error carries the HTTP status and the stable ``code`` the API returns,
so callers can tell a lost shift race apart from a generic failure.
"""

from typing import Optional


class CareBridgeError(Exception):
    status_code = 500
    code = "internal_error"
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {
            "success": False,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class SearchValidationError(CareBridgeError):
    """Malformed search request; rejected before any relaxation"""

    status_code = 422
    code = "validation_error"


class ShiftActionError(CareBridgeError):
    """Malformed shift action; rejected before any state transition"""

    status_code = 422
    code = "validation_error"


class WaitlistValidationError(CareBridgeError):
    status_code = 422
    code = "validation_error"


class NotFoundError(CareBridgeError):
    status_code = 404
    code = "not_found"


class ShiftConflictError(CareBridgeError):
    """The listing was no longer open when the accept was attempted"""

    status_code = 409
    code = "listing_unavailable"


class AvailabilityConflictError(CareBridgeError):
    status_code = 409
    code = "availability_overlap"


class DirectoryUnavailableError(CareBridgeError):
    """Provider directory could not be queried; search is safe to retry"""

    status_code = 503
    code = "directory_unavailable"
    retryable = True
