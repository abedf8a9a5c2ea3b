"""
Coded booking errors.

Every failure surfaced to a caller of the reservation flow is one of these
codes. The FastAPI handler in main.py renders them as
{"code": ..., "message": ...} with the matching HTTP status.
"""

from typing import Dict, Optional


class BookingError(Exception):
    """Base class for coded failures."""

    code = "internal"
    status_code = 500

    def __init__(self, message: str = "", field: Optional[str] = None):
        super().__init__(message)
        self.message = message or self.code.replace("_", " ")
        self.field = field

    def to_dict(self) -> Dict[str, str]:
        payload = {"code": self.code, "message": self.message}
        if self.field:
            payload["field"] = self.field
        return payload

    def __repr__(self):
        return f"<{type(self).__name__} {self.code}: {self.message}>"


class Unauthenticated(BookingError):
    code = "unauthenticated"
    status_code = 401


class PermissionDenied(BookingError):
    code = "permission_denied"
    status_code = 403


class InvalidArgument(BookingError):
    code = "invalid_argument"
    status_code = 400


class NotFound(BookingError):
    code = "not_found"
    status_code = 404


class FailedPrecondition(BookingError):
    code = "failed_precondition"
    status_code = 409


class ResourceExhausted(BookingError):
    code = "resource_exhausted"
    status_code = 429


class DeadlineExceeded(BookingError):
    code = "deadline_exceeded"
    status_code = 504


class Unavailable(BookingError):
    code = "unavailable"
    status_code = 503


class Internal(BookingError):
    code = "internal"
    status_code = 500


class AvailabilityConflict(FailedPrecondition):
    """The requested range overlaps a confirmed booking or an active hold."""

    def __init__(self, message: str = "Selected dates are no longer available", conflict: Optional[dict] = None):
        super().__init__(message)
        self.conflict = conflict


class HoldInactive(FailedPrecondition):
    """The hold backing a finalize is missing, consumed, released or expired."""
