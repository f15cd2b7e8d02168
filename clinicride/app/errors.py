# app/errors.py
from typing import Dict, List, Optional


class BookingError(Exception):
    """Base for every failure the booking core reports to a caller."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> dict:
        return {"error": self.message}


class ValidationError(BookingError):
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, fields: Optional[Dict[str, List[str]]] = None, message: Optional[str] = None):
        super().__init__(message)
        self.fields = fields or {}

    def to_payload(self) -> dict:
        return {"error": self.message, "details": {"fieldErrors": self.fields}}


class AuthenticationError(BookingError):
    status_code = 401
    default_message = "Unauthorized"


class AuthorizationError(BookingError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(BookingError):
    status_code = 404
    default_message = "Not found"


class ConflictError(BookingError):
    status_code = 409
    default_message = "Booking not found or already assigned to another guardian"


class InvalidTransitionError(BookingError):
    status_code = 400

    def __init__(self, source: str, target: str):
        self.source = source
        self.target = target
        super().__init__(f"Cannot transition from {source} to {target}")

    def to_payload(self) -> dict:
        return {"error": self.message, "from": self.source, "to": self.target}


class InternalError(BookingError):
    # detail stays in the server log, never in the payload
    def to_payload(self) -> dict:
        return {"error": self.default_message}
