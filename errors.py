"""Domain errors raised by the booking services.

Each error carries the HTTP status it maps to and a short machine code so
clients can tell which precondition failed.
"""


class BookingError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFound(BookingError):
    status_code = 404
    code = "not_found"


class Forbidden(BookingError):
    status_code = 403
    code = "forbidden"


class Conflict(BookingError):
    status_code = 409
    code = "conflict"


class SlotUnavailable(Conflict):
    """A requested booking cannot be taken. Rendered as a bad request."""

    status_code = 400
    code = "slot_unavailable"


class ValidationError(BookingError):
    status_code = 400
    code = "validation_error"


class InvalidState(BookingError):
    status_code = 409
    code = "invalid_state"


class UpstreamError(BookingError):
    """Payment or meeting provider failure. Never retried."""

    status_code = 502
    code = "upstream_error"


class ServiceUnavailable(BookingError):
    status_code = 503
    code = "service_unavailable"
