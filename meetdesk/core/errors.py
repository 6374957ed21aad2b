"""Booking error taxonomy.

Every Booking Authority failure is one of these kinds. The HTTP layer turns them into
responses using ``status_code`` and ``kind``; nothing in the engine retries on them.
"""


class BookingError(Exception):
    kind = "booking_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    kind = "validation_error"
    status_code = 400


class InvalidTimeFormat(ValidationError):
    kind = "invalid_time_format"


class NotFound(BookingError):
    kind = "not_found"
    status_code = 404


class Forbidden(BookingError):
    kind = "forbidden"
    status_code = 403


class InvalidTransition(BookingError):
    kind = "invalid_transition"
    status_code = 409


class Conflict(BookingError):
    kind = "conflict"
    status_code = 409


class SlotUnavailable(Conflict):
    kind = "slot_unavailable"
