"""
Error taxonomy for the adherence core.

Every error is recoverable and maps to one HTTP status; the server turns
them into JSON responses with a single exception handler.
"""


class AdherenceError(Exception):
    status_code = 400
    kind = "adherence_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AdherenceError):
    """Malformed medication definition."""
    status_code = 422
    kind = "validation_error"


class InvalidStatusError(AdherenceError):
    """A dose can only be marked Taken or Missed."""
    status_code = 400
    kind = "invalid_status"


class FutureMarkError(AdherenceError):
    """The dose's scheduled time has not arrived yet."""
    status_code = 409
    kind = "future_mark"


class NotFoundError(AdherenceError):
    status_code = 404
    kind = "not_found"


class AuthorizationError(AdherenceError):
    """The record belongs to another identity."""
    status_code = 403
    kind = "forbidden"
