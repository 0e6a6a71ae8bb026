"""
Typed rejections raised by the payout engine.

Every rejected mutation surfaces as one of these; main.py maps them onto
HTTP status codes. Payment rail rejections are not exceptions: they are
recorded on the transaction and schedule instead.
"""


class PayoutEngineError(Exception):
    """Base class for engine rejections"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(PayoutEngineError):
    """Unknown schedule, alert or transaction id"""
    status_code = 404


class ValidationError(PayoutEngineError):
    """Malformed enumeration value or negative amount"""
    status_code = 422


class InvalidStateError(PayoutEngineError):
    """Operation not allowed in the current state"""
    status_code = 409


class ConcurrencyConflictError(InvalidStateError):
    """A transaction is already in flight for the schedule"""
