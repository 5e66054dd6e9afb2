"""Error taxonomy for the reservation services."""


class ReservationError(ValueError):
    """Base class for every error raised by the service layer."""

    http_status = 500

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class Unauthenticated(ReservationError):
    """Not authenticated"""

    http_status = 401


class Forbidden(ReservationError):
    """Forbidden"""

    http_status = 403


class NotFound(ReservationError):
    """Resource not found"""

    http_status = 404


class ValidationError(ReservationError):
    """Invalid request"""

    http_status = 400


class SoldOut(ReservationError):
    """No seats available"""

    http_status = 409


class TransactionFailure(ReservationError):
    """Database transaction failed"""

    http_status = 500


class ReferenceCollision(TransactionFailure):
    """Booking reference already in use"""


class ConcurrentUpdate(TransactionFailure):
    """Transaction rolled back by a concurrent update"""


class NotificationFailure(ReservationError):
    """Notification could not be delivered. Recorded, never raised by services."""

    http_status = 502
