"""Error taxonomy for the ride / booking core."""


class CarpoolError(Exception):
    """Base class for every error raised by the core."""

    retryable = False


class ValidationError(CarpoolError):
    """Bad input rejected before any write. Not retryable."""


class NotFoundError(CarpoolError):
    """Raised when an id does not resolve to a document."""


class RideNotFoundError(NotFoundError):
    pass


class BookingNotFoundError(NotFoundError):
    pass


class NotificationNotFoundError(NotFoundError):
    pass


class AuthorizationError(CarpoolError):
    """The acting user does not own the ride or booking being mutated."""


class InvalidStateTransition(CarpoolError):
    """Raised when a status change violates the state machine."""


class ConflictError(CarpoolError):
    """A concurrent write won the race; the caller may retry."""

    retryable = True


class SeatConflictError(ConflictError):
    """Seats were taken by a concurrent booking between check and commit."""


class ConcurrencyConflictError(ConflictError):
    """The document's version changed underneath the current transaction."""
