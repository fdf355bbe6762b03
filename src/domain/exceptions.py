"""Typed errors raised by the ride lifecycle engine."""


class RideError(Exception):
    """Base class for every lifecycle error."""

    kind = "ride_error"


class NotFound(RideError):
    """Referenced ride, rider or driver does not exist."""

    kind = "not_found"


class InvalidTransition(RideError):
    """Status change violates the ride state machine."""

    kind = "invalid_transition"


class AlreadyMatched(RideError):
    """Ride was claimed by another driver or canceled first.

    Recoverable: the caller should try the next pending ride.
    """

    kind = "already_matched"


class InvalidRideState(RideError):
    """Completion confirmed on a ride that cannot take confirmations."""

    kind = "invalid_ride_state"


class DriverUnavailable(RideError):
    """Driver is offline and may not accept rides."""

    kind = "driver_unavailable"


class ConcurrentUpdate(RideError):
    """Stored ride changed since it was read (another worker wrote first)."""

    kind = "concurrent_update"
