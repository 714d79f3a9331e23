"""Domain enumerations and state-transition rules."""

import enum

from .exceptions import InvalidStateTransition


class RideStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    BOOKED = "BOOKED"
    DRIVER_REACHED_PICKUP = "DRIVER_REACHED_PICKUP"
    PASSENGER_ARRIVED = "PASSENGER_ARRIVED"
    TRIP_STARTED = "TRIP_STARTED"
    DESTINATION_REACHED = "DESTINATION_REACHED"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"  # also used for driver-cancelled rides


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Direction(str, enum.Enum):
    TO_OFFICE = "to_office"
    FROM_OFFICE = "from_office"


class CancelledBy(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"


class UserRole(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"


class NotificationType(str, enum.Enum):
    BOOKING_CANCELLED = "booking_cancelled"
    RIDE_CANCELLATION_CONFIRMED = "ride_cancellation_confirmed"
    RIDE_COMPLETED = "ride_completed"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.AVAILABLE: {RideStatus.BOOKED, RideStatus.EXPIRED},
    RideStatus.BOOKED: {
        RideStatus.AVAILABLE,
        RideStatus.DRIVER_REACHED_PICKUP,
        RideStatus.EXPIRED,
    },
    RideStatus.DRIVER_REACHED_PICKUP: {
        RideStatus.PASSENGER_ARRIVED,
        RideStatus.EXPIRED,
    },
    RideStatus.PASSENGER_ARRIVED: {RideStatus.TRIP_STARTED, RideStatus.EXPIRED},
    RideStatus.TRIP_STARTED: {RideStatus.DESTINATION_REACHED},
    RideStatus.DESTINATION_REACHED: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.EXPIRED: set(),
}

BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED, BookingStatus.COMPLETED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
}

# Statuses the seat reconciler is allowed to flip between
SEAT_DERIVED_STATUSES = frozenset({RideStatus.AVAILABLE, RideStatus.BOOKED})

BOOKABLE_RIDE_STATUSES = frozenset({RideStatus.AVAILABLE, RideStatus.BOOKED})

# Rides carrying an ETA that the auto-completion sweep may close out
AUTO_COMPLETABLE_RIDE_STATUSES = frozenset(
    {RideStatus.TRIP_STARTED, RideStatus.DESTINATION_REACHED}
)

ACTIVE_BOOKING_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED}
)


def check_ride_transition(current: RideStatus, target: RideStatus) -> None:
    """Raise ``InvalidStateTransition`` unless *current* -> *target* is legal."""
    current = RideStatus(current)
    if RideStatus(target) not in RIDE_TRANSITIONS.get(current, set()):
        raise InvalidStateTransition(
            f"Cannot transition ride from {current.value} to {RideStatus(target).value}"
        )


def check_booking_transition(current: BookingStatus, target: BookingStatus) -> None:
    current = BookingStatus(current)
    if BookingStatus(target) not in BOOKING_TRANSITIONS.get(current, set()):
        raise InvalidStateTransition(
            f"Cannot transition booking from {current.value} to {BookingStatus(target).value}"
        )
