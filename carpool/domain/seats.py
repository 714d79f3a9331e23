"""
Seat / availability reconciliation.

``available_seats`` is never decremented in place: it is always recomputed
from the ride's confirmed bookings, so calling the reconciler any number of
times converges on the same answer.

Status derivation only ever moves between AVAILABLE and BOOKED.  Rides in
an execution or terminal state keep their status; only the seat count is
refreshed.
"""

from __future__ import annotations

from typing import Iterable

from .entities import SeatState
from .enums import SEAT_DERIVED_STATUSES, RideStatus
from .exceptions import SeatConflictError, ValidationError


def reconcile_seats(
    total_seats: int, status: RideStatus, confirmed_seats: Iterable[int]
) -> SeatState:
    """Return the seat count and status a ride should have.  O(n)."""
    status = RideStatus(status)
    booked = sum(confirmed_seats)
    if booked > total_seats:
        raise SeatConflictError(
            f"Confirmed bookings hold {booked} seats but the ride has {total_seats}"
        )

    new_status = status
    if status in SEAT_DERIVED_STATUSES:
        if booked > 0 and status == RideStatus.AVAILABLE:
            new_status = RideStatus.BOOKED
        elif booked == 0 and status == RideStatus.BOOKED:
            new_status = RideStatus.AVAILABLE

    return SeatState(
        booked_seats=booked,
        available_seats=total_seats - booked,
        status=new_status,
    )


def booking_amount(seats_booked: int, cost_per_seat: int) -> int:
    """Amount the passenger hands the driver, fixed at booking time."""
    if seats_booked <= 0:
        raise ValidationError("At least one seat must be booked")
    return seats_booked * cost_per_seat
