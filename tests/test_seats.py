"""Unit tests for seat reconciliation and booking amounts."""

import pytest

from carpool.domain.enums import RideStatus
from carpool.domain.exceptions import SeatConflictError, ValidationError
from carpool.domain.seats import booking_amount, reconcile_seats


class TestReconcileSeats:
    def test_no_bookings_keeps_ride_available(self):
        state = reconcile_seats(3, RideStatus.AVAILABLE, [])
        assert state.available_seats == 3
        assert state.booked_seats == 0
        assert state.status == RideStatus.AVAILABLE

    def test_first_booking_marks_ride_booked(self):
        state = reconcile_seats(3, RideStatus.AVAILABLE, [2])
        assert state.available_seats == 1
        assert state.status == RideStatus.BOOKED

    def test_last_cancellation_reopens_ride(self):
        state = reconcile_seats(3, RideStatus.BOOKED, [])
        assert state.available_seats == 3
        assert state.status == RideStatus.AVAILABLE

    def test_full_ride_has_zero_seats(self):
        state = reconcile_seats(4, RideStatus.BOOKED, [1, 2, 1])
        assert state.available_seats == 0
        assert state.status == RideStatus.BOOKED

    def test_overbooking_is_a_conflict(self):
        with pytest.raises(SeatConflictError) as excinfo:
            reconcile_seats(3, RideStatus.BOOKED, [2, 2])
        assert excinfo.value.retryable is True

    @pytest.mark.parametrize(
        "status",
        [
            RideStatus.DRIVER_REACHED_PICKUP,
            RideStatus.PASSENGER_ARRIVED,
            RideStatus.TRIP_STARTED,
            RideStatus.DESTINATION_REACHED,
            RideStatus.COMPLETED,
            RideStatus.EXPIRED,
        ],
    )
    @pytest.mark.parametrize("confirmed", [[], [2]])
    def test_status_outside_seat_states_is_preserved(self, status, confirmed):
        state = reconcile_seats(3, status, confirmed)
        assert state.status == status
        assert state.available_seats == 3 - sum(confirmed)

    def test_reconciling_twice_converges(self):
        first = reconcile_seats(3, RideStatus.AVAILABLE, [1])
        second = reconcile_seats(3, first.status, [1])
        assert first == second


class TestBookingAmount:
    def test_seats_times_cost(self):
        assert booking_amount(2, 80) == 160

    @pytest.mark.parametrize("seats", [0, -1])
    def test_rejects_non_positive_seats(self, seats):
        with pytest.raises(ValidationError):
            booking_amount(seats, 80)
