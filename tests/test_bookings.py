"""Booking repository: seat accounting, cancellation and terminal states."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from carpool.domain.enums import BookingStatus, CancelledBy, NotificationType, RideStatus
from carpool.domain.exceptions import (
    AuthorizationError,
    BookingNotFoundError,
    ConcurrencyConflictError,
    InvalidStateTransition,
    RideNotFoundError,
    ValidationError,
)
from carpool.infrastructure.repositories import BookingRepository, RideRepository
from carpool.infrastructure.store import BOOKINGS, OUTBOX, Condition, DocumentStore


async def _assert_seats_conserved(session, ride_id):
    ride = await RideRepository(session).get_ride(ride_id)
    confirmed = await BookingRepository(session).get_bookings_by_ride(
        ride_id, [BookingStatus.CONFIRMED]
    )
    assert ride.available_seats == ride.total_seats - sum(b.seats_booked for b in confirmed)
    assert 0 <= ride.available_seats <= ride.total_seats


class TestBookThenCancel:
    @pytest.mark.asyncio
    async def test_book_two_of_three_then_cancel(self, db_session, make_ride, now):
        ride = await make_ride(total_seats=3, cost_per_seat=80)
        repo = BookingRepository(db_session)

        booking = await repo.create_booking(
            ride_id=ride.id, passenger_id="passenger-1", seats_booked=2, now=now
        )
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.amount_to_pay_driver == 160
        assert booking.booked_at == now

        ride = await RideRepository(db_session).get_ride(ride.id)
        assert ride.available_seats == 1
        assert ride.status == RideStatus.BOOKED

        booking = await repo.cancel_booking(
            booking.id, "meeting moved", CancelledBy.PASSENGER, acting_user_id="passenger-1", now=now
        )
        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancelled_at == now
        assert booking.cancellation_reason == "meeting moved"

        ride = await RideRepository(db_session).get_ride(ride.id)
        assert ride.available_seats == 3
        assert ride.status == RideStatus.AVAILABLE

        events = await DocumentStore(db_session).query(OUTBOX)
        assert [(e.user_id, e.type) for e in events] == [
            (ride.driver_id, NotificationType.BOOKING_CANCELLED)
        ]
        assert "meeting moved" in events[0].message


class TestCreateBooking:
    @pytest.mark.asyncio
    async def test_seats_conserved_across_creates_and_cancels(self, db_session, make_ride, now):
        ride = await make_ride(total_seats=4)
        repo = BookingRepository(db_session)

        a = await repo.create_booking(ride_id=ride.id, passenger_id="p1", seats_booked=1, now=now)
        await _assert_seats_conserved(db_session, ride.id)
        b = await repo.create_booking(ride_id=ride.id, passenger_id="p2", seats_booked=2, now=now)
        await _assert_seats_conserved(db_session, ride.id)
        await repo.cancel_booking(a.id, "sick", CancelledBy.PASSENGER, now=now)
        await _assert_seats_conserved(db_session, ride.id)
        await repo.create_booking(ride_id=ride.id, passenger_id="p3", seats_booked=2, now=now)
        await _assert_seats_conserved(db_session, ride.id)
        await repo.cancel_booking(b.id, "wfh", CancelledBy.PASSENGER, now=now)
        await _assert_seats_conserved(db_session, ride.id)

        ride = await RideRepository(db_session).get_ride(ride.id)
        assert ride.available_seats == 2
        assert ride.status == RideStatus.BOOKED

    @pytest.mark.asyncio
    async def test_booked_ride_with_free_seats_is_still_bookable(self, db_session, make_ride, now):
        ride = await make_ride(total_seats=3)
        repo = BookingRepository(db_session)
        await repo.create_booking(ride_id=ride.id, passenger_id="p1", seats_booked=1, now=now)
        await repo.create_booking(ride_id=ride.id, passenger_id="p2", seats_booked=2, now=now)

        ride = await RideRepository(db_session).get_ride(ride.id)
        assert ride.available_seats == 0

    @pytest.mark.asyncio
    async def test_cannot_book_more_than_available(self, db_session, make_ride, now):
        ride = await make_ride(total_seats=2)
        with pytest.raises(ValidationError, match="Only 2 seat"):
            await BookingRepository(db_session).create_booking(
                ride_id=ride.id, passenger_id="p1", seats_booked=3, now=now
            )
        assert await DocumentStore(db_session).query(BOOKINGS) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seats", [0, -2])
    async def test_rejects_non_positive_seats(self, db_session, make_ride, now, seats):
        ride = await make_ride()
        with pytest.raises(ValidationError):
            await BookingRepository(db_session).create_booking(
                ride_id=ride.id, passenger_id="p1", seats_booked=seats, now=now
            )

    @pytest.mark.asyncio
    async def test_driver_cannot_book_own_ride(self, db_session, make_ride, now):
        ride = await make_ride()
        with pytest.raises(ValidationError, match="own ride"):
            await BookingRepository(db_session).create_booking(
                ride_id=ride.id, passenger_id=ride.driver_id, seats_booked=1, now=now
            )

    @pytest.mark.asyncio
    async def test_cannot_book_departed_ride(self, db_session, make_ride, now):
        ride = await make_ride()
        with pytest.raises(ValidationError, match="departed"):
            await BookingRepository(db_session).create_booking(
                ride_id=ride.id,
                passenger_id="p1",
                seats_booked=1,
                now=now + timedelta(hours=2, minutes=1),
            )

    @pytest.mark.asyncio
    async def test_cannot_book_cancelled_ride(self, db_session, make_ride, now):
        ride = await make_ride()
        await RideRepository(db_session).cancel_ride(ride.id, "flat tyre", ride.driver_id, now=now)
        with pytest.raises(ValidationError, match="EXPIRED"):
            await BookingRepository(db_session).create_booking(
                ride_id=ride.id, passenger_id="p1", seats_booked=1, now=now
            )

    @pytest.mark.asyncio
    async def test_unknown_ride(self, db_session, now):
        with pytest.raises(RideNotFoundError):
            await BookingRepository(db_session).create_booking(
                ride_id="missing", passenger_id="p1", seats_booked=1, now=now
            )

    @pytest.mark.asyncio
    async def test_idempotency_key_returns_existing_booking(self, db_session, make_ride, now):
        ride = await make_ride()
        repo = BookingRepository(db_session)
        first = await repo.create_booking(
            ride_id=ride.id, passenger_id="p1", seats_booked=1, idempotency_key="k-1", now=now
        )
        again = await repo.create_booking(
            ride_id=ride.id, passenger_id="p1", seats_booked=1, idempotency_key="k-1", now=now
        )

        assert again.id == first.id
        assert len(await repo.get_bookings_by_ride(ride.id)) == 1
        assert (await RideRepository(db_session).get_ride(ride.id)).available_seats == 2

    @pytest.mark.asyncio
    async def test_idempotency_key_reused_by_someone_else(self, db_session, make_ride, now):
        ride = await make_ride()
        repo = BookingRepository(db_session)
        await repo.create_booking(
            ride_id=ride.id, passenger_id="p1", seats_booked=1, idempotency_key="k-1", now=now
        )
        with pytest.raises(ValidationError, match="Idempotency"):
            await repo.create_booking(
                ride_id=ride.id, passenger_id="p2", seats_booked=1, idempotency_key="k-1", now=now
            )

    @pytest.mark.asyncio
    async def test_retry_that_waited_on_the_ride_lock_replays_original(
        self, db_session, make_ride, now, monkeypatch
    ):
        ride = await make_ride()
        repo = BookingRepository(db_session)
        first = await repo.create_booking(
            ride_id=ride.id, passenger_id="p1", seats_booked=1, idempotency_key="k-1", now=now
        )
        # Not yet visible before the lock, committed by the time it is held
        monkeypatch.setattr(repo, "get_by_idempotency_key", AsyncMock(side_effect=[None, first]))

        again = await repo.create_booking(
            ride_id=ride.id, passenger_id="p1", seats_booked=1, idempotency_key="k-1", now=now
        )

        assert again.id == first.id
        assert len(await repo.get_bookings_by_ride(ride.id)) == 1

    @pytest.mark.asyncio
    async def test_duplicate_idempotency_key_insert_is_a_retryable_conflict(
        self, db_session, make_ride, now, monkeypatch
    ):
        ride = await make_ride()
        repo = BookingRepository(db_session)
        await repo.create_booking(
            ride_id=ride.id, passenger_id="p1", seats_booked=1, idempotency_key="k-1", now=now
        )
        monkeypatch.setattr(repo, "get_by_idempotency_key", AsyncMock(return_value=None))

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await repo.create_booking(
                ride_id=ride.id, passenger_id="p1", seats_booked=1, idempotency_key="k-1", now=now
            )
        assert exc_info.value.retryable


class TestReads:
    @pytest.mark.asyncio
    async def test_bookings_by_passenger_newest_first(self, db_session, make_ride, now):
        first_ride = await make_ride()
        second_ride = await make_ride()
        repo = BookingRepository(db_session)
        older = await repo.create_booking(
            ride_id=first_ride.id, passenger_id="p1", seats_booked=1, now=now
        )
        newer = await repo.create_booking(
            ride_id=second_ride.id, passenger_id="p1", seats_booked=1, now=now + timedelta(minutes=5)
        )

        found = await repo.get_bookings_by_passenger("p1")
        assert [b.id for b in found] == [newer.id, older.id]
        assert await repo.get_bookings_by_passenger("p1", BookingStatus.CANCELLED) == []

    @pytest.mark.asyncio
    async def test_unknown_booking(self, db_session):
        with pytest.raises(BookingNotFoundError):
            await BookingRepository(db_session).get_booking("missing")


class TestCancelBooking:
    @pytest.mark.asyncio
    async def test_reason_is_required(self, db_session, make_ride, now):
        ride = await make_ride()
        repo = BookingRepository(db_session)
        booking = await repo.create_booking(ride_id=ride.id, passenger_id="p1", seats_booked=1, now=now)
        with pytest.raises(ValidationError):
            await repo.cancel_booking(booking.id, "", CancelledBy.PASSENGER)

    @pytest.mark.asyncio
    async def test_only_owner_can_cancel(self, db_session, make_ride, now):
        ride = await make_ride()
        repo = BookingRepository(db_session)
        booking = await repo.create_booking(ride_id=ride.id, passenger_id="p1", seats_booked=1, now=now)
        with pytest.raises(AuthorizationError):
            await repo.cancel_booking(
                booking.id, "not mine", CancelledBy.PASSENGER, acting_user_id="p2"
            )

    @pytest.mark.asyncio
    async def test_driver_cancellation_notifies_passenger(self, db_session, make_ride, now):
        ride = await make_ride()
        repo = BookingRepository(db_session)
        booking = await repo.create_booking(ride_id=ride.id, passenger_id="p1", seats_booked=1, now=now)

        await repo.cancel_booking(
            booking.id, "detour", CancelledBy.DRIVER, acting_user_id=ride.driver_id, now=now
        )

        (event,) = await DocumentStore(db_session).query(
            OUTBOX, [Condition("type", "==", NotificationType.BOOKING_CANCELLED)]
        )
        assert event.user_id == "p1"
        assert event.related_entity_id == booking.id

    @pytest.mark.asyncio
    async def test_terminal_booking_never_moves_back(self, db_session, make_ride, now):
        ride = await make_ride()
        repo = BookingRepository(db_session)
        booking = await repo.create_booking(ride_id=ride.id, passenger_id="p1", seats_booked=1, now=now)
        await repo.cancel_booking(booking.id, "sick", CancelledBy.PASSENGER, now=now)

        with pytest.raises(InvalidStateTransition):
            await repo.cancel_booking(booking.id, "again", CancelledBy.PASSENGER, now=now)
        with pytest.raises(InvalidStateTransition):
            await repo.update_booking(booking.id, {"status": BookingStatus.CONFIRMED})
        with pytest.raises(InvalidStateTransition):
            await repo.update_booking(booking.id, {"seats_booked": 2})

        booking = await repo.get_booking(booking.id)
        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancellation_reason == "sick"

    @pytest.mark.asyncio
    async def test_locks_the_ride_before_writing_the_booking(
        self, db_session, make_ride, now, monkeypatch
    ):
        ride = await make_ride()
        repo = BookingRepository(db_session)
        booking = await repo.create_booking(
            ride_id=ride.id, passenger_id="p1", seats_booked=1, now=now
        )

        calls = []
        lock_ride = RideRepository.lock_ride
        update = DocumentStore.update

        async def recording_lock_ride(self, ride_id):
            calls.append("lock rides")
            return await lock_ride(self, ride_id)

        async def recording_update(self, collection, doc_id, partial):
            calls.append(f"update {collection}")
            return await update(self, collection, doc_id, partial)

        monkeypatch.setattr(RideRepository, "lock_ride", recording_lock_ride)
        monkeypatch.setattr(DocumentStore, "update", recording_update)

        await repo.cancel_booking(booking.id, "wfh", CancelledBy.PASSENGER, now=now)

        assert calls.index("lock rides") < calls.index(f"update {BOOKINGS}")
