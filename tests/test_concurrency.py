"""
Concurrency safety tests.

Demonstrates:
1. A booking that loses the race for seats is rejected as a retryable
   conflict, never overbooked.
2. A write based on a stale ride version fails with a retryable conflict.
3. The Redis distributed lock guarding the sweeps.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import text

from carpool.domain.enums import BookingStatus, RideStatus
from carpool.domain.exceptions import ConcurrencyConflictError, SeatConflictError
from carpool.infrastructure.locks import DistributedLock, LockNotAcquired
from carpool.infrastructure.repositories import BookingRepository, RideRepository
from carpool.infrastructure.store import RIDES, DocumentStore


class TestSeatRace:
    @pytest.mark.asyncio
    async def test_lost_race_is_retryable_conflict(self, db_session, make_ride, now):
        ride = await make_ride(total_seats=3)
        repo = BookingRepository(db_session)
        await repo.create_booking(ride_id=ride.id, passenger_id="p1", seats_booked=2, now=now)

        # p2 validated against a snapshot taken before p1's booking landed
        stale = SimpleNamespace(
            id=ride.id,
            driver_id=ride.driver_id,
            status=RideStatus.AVAILABLE,
            departure_time=ride.departure_time,
            available_seats=3,
        )
        racer = BookingRepository(db_session)

        async def stale_get_ride(ride_id):
            return stale

        racer.rides.get_ride = stale_get_ride

        with pytest.raises(SeatConflictError) as excinfo:
            await racer.create_booking(ride_id=ride.id, passenger_id="p2", seats_booked=2, now=now)
        assert excinfo.value.retryable is True

        confirmed = await repo.get_bookings_by_ride(ride.id, [BookingStatus.CONFIRMED])
        assert sum(b.seats_booked for b in confirmed) == 2
        assert (await RideRepository(db_session).get_ride(ride.id)).available_seats == 1

    @pytest.mark.asyncio
    async def test_racer_that_still_fits_is_accepted(self, db_session, make_ride, now):
        ride = await make_ride(total_seats=3)
        repo = BookingRepository(db_session)
        await repo.create_booking(ride_id=ride.id, passenger_id="p1", seats_booked=2, now=now)
        booking = await repo.create_booking(
            ride_id=ride.id, passenger_id="p2", seats_booked=1, now=now
        )
        assert booking.status == BookingStatus.CONFIRMED
        assert (await RideRepository(db_session).get_ride(ride.id)).available_seats == 0


class TestVersionConflict:
    @pytest.mark.asyncio
    async def test_stale_version_is_rejected(self, db_session, make_ride):
        ride = await make_ride()
        assert ride.version == 1

        # another transaction bumps the row behind this session's back
        await db_session.execute(
            text("UPDATE rides SET version = version + 1 WHERE id = :id"),
            {"id": ride.id},
        )

        with pytest.raises(ConcurrencyConflictError) as excinfo:
            await DocumentStore(db_session).update(RIDES, ride.id, {"route": "via WEH"})
        assert excinfo.value.retryable is True

    @pytest.mark.asyncio
    async def test_each_update_bumps_version(self, db_session, make_ride):
        ride = await make_ride()
        store = DocumentStore(db_session)
        await store.update(RIDES, ride.id, {"route": "via WEH"})
        await store.update(RIDES, ride.id, {"route": "via SV Road"})
        assert ride.version == 3


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "expiry_sweep", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "carpool:lock:expiry_sweep", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "expiry_sweep", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_only_frees_own_token(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=0)

        lock = DistributedLock(mock_redis, "expiry_sweep", ttl_seconds=10)
        await lock.acquire()
        assert await lock.release() is False

        args = mock_redis.eval.call_args.args
        assert args[1:] == (1, "carpool:lock:expiry_sweep", lock.token)

    @pytest.mark.asyncio
    async def test_context_manager_releases(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        async with DistributedLock(mock_redis, "outbox_dispatch"):
            pass
        mock_redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "outbox_dispatch", ttl_seconds=10)
        with pytest.raises(LockNotAcquired, match="Could not acquire lock"):
            async with lock:
                pass
