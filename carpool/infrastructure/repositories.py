"""
Repository Pattern -- ride and booking operations over the document store.

Each repository receives an ``AsyncSession`` (unit-of-work).  Everything a
single call does -- status change, cascaded booking updates, seat
reconciliation, queued notifications -- commits or rolls back together.

Concurrency safety
------------------
* Paths that change seats lock the ride row (``SELECT ... FOR UPDATE``)
  and re-read its confirmed bookings before writing.
* ``rides.version`` is bumped on every UPDATE; a write based on a stale
  read fails the flush with ``ConcurrencyConflictError`` (retryable).
* ``available_seats`` is only ever written by
  ``RideRepository.recalculate_available_seats`` (and ride creation).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BookingModel, RideModel
from .notifications import Outbox
from .store import BOOKINGS, RIDES, Condition, DocumentStore
from carpool.config import settings
from carpool.domain.distance import estimate_trip_duration
from carpool.domain.entities import Location
from carpool.domain.enums import (
    ACTIVE_BOOKING_STATUSES,
    AUTO_COMPLETABLE_RIDE_STATUSES,
    BOOKABLE_RIDE_STATUSES,
    BookingStatus,
    CancelledBy,
    Direction,
    NotificationType,
    RideStatus,
    check_booking_transition,
    check_ride_transition,
)
from carpool.domain.exceptions import (
    AuthorizationError,
    BookingNotFoundError,
    ConcurrencyConflictError,
    InvalidStateTransition,
    NotFoundError,
    RideNotFoundError,
    SeatConflictError,
    ValidationError,
)
from carpool.domain.schedule import (
    as_utc,
    expiry_cutoff,
    format_clock_time,
    is_expired,
    local_day_bounds,
    should_auto_complete,
    utcnow,
)
from carpool.domain.seats import booking_amount, reconcile_seats

logger = logging.getLogger(__name__)

DRIVER_CANCELLATION_PREFIX = "Driver cancelled the ride: "
MAX_ETA_LENGTH = 32


def _grace() -> timedelta:
    return timedelta(minutes=settings.expiry_grace_minutes)


def _require_reason(reason: Optional[str]) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A cancellation reason is required")
    return reason


def _as_location(value: Location | dict[str, Any]) -> Location:
    return value if isinstance(value, Location) else Location.from_dict(value)


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = DocumentStore(session)
        self.outbox = Outbox(session)

    # ── Creation & reads ──────────────────────────────────────────────

    async def create_ride(
        self,
        *,
        driver_id: str,
        vehicle_id: str,
        start_location: Location | dict[str, Any],
        end_location: Location | dict[str, Any],
        direction: Direction,
        departure_time: datetime,
        total_seats: int,
        cost_per_seat: int,
        route: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RideModel:
        now = now or utcnow()
        start = _as_location(start_location)
        end = _as_location(end_location)

        if total_seats <= 0:
            raise ValidationError("A ride needs at least one seat")
        if cost_per_seat <= 0:
            raise ValidationError("Cost per seat must be positive")
        if start.id == end.id:
            raise ValidationError("Start and end locations must be different")
        if as_utc(departure_time) <= as_utc(now):
            raise ValidationError("Departure time must be in the future")

        ride = await self.store.create(
            RIDES,
            {
                "driver_id": driver_id,
                "vehicle_id": vehicle_id,
                "start_location": start.to_dict(),
                "end_location": end.to_dict(),
                "direction": Direction(direction),
                "route": route,
                "departure_time": as_utc(departure_time),
                "total_seats": total_seats,
                "available_seats": total_seats,
                "cost_per_seat": cost_per_seat,
                "status": RideStatus.AVAILABLE,
                "payment_collected": False,
            },
        )
        logger.info(
            "Ride %s offered by driver %s (%d seats)", ride.id, driver_id, total_seats
        )
        return ride

    async def get_ride(self, ride_id: str) -> RideModel:
        ride = await self.store.get(RIDES, ride_id)
        if ride is None:
            raise RideNotFoundError(f"Ride {ride_id} not found")
        return ride

    async def lock_ride(self, ride_id: str) -> RideModel:
        """Fresh read of the ride with its row locked for this transaction."""
        ride = await self.store.get(RIDES, ride_id, for_update=True)
        if ride is None:
            raise RideNotFoundError(f"Ride {ride_id} not found")
        return ride

    async def get_rides_by_driver(
        self, driver_id: str, status: Optional[RideStatus] = None
    ) -> list[RideModel]:
        conditions = [Condition("driver_id", "==", driver_id)]
        if status is not None:
            conditions.append(Condition("status", "==", RideStatus(status)))
        return await self.store.query(
            RIDES, conditions, order_by="departure_time", descending=True
        )

    async def get_available_rides(
        self,
        *,
        direction: Optional[Direction] = None,
        day: Optional[date] = None,
        start_location_id: Optional[str] = None,
        end_location_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[RideModel]:
        """Bookable rides, soonest first.  Expired-but-unswept rides are hidden."""
        now = now or utcnow()
        conditions = [
            Condition("status", "==", RideStatus.AVAILABLE),
            Condition("departure_time", ">=", expiry_cutoff(now, _grace())),
        ]
        if direction is not None:
            conditions.append(Condition("direction", "==", Direction(direction)))
        if day is not None:
            start, end = local_day_bounds(day, settings.local_timezone)
            conditions.append(Condition("departure_time", ">=", start))
            conditions.append(Condition("departure_time", "<", end))

        rides = await self.store.query(RIDES, conditions, order_by="departure_time")

        # location ids live inside JSON documents; filter after the query
        if start_location_id:
            rides = [r for r in rides if r.start_location.get("id") == start_location_id]
        if end_location_id:
            rides = [r for r in rides if r.end_location.get("id") == end_location_id]
        return rides

    async def update_ride(self, ride_id: str, partial: dict[str, Any]) -> RideModel:
        try:
            return await self.store.update(RIDES, ride_id, partial)
        except NotFoundError:
            raise RideNotFoundError(f"Ride {ride_id} not found") from None

    # ── Execution transitions ─────────────────────────────────────────

    async def driver_reached_pickup(
        self,
        ride_id: str,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RideModel:
        return await self._advance(
            ride_id,
            RideStatus.DRIVER_REACHED_PICKUP,
            acting_user_id,
            pickup_reached_at=now or utcnow(),
        )

    async def passenger_arrived(
        self,
        ride_id: str,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RideModel:
        return await self._advance(
            ride_id,
            RideStatus.PASSENGER_ARRIVED,
            acting_user_id,
            passenger_arrived_at=now or utcnow(),
        )

    async def start_trip(
        self,
        ride_id: str,
        estimated_arrival_time: Optional[str] = None,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RideModel:
        now = now or utcnow()
        eta = (estimated_arrival_time or "").strip()
        if len(eta) > MAX_ETA_LENGTH:
            raise ValidationError("Estimated arrival time is too long")
        if not eta:
            eta = self.estimate_arrival_time(await self.get_ride(ride_id), now)
        return await self._advance(
            ride_id,
            RideStatus.TRIP_STARTED,
            acting_user_id,
            trip_started_at=now,
            estimated_arrival_time=eta,
        )

    async def arrived_at_destination(
        self,
        ride_id: str,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RideModel:
        return await self._advance(
            ride_id,
            RideStatus.DESTINATION_REACHED,
            acting_user_id,
            destination_reached_at=now or utcnow(),
        )

    async def payment_collected(
        self,
        ride_id: str,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RideModel:
        """Close the ride and complete every confirmed booking on it."""
        now = now or utcnow()
        ride = await self._advance(
            ride_id,
            RideStatus.COMPLETED,
            acting_user_id,
            payment_collected=True,
            ride_completed_at=now,
        )

        bookings = BookingRepository(self.session)
        confirmed = await bookings.get_bookings_by_ride(
            ride_id, [BookingStatus.CONFIRMED]
        )
        for booking in confirmed:
            await bookings.complete_booking(booking.id, now=now)

        return await self.recalculate_available_seats(ride_id)

    def estimate_arrival_time(self, ride: RideModel, now: datetime) -> str:
        """Fallback ETA when the driver starts a trip without entering one."""
        duration = estimate_trip_duration(
            Location.from_dict(ride.start_location),
            Location.from_dict(ride.end_location),
            settings.average_speed_kmh,
            settings.min_trip_minutes,
        )
        return format_clock_time(now + duration, settings.local_timezone)

    # ── Cancellation ──────────────────────────────────────────────────

    async def cancel_ride(
        self,
        ride_id: str,
        reason: str,
        cancelled_by_user_id: str,
        now: Optional[datetime] = None,
    ) -> RideModel:
        """Driver cancellation: EXPIRED + cascade to every active booking."""
        now = now or utcnow()
        reason = _require_reason(reason)
        ride = await self.lock_ride(ride_id)
        if ride.driver_id != cancelled_by_user_id:
            raise AuthorizationError("Only the ride's driver can cancel it")
        check_ride_transition(ride.status, RideStatus.EXPIRED)

        await self.update_ride(
            ride_id,
            {
                "status": RideStatus.EXPIRED,
                "cancelled_at": now,
                "cancellation_reason": reason,
                "cancelled_by": cancelled_by_user_id,
            },
        )

        bookings = BookingRepository(self.session)
        active = await bookings.get_bookings_by_ride(ride_id, ACTIVE_BOOKING_STATUSES)
        for booking in active:
            await bookings.cancel_booking(
                booking.id,
                DRIVER_CANCELLATION_PREFIX + reason,
                CancelledBy.DRIVER,
                acting_user_id=cancelled_by_user_id,
                now=now,
            )

        await self.outbox.enqueue(
            user_id=ride.driver_id,
            type=NotificationType.RIDE_CANCELLATION_CONFIRMED,
            title="Ride cancelled",
            message=(
                f"Your ride has been cancelled. {len(active)} passenger(s) "
                f"have been notified."
            ),
            related_entity_id=ride_id,
        )
        logger.info(
            "Ride %s cancelled by driver (%d booking(s) cancelled)", ride_id, len(active)
        )
        return ride

    # ── Seat reconciliation ───────────────────────────────────────────

    async def recalculate_available_seats(self, ride_id: str) -> RideModel:
        ride = await self.lock_ride(ride_id)
        confirmed = await self.store.query(
            BOOKINGS,
            [
                Condition("ride_id", "==", ride_id),
                Condition("status", "==", BookingStatus.CONFIRMED),
            ],
        )
        state = reconcile_seats(
            ride.total_seats, ride.status, [b.seats_booked for b in confirmed]
        )

        updates: dict[str, Any] = {}
        if ride.available_seats != state.available_seats:
            updates["available_seats"] = state.available_seats
        if ride.status != state.status:
            check_ride_transition(ride.status, state.status)
            updates["status"] = state.status
        if not updates:
            return ride
        return await self.update_ride(ride_id, updates)

    # ── Sweeps ────────────────────────────────────────────────────────

    async def update_expired_rides(self, now: Optional[datetime] = None) -> list[str]:
        """Flip every AVAILABLE ride past its grace window to EXPIRED."""
        now = now or utcnow()
        candidates = await self.store.query(
            RIDES,
            [
                Condition("status", "==", RideStatus.AVAILABLE),
                Condition("departure_time", "<", expiry_cutoff(now, _grace())),
            ],
            for_update=True,
            skip_locked=True,
        )
        expired = []
        for ride in candidates:
            if ride.status != RideStatus.AVAILABLE:
                continue
            await self.update_ride(ride.id, {"status": RideStatus.EXPIRED})
            expired.append(ride.id)
        if expired:
            logger.info("Expiry sweep: %d ride(s) expired", len(expired))
        return expired

    async def auto_complete_ride(
        self, ride_id: str, now: Optional[datetime] = None
    ) -> bool:
        """Close out a ride whose ETA has passed.  No-op for any other state."""
        now = now or utcnow()
        ride = await self.get_ride(ride_id)
        if ride.status not in AUTO_COMPLETABLE_RIDE_STATUSES:
            return False
        if not should_auto_complete(
            ride.departure_time,
            ride.estimated_arrival_time,
            now,
            settings.local_timezone,
        ):
            return False

        if ride.status == RideStatus.TRIP_STARTED:
            await self.arrived_at_destination(ride_id, now=now)
        await self.payment_collected(ride_id, now=now)
        logger.info(
            "Auto-completed ride %s (ETA %s)", ride_id, ride.estimated_arrival_time
        )
        return True

    async def auto_complete_due_rides(self, now: Optional[datetime] = None) -> list[str]:
        rides = await self.store.query(
            RIDES,
            [
                Condition("status", "in", AUTO_COMPLETABLE_RIDE_STATUSES),
                Condition("estimated_arrival_time", "!=", None),
            ],
        )
        completed = []
        for ride in rides:
            if await self.auto_complete_ride(ride.id, now=now):
                completed.append(ride.id)
        return completed

    # ── Internals ─────────────────────────────────────────────────────

    async def _advance(
        self,
        ride_id: str,
        target: RideStatus,
        acting_user_id: Optional[str],
        **fields: Any,
    ) -> RideModel:
        ride = await self.lock_ride(ride_id)
        if acting_user_id is not None and ride.driver_id != acting_user_id:
            raise AuthorizationError("Only the ride's driver can update its progress")
        previous = ride.status
        check_ride_transition(previous, target)
        ride = await self.update_ride(ride_id, {"status": target, **fields})
        logger.info("Ride %s: %s -> %s", ride_id, previous.value, target.value)
        return ride


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = DocumentStore(session)
        self.outbox = Outbox(session)
        self.rides = RideRepository(session)

    # ── Creation ──────────────────────────────────────────────────────

    async def create_booking(
        self,
        *,
        ride_id: str,
        passenger_id: str,
        seats_booked: int,
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BookingModel:
        """Reserve seats and reconcile the ride in one unit of work."""
        now = now or utcnow()

        # ── Idempotency guard ─────────────────────────────────────────
        existing = await self._replayed_booking(idempotency_key, ride_id, passenger_id)
        if existing:
            return existing

        if seats_booked is None or seats_booked <= 0:
            raise ValidationError("At least one seat must be booked")

        # What the passenger was shown: plain validation, no lock yet
        snapshot = await self.rides.get_ride(ride_id)
        if snapshot.driver_id == passenger_id:
            raise ValidationError("You cannot book your own ride")
        if snapshot.status not in BOOKABLE_RIDE_STATUSES:
            raise ValidationError(
                f"Ride is {snapshot.status.value} and cannot be booked"
            )
        if is_expired(snapshot.departure_time, now, _grace()):
            raise ValidationError("Ride has already departed")
        if seats_booked > snapshot.available_seats:
            raise ValidationError(
                f"Only {snapshot.available_seats} seat(s) available"
            )

        # Authoritative check under the ride's row lock
        ride = await self.rides.lock_ride(ride_id)
        # A retry that raced the original may have committed while we waited
        existing = await self._replayed_booking(idempotency_key, ride_id, passenger_id)
        if existing:
            return existing
        confirmed = await self.get_bookings_by_ride(ride_id, [BookingStatus.CONFIRMED])
        free = ride.total_seats - sum(b.seats_booked for b in confirmed)
        if ride.status not in BOOKABLE_RIDE_STATUSES or seats_booked > free:
            raise SeatConflictError(
                f"Only {max(free, 0)} seat(s) left; another booking took the rest"
            )

        try:
            booking = await self.store.create(
                BOOKINGS,
                {
                    "ride_id": ride_id,
                    "passenger_id": passenger_id,
                    "seats_booked": seats_booked,
                    "amount_to_pay_driver": booking_amount(seats_booked, ride.cost_per_seat),
                    "status": BookingStatus.CONFIRMED,
                    "booked_at": now,
                    "idempotency_key": idempotency_key,
                },
            )
        except IntegrityError as exc:
            # Same key committed by a request we could not see yet; a retry replays it
            raise ConcurrencyConflictError(
                "A booking with this idempotency key is being created concurrently"
            ) from exc
        await self.rides.recalculate_available_seats(ride_id)
        logger.info(
            "Booking %s: passenger %s took %d seat(s) on ride %s",
            booking.id,
            passenger_id,
            seats_booked,
            ride_id,
        )
        return booking

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_booking(self, booking_id: str) -> BookingModel:
        booking = await self.store.get(BOOKINGS, booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
        return booking

    async def get_by_idempotency_key(self, key: str) -> Optional[BookingModel]:
        found = await self.store.query(
            BOOKINGS, [Condition("idempotency_key", "==", key)], limit=1
        )
        return found[0] if found else None

    async def _replayed_booking(
        self, key: Optional[str], ride_id: str, passenger_id: str
    ) -> Optional[BookingModel]:
        if not key:
            return None
        existing = await self.get_by_idempotency_key(key)
        if existing and (
            existing.ride_id != ride_id or existing.passenger_id != passenger_id
        ):
            raise ValidationError(
                "Idempotency key was already used for a different booking"
            )
        return existing

    async def get_bookings_by_passenger(
        self, passenger_id: str, status: Optional[BookingStatus] = None
    ) -> list[BookingModel]:
        conditions = [Condition("passenger_id", "==", passenger_id)]
        if status is not None:
            conditions.append(Condition("status", "==", BookingStatus(status)))
        return await self.store.query(
            BOOKINGS, conditions, order_by="booked_at", descending=True
        )

    async def get_bookings_by_ride(
        self, ride_id: str, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> list[BookingModel]:
        conditions = [Condition("ride_id", "==", ride_id)]
        if statuses is not None:
            conditions.append(
                Condition("status", "in", [BookingStatus(s) for s in statuses])
            )
        return await self.store.query(BOOKINGS, conditions, order_by="booked_at")

    # ── Updates ───────────────────────────────────────────────────────

    async def update_booking(
        self, booking_id: str, partial: dict[str, Any]
    ) -> BookingModel:
        """Generic patch.  Terminal bookings are frozen."""
        booking = await self.get_booking(booking_id)
        current = BookingStatus(booking.status)
        if current in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
            raise InvalidStateTransition(f"Booking {booking_id} is {current.value}")
        target = partial.get("status")
        if target is not None and BookingStatus(target) != current:
            check_booking_transition(current, target)
        return await self.store.update(BOOKINGS, booking_id, partial)

    async def cancel_booking(
        self,
        booking_id: str,
        reason: str,
        cancelled_by: CancelledBy,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BookingModel:
        now = now or utcnow()
        reason = _require_reason(reason)
        try:
            cancelled_by = CancelledBy(cancelled_by)
        except ValueError:
            raise ValidationError(f"Unknown cancelling party: {cancelled_by}") from None

        # Lock order: ride row, then booking row
        booking = await self.get_booking(booking_id)
        ride = await self.rides.lock_ride(booking.ride_id)
        booking = await self.store.get(BOOKINGS, booking_id, for_update=True)
        if acting_user_id is not None:
            owner = (
                booking.passenger_id
                if cancelled_by == CancelledBy.PASSENGER
                else ride.driver_id
            )
            if owner != acting_user_id:
                raise AuthorizationError(
                    f"Only the booking's {cancelled_by.value} can cancel it this way"
                )
        check_booking_transition(booking.status, BookingStatus.CANCELLED)

        booking = await self.update_booking(
            booking_id,
            {
                "status": BookingStatus.CANCELLED,
                "cancelled_at": now,
                "cancellation_reason": reason,
                "cancelled_by": cancelled_by,
            },
        )

        if cancelled_by == CancelledBy.PASSENGER:
            recipient = ride.driver_id
            message = (
                f"A passenger cancelled {booking.seats_booked} seat(s) on your ride. "
                f"Reason: {reason}"
            )
        else:
            recipient = booking.passenger_id
            message = f"Your booking was cancelled by the driver. Reason: {reason}"
        await self.outbox.enqueue(
            user_id=recipient,
            type=NotificationType.BOOKING_CANCELLED,
            title="Booking cancelled",
            message=message,
            related_entity_id=booking_id,
        )

        await self.rides.recalculate_available_seats(ride.id)
        logger.info("Booking %s cancelled by %s", booking_id, cancelled_by.value)
        return booking

    async def complete_booking(
        self, booking_id: str, now: Optional[datetime] = None
    ) -> BookingModel:
        booking = await self.update_booking(
            booking_id,
            {"status": BookingStatus.COMPLETED, "completed_at": now or utcnow()},
        )
        await self.outbox.enqueue(
            user_id=booking.passenger_id,
            type=NotificationType.RIDE_COMPLETED,
            title="Ride completed",
            message=(
                f"You have reached your destination. Amount to pay the driver: "
                f"{booking.amount_to_pay_driver}. Please rate your driver."
            ),
            related_entity_id=booking_id,
        )
        return booking

    # ── Auto-completion (passenger side) ──────────────────────────────

    async def auto_complete_booking(
        self, booking_id: str, now: Optional[datetime] = None
    ) -> bool:
        now = now or utcnow()
        booking = await self.get_booking(booking_id)
        if booking.status != BookingStatus.CONFIRMED:
            return False
        ride = await self.rides.get_ride(booking.ride_id)
        if ride.status == RideStatus.EXPIRED:
            return False
        if not should_auto_complete(
            ride.departure_time,
            ride.estimated_arrival_time,
            now,
            settings.local_timezone,
        ):
            return False

        await self.rides.lock_ride(ride.id)
        booking = await self.store.get(BOOKINGS, booking_id, for_update=True)
        if booking.status != BookingStatus.CONFIRMED:
            return False
        await self.complete_booking(booking_id, now=now)
        await self.rides.recalculate_available_seats(ride.id)
        logger.info("Auto-completed booking %s on ride %s", booking_id, ride.id)
        return True

    async def auto_complete_due_bookings(
        self, now: Optional[datetime] = None
    ) -> list[str]:
        rides = await self.store.query(
            RIDES,
            [
                Condition("status", "in", AUTO_COMPLETABLE_RIDE_STATUSES),
                Condition("estimated_arrival_time", "!=", None),
            ],
        )
        if not rides:
            return []
        bookings = await self.store.query(
            BOOKINGS,
            [
                Condition("ride_id", "in", [r.id for r in rides]),
                Condition("status", "==", BookingStatus.CONFIRMED),
            ],
        )
        completed = []
        for booking in bookings:
            if await self.auto_complete_booking(booking.id, now=now):
                completed.append(booking.id)
        return completed
