"""
Ride endpoints
==============

POST /api/v1/rides                               -- offer a ride (drivers)
GET  /api/v1/rides                               -- search bookable rides
GET  /api/v1/rides/mine                          -- the caller's offered rides
GET  /api/v1/rides/{ride_id}                     -- ride details
GET  /api/v1/rides/{ride_id}/bookings            -- bookings on a ride (driver)
POST /api/v1/rides/{ride_id}/pickup-reached      -- BOOKED -> DRIVER_REACHED_PICKUP
POST /api/v1/rides/{ride_id}/passenger-arrived   -- -> PASSENGER_ARRIVED
POST /api/v1/rides/{ride_id}/start-trip          -- -> TRIP_STARTED (+ ETA)
POST /api/v1/rides/{ride_id}/destination-reached -- -> DESTINATION_REACHED
POST /api/v1/rides/{ride_id}/payment-collected   -- -> COMPLETED
POST /api/v1/rides/{ride_id}/cancel              -- driver cancellation
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.api.dependencies import Actor, get_actor, get_db, get_driver
from carpool.api.middleware import limiter
from carpool.api.schemas import (
    BookingResponse,
    CancelRequest,
    RideCreateRequest,
    RideResponse,
    StartTripRequest,
)
from carpool.config import settings
from carpool.domain.enums import Direction, RideStatus
from carpool.domain.exceptions import AuthorizationError
from carpool.infrastructure.repositories import BookingRepository, RideRepository

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Offer a ride",
)
@limiter.limit(settings.rate_limit)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    actor: Actor = Depends(get_driver),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).create_ride(
        driver_id=actor.user_id,
        vehicle_id=body.vehicle_id,
        start_location=body.start_location.model_dump(),
        end_location=body.end_location.model_dump(),
        direction=body.direction,
        departure_time=body.departure_time,
        total_seats=body.total_seats,
        cost_per_seat=body.cost_per_seat,
        route=body.route,
    )


@router.get(
    "",
    response_model=list[RideResponse],
    summary="Search bookable rides, soonest first",
)
@limiter.limit(settings.rate_limit)
async def search_rides(
    request: Request,
    direction: Optional[Direction] = None,
    day: Optional[date] = None,
    start_location_id: Optional[str] = None,
    end_location_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).get_available_rides(
        direction=direction,
        day=day,
        start_location_id=start_location_id,
        end_location_id=end_location_id,
    )


@router.get("/mine", response_model=list[RideResponse], summary="My offered rides")
@limiter.limit(settings.rate_limit)
async def my_rides(
    request: Request,
    status: Optional[RideStatus] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).get_rides_by_driver(actor.user_id, status)


@router.get("/{ride_id}", response_model=RideResponse, summary="Get a ride")
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).get_ride(ride_id)


@router.get(
    "/{ride_id}/bookings",
    response_model=list[BookingResponse],
    summary="Bookings on one of my rides",
)
@limiter.limit(settings.rate_limit)
async def ride_bookings(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    ride = await RideRepository(db).get_ride(ride_id)
    if ride.driver_id != actor.user_id:
        raise AuthorizationError("Only the ride's driver can list its bookings")
    return await BookingRepository(db).get_bookings_by_ride(ride_id)


# ── Execution steps (driver only) ─────────────────────────────────────


@router.post(
    "/{ride_id}/pickup-reached",
    response_model=RideResponse,
    summary="Driver reached the pickup point",
)
@limiter.limit(settings.rate_limit)
async def pickup_reached(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).driver_reached_pickup(
        ride_id, acting_user_id=actor.user_id
    )


@router.post(
    "/{ride_id}/passenger-arrived",
    response_model=RideResponse,
    summary="Passenger arrived at the pickup point",
)
@limiter.limit(settings.rate_limit)
async def passenger_arrived(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).passenger_arrived(
        ride_id, acting_user_id=actor.user_id
    )


@router.post(
    "/{ride_id}/start-trip",
    response_model=RideResponse,
    summary="Start the trip",
    description=(
        "Records the ETA the driver entered, or estimates one from the "
        "straight-line distance when it is omitted."
    ),
)
@limiter.limit(settings.rate_limit)
async def start_trip(
    request: Request,
    ride_id: str,
    body: Optional[StartTripRequest] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).start_trip(
        ride_id,
        estimated_arrival_time=body.estimated_arrival_time if body else None,
        acting_user_id=actor.user_id,
    )


@router.post(
    "/{ride_id}/destination-reached",
    response_model=RideResponse,
    summary="Arrived at the destination",
)
@limiter.limit(settings.rate_limit)
async def destination_reached(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).arrived_at_destination(
        ride_id, acting_user_id=actor.user_id
    )


@router.post(
    "/{ride_id}/payment-collected",
    response_model=RideResponse,
    summary="Payment collected; completes the ride and its bookings",
)
@limiter.limit(settings.rate_limit)
async def payment_collected(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).payment_collected(
        ride_id, acting_user_id=actor.user_id
    )


@router.post(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    description=(
        "Marks the ride EXPIRED and cancels every active booking on it. "
        "Each affected passenger is notified."
    ),
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: str,
    body: CancelRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).cancel_ride(ride_id, body.reason, actor.user_id)
