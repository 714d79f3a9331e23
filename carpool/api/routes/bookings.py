"""
Booking endpoints
=================

POST /api/v1/bookings                      -- book seats on a ride
GET  /api/v1/bookings/mine                 -- the caller's bookings
GET  /api/v1/bookings/{booking_id}         -- booking details
POST /api/v1/bookings/{booking_id}/cancel  -- passenger cancellation
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.api.dependencies import Actor, get_actor, get_db
from carpool.api.middleware import limiter
from carpool.api.schemas import BookingCreateRequest, BookingResponse, CancelRequest
from carpool.config import settings
from carpool.domain.enums import BookingStatus, CancelledBy
from carpool.domain.exceptions import AuthorizationError
from carpool.infrastructure.repositories import BookingRepository, RideRepository

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Book seats on a ride",
    responses={409: {"description": "Seats were taken concurrently; retry."}},
)
@limiter.limit(settings.rate_limit)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await BookingRepository(db).create_booking(
        ride_id=body.ride_id,
        passenger_id=actor.user_id,
        seats_booked=body.seats_booked,
        idempotency_key=body.idempotency_key,
    )


@router.get("/mine", response_model=list[BookingResponse], summary="My bookings")
@limiter.limit(settings.rate_limit)
async def my_bookings(
    request: Request,
    status: Optional[BookingStatus] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await BookingRepository(db).get_bookings_by_passenger(actor.user_id, status)


@router.get("/{booking_id}", response_model=BookingResponse, summary="Get a booking")
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    booking = await BookingRepository(db).get_booking(booking_id)
    if booking.passenger_id != actor.user_id:
        ride = await RideRepository(db).get_ride(booking.ride_id)
        if ride.driver_id != actor.user_id:
            raise AuthorizationError("Not your booking")
    return booking


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    summary="Cancel my booking",
    description="Frees the seats and notifies the driver.",
)
@limiter.limit(settings.rate_limit)
async def cancel_booking(
    request: Request,
    booking_id: str,
    body: CancelRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await BookingRepository(db).cancel_booking(
        booking_id,
        body.reason,
        CancelledBy.PASSENGER,
        acting_user_id=actor.user_id,
    )
