"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from carpool.domain.enums import (
    BookingStatus,
    CancelledBy,
    Direction,
    NotificationType,
    RideStatus,
)


# ── Requests ──────────────────────────────────────────────────────────


class LocationSchema(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=200)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str = ""


class RideCreateRequest(BaseModel):
    vehicle_id: str = Field(..., min_length=1, max_length=64)
    start_location: LocationSchema
    end_location: LocationSchema
    direction: Direction
    departure_time: datetime
    total_seats: int = Field(..., ge=1, le=8)
    cost_per_seat: int = Field(..., gt=0)
    route: Optional[str] = Field(None, max_length=2000)


class BookingCreateRequest(BaseModel):
    ride_id: str
    seats_booked: int = Field(1, ge=1, le=8)
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class StartTripRequest(BaseModel):
    estimated_arrival_time: Optional[str] = Field(
        None,
        max_length=32,
        description='Local clock time such as "6:00 PM". Estimated when omitted.',
    )


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: str
    driver_id: str
    vehicle_id: str
    start_location: LocationSchema
    end_location: LocationSchema
    direction: Direction
    route: Optional[str] = None
    departure_time: datetime
    total_seats: int
    available_seats: int
    cost_per_seat: int
    status: RideStatus
    pickup_reached_at: Optional[datetime] = None
    passenger_arrived_at: Optional[datetime] = None
    trip_started_at: Optional[datetime] = None
    estimated_arrival_time: Optional[str] = None
    destination_reached_at: Optional[datetime] = None
    ride_completed_at: Optional[datetime] = None
    payment_collected: bool = False
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: str
    ride_id: str
    passenger_id: str
    seats_booked: int
    amount_to_pay_driver: int
    status: BookingStatus
    booked_at: datetime
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[CancelledBy] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NotificationResponse(BaseModel):
    id: str
    type: NotificationType
    title: str
    message: str
    related_entity_id: Optional[str] = None
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class SweepResponse(BaseModel):
    rides: list[str] = []
    bookings: list[str] = []


class DispatchResponse(BaseModel):
    delivered: int


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    retryable: bool = False
