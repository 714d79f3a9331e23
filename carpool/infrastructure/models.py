"""
SQLAlchemy ORM models (PostgreSQL).

Tables
------
* ``rides``          -- driver ride offers; ``version`` is an optimistic
  concurrency token bumped on every UPDATE
* ``bookings``       -- passenger seat reservations
* ``notifications``  -- delivered notification records
* ``outbox_events``  -- notifications waiting for the dispatcher

Indexes
-------
* **B-Tree** on ``status``, ``driver_id``, ``departure_time``,
  ``ride_id``, ``passenger_id``, ``idempotency_key`` and the outbox
  delivery marker -- the columns the repositories and sweeps filter on.
"""

import uuid
from datetime import timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.types import TypeDecorator

from .database import Base
from carpool.domain.enums import (
    BookingStatus,
    CancelledBy,
    Direction,
    NotificationType,
    RideStatus,
)


def _new_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes in, timezone-aware UTC datetimes out.

    SQLite drops tzinfo, PostgreSQL returns it in the session zone; either
    way callers always see aware UTC values.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(String(36), primary_key=True, default=_new_id)
    driver_id = Column(String(64), nullable=False)
    vehicle_id = Column(String(64), nullable=False)

    # Named geocoded points: {id, name, address, latitude, longitude}
    start_location = Column(JSON, nullable=False)
    end_location = Column(JSON, nullable=False)
    direction = Column(Enum(Direction), nullable=False)
    route = Column(Text, nullable=True)

    departure_time = Column(UTCDateTime, nullable=False)
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    cost_per_seat = Column(Integer, nullable=False)
    status = Column(Enum(RideStatus), default=RideStatus.AVAILABLE, nullable=False)

    # Execution timestamps
    pickup_reached_at = Column(UTCDateTime, nullable=True)
    passenger_arrived_at = Column(UTCDateTime, nullable=True)
    trip_started_at = Column(UTCDateTime, nullable=True)
    estimated_arrival_time = Column(String(32), nullable=True)  # "6:00 PM"
    destination_reached_at = Column(UTCDateTime, nullable=True)
    ride_completed_at = Column(UTCDateTime, nullable=True)
    payment_collected = Column(Boolean, default=False, nullable=False)

    # Driver cancellation
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(64), nullable=True)

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_departure", "departure_time"),
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_new_id)
    ride_id = Column(String(36), ForeignKey("rides.id"), nullable=False)
    passenger_id = Column(String(64), nullable=False)
    seats_booked = Column(Integer, nullable=False)
    amount_to_pay_driver = Column(Integer, nullable=False)
    status = Column(
        Enum(BookingStatus), default=BookingStatus.CONFIRMED, nullable=False
    )
    booked_at = Column(UTCDateTime, nullable=False)

    cancelled_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(Enum(CancelledBy), nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)

    idempotency_key = Column(String(64), unique=True, nullable=True)

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("idx_bookings_ride", "ride_id"),
        Index("idx_bookings_passenger", "passenger_id"),
        Index("idx_bookings_status", "status"),
        Index("idx_bookings_idempotency", "idempotency_key"),
    )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(64), nullable=False)
    type = Column(Enum(NotificationType), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    related_entity_id = Column(String(36), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (Index("idx_notifications_user", "user_id"),)


class OutboxEventModel(Base):
    __tablename__ = "outbox_events"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(64), nullable=False)
    type = Column(Enum(NotificationType), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    related_entity_id = Column(String(36), nullable=True)

    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    delivered_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (Index("idx_outbox_delivered", "delivered_at"),)
