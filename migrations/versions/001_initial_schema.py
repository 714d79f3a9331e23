"""Initial schema: rides, bookings, notifications and the outbox.

Revision ID: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

RIDE_STATUS = sa.Enum(
    "AVAILABLE",
    "BOOKED",
    "DRIVER_REACHED_PICKUP",
    "PASSENGER_ARRIVED",
    "TRIP_STARTED",
    "DESTINATION_REACHED",
    "COMPLETED",
    "EXPIRED",
    name="ridestatus",
)
BOOKING_STATUS = sa.Enum(
    "PENDING", "CONFIRMED", "CANCELLED", "COMPLETED", name="bookingstatus"
)
DIRECTION = sa.Enum("TO_OFFICE", "FROM_OFFICE", name="direction")
CANCELLED_BY = sa.Enum("PASSENGER", "DRIVER", name="cancelledby")
NOTIFICATION_TYPE = sa.Enum(
    "BOOKING_CANCELLED",
    "RIDE_CANCELLATION_CONFIRMED",
    "RIDE_COMPLETED",
    name="notificationtype",
)
# already created with the notifications table
OUTBOX_NOTIFICATION_TYPE = postgresql.ENUM(
    "BOOKING_CANCELLED",
    "RIDE_CANCELLATION_CONFIRMED",
    "RIDE_COMPLETED",
    name="notificationtype",
    create_type=False,
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("driver_id", sa.String(64), nullable=False),
        sa.Column("vehicle_id", sa.String(64), nullable=False),
        sa.Column("start_location", sa.JSON, nullable=False),
        sa.Column("end_location", sa.JSON, nullable=False),
        sa.Column("direction", DIRECTION, nullable=False),
        sa.Column("route", sa.Text, nullable=True),
        sa.Column("departure_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_seats", sa.Integer, nullable=False),
        sa.Column("available_seats", sa.Integer, nullable=False),
        sa.Column("cost_per_seat", sa.Integer, nullable=False),
        sa.Column("status", RIDE_STATUS, nullable=False),
        sa.Column("pickup_reached_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("passenger_arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trip_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_arrival_time", sa.String(32), nullable=True),
        sa.Column(
            "destination_reached_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("ride_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_collected", sa.Boolean, nullable=False, default=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column("cancelled_by", sa.String(64), nullable=True),
        *_timestamps(),
        sa.Column("version", sa.Integer, nullable=False),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_departure", "rides", ["departure_time"])

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ride_id", sa.String(36), sa.ForeignKey("rides.id"), nullable=False
        ),
        sa.Column("passenger_id", sa.String(64), nullable=False),
        sa.Column("seats_booked", sa.Integer, nullable=False),
        sa.Column("amount_to_pay_driver", sa.Integer, nullable=False),
        sa.Column("status", BOOKING_STATUS, nullable=False),
        sa.Column("booked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column("cancelled_by", CANCELLED_BY, nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_bookings_ride", "bookings", ["ride_id"])
    op.create_index("idx_bookings_passenger", "bookings", ["passenger_id"])
    op.create_index("idx_bookings_status", "bookings", ["status"])
    op.create_index("idx_bookings_idempotency", "bookings", ["idempotency_key"])

    # ── notifications ─────────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("type", NOTIFICATION_TYPE, nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("related_entity_id", sa.String(36), nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, default=False),
        *_timestamps(),
    )
    op.create_index("idx_notifications_user", "notifications", ["user_id"])

    # ── outbox_events ─────────────────────────────────────────────────
    op.create_table(
        "outbox_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("type", OUTBOX_NOTIFICATION_TYPE, nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("related_entity_id", sa.String(36), nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, default=0),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_outbox_delivered", "outbox_events", ["delivered_at"])


def downgrade() -> None:
    op.drop_table("outbox_events")
    op.drop_table("notifications")
    op.drop_table("bookings")
    op.drop_table("rides")
    op.execute("DROP TYPE IF EXISTS notificationtype")
    op.execute("DROP TYPE IF EXISTS cancelledby")
    op.execute("DROP TYPE IF EXISTS direction")
    op.execute("DROP TYPE IF EXISTS bookingstatus")
    op.execute("DROP TYPE IF EXISTS ridestatus")
