"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 sample rides offered by 3 drivers between homes and the office
  - 4 sample bookings on those rides (seat counts reconciled)
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from carpool.domain.entities import Location
from carpool.domain.enums import Direction
from carpool.domain.schedule import utcnow
from carpool.infrastructure.database import async_session_factory, engine
from carpool.infrastructure.repositories import BookingRepository, RideRepository

OFFICE = Location("office-bkc", "Office (BKC)", 19.0660, 72.8680, "G Block, Bandra Kurla Complex")

HOMES = [
    Location("home-andheri", "Andheri East", 19.1136, 72.8697),
    Location("home-powai", "Powai", 19.1176, 72.9060),
    Location("home-bandra", "Bandra West", 19.0596, 72.8295),
]

DRIVERS = ["driver-aarav", "driver-priya", "driver-rohan"]
PASSENGERS = ["passenger-sneha", "passenger-vikram", "passenger-meera"]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM rides"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        rides = RideRepository(session)
        bookings = BookingRepository(session)
        tomorrow = utcnow().replace(hour=3, minute=30, second=0, microsecond=0) + timedelta(days=1)

        # ── Rides ─────────────────────────────────────────────────────
        offered = []
        for i, (driver, home) in enumerate(zip(DRIVERS, HOMES)):
            offered.append(
                await rides.create_ride(
                    driver_id=driver,
                    vehicle_id=f"MH-02-AB-{1000 + i}",
                    start_location=home,
                    end_location=OFFICE,
                    direction=Direction.TO_OFFICE,
                    departure_time=tomorrow + timedelta(minutes=15 * i),
                    total_seats=3,
                    cost_per_seat=80 + 10 * i,
                )
            )
            offered.append(
                await rides.create_ride(
                    driver_id=driver,
                    vehicle_id=f"MH-02-AB-{1000 + i}",
                    start_location=OFFICE,
                    end_location=home,
                    direction=Direction.FROM_OFFICE,
                    departure_time=tomorrow + timedelta(hours=9, minutes=15 * i),
                    total_seats=3,
                    cost_per_seat=80 + 10 * i,
                )
            )
        print(f"  Created {len(offered)} rides")

        # ── Bookings ──────────────────────────────────────────────────
        plan = [(0, 0, 2), (0, 1, 1), (2, 2, 1), (3, 0, 1)]
        for ride_index, passenger_index, seats in plan:
            await bookings.create_booking(
                ride_id=offered[ride_index].id,
                passenger_id=PASSENGERS[passenger_index],
                seats_booked=seats,
            )
        print(f"  Created {len(plan)} bookings")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
