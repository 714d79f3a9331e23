"""
Periodic sweeps
===============

* **Expiry** -- AVAILABLE rides more than ``expiry_grace_minutes`` past
  departure become EXPIRED.
* **Auto-completion** -- rides in TRIP_STARTED / DESTINATION_REACHED whose
  ETA has passed are closed out (driver side), then any confirmed booking
  on such a ride is completed (passenger side).
* **Outbox dispatch** -- queued notifications are handed to the sink.

Concurrency safety
------------------
* Each sweep takes its own **Redis distributed lock**, so with several API
  processes only one runs a given cycle; the others skip it.
* Every sweep is idempotent: a ride or booking already moved on is left
  alone, so overlapping or repeated cycles are harmless.
* One session per cycle.  Change events are published only after commit.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from carpool.infrastructure.changefeed import publish_pending_changes
from carpool.infrastructure.database import async_session_factory
from carpool.infrastructure.locks import DistributedLock
from carpool.infrastructure.notifications import dispatch_pending
from carpool.infrastructure.redis_client import get_redis
from carpool.infrastructure.repositories import BookingRepository, RideRepository

logger = logging.getLogger(__name__)

EXPIRY_LOCK = "expiry_sweep"
AUTO_COMPLETE_LOCK = "auto_complete_sweep"
OUTBOX_LOCK = "outbox_dispatch"


async def _run_locked(
    name: str,
    job: Callable[[AsyncSession], Awaitable[Any]],
    default: Any,
    ttl_seconds: int = 60,
) -> Any:
    """Run *job* in its own unit of work while holding lock *name*."""
    redis = await get_redis()
    lock = DistributedLock(redis, name, ttl_seconds=ttl_seconds)
    if not await lock.acquire():
        logger.debug("Lock %s held by another worker - skipping cycle", name)
        return default

    try:
        async with async_session_factory() as session:
            try:
                result = await job(session)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            await publish_pending_changes(session)
        return result
    finally:
        await lock.release()


async def run_expiry_sweep(now: Optional[datetime] = None) -> list[str]:
    """Expire stale AVAILABLE rides.  Returns the expired ride ids."""

    async def job(session: AsyncSession) -> list[str]:
        return await RideRepository(session).update_expired_rides(now=now)

    return await _run_locked(EXPIRY_LOCK, job, default=[])


async def run_auto_completion_sweep(
    now: Optional[datetime] = None,
) -> dict[str, list[str]]:
    """Close out rides and bookings whose ETA has passed."""

    async def job(session: AsyncSession) -> dict[str, list[str]]:
        rides = await RideRepository(session).auto_complete_due_rides(now=now)
        bookings = await BookingRepository(session).auto_complete_due_bookings(
            now=now
        )
        if rides or bookings:
            logger.info(
                "Auto-completion: %d ride(s), %d booking(s)", len(rides), len(bookings)
            )
        return {"rides": rides, "bookings": bookings}

    return await _run_locked(
        AUTO_COMPLETE_LOCK, job, default={"rides": [], "bookings": []}
    )


async def run_dispatch_cycle(now: Optional[datetime] = None) -> int:
    """Deliver pending outbox events.  Returns how many were delivered."""

    async def job(session: AsyncSession) -> int:
        return await dispatch_pending(session, now=now)

    return await _run_locked(OUTBOX_LOCK, job, default=0, ttl_seconds=30)
