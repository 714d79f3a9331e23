"""
Background job scheduler
========================

Started and stopped by the FastAPI lifespan.  Each job gets its own
asyncio task looping on a fixed interval; an unhandled error in one cycle
is logged and the loop carries on with the next one.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from carpool.config import settings
from carpool.workers.sweeper import (
    run_auto_completion_sweep,
    run_dispatch_cycle,
    run_expiry_sweep,
)

logger = logging.getLogger(__name__)

_tasks: list[asyncio.Task] = []
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_background_jobs() -> None:
    global _stop_event
    _stop_event = asyncio.Event()
    jobs = [
        ("expiry", run_expiry_sweep, settings.expiry_sweep_interval_seconds),
        (
            "auto-completion",
            run_auto_completion_sweep,
            settings.auto_complete_interval_seconds,
        ),
        ("outbox", run_dispatch_cycle, settings.outbox_interval_seconds),
    ]
    for name, job, interval in jobs:
        _tasks.append(asyncio.create_task(_loop(name, job, interval)))
        logger.info("Background job %s started (interval=%ds)", name, interval)


async def stop_background_jobs() -> None:
    if _stop_event:
        _stop_event.set()
    for task in _tasks:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    _tasks.clear()
    logger.info("Background jobs stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(name: str, job: Callable[[], Awaitable[object]], interval: int) -> None:
    """Periodic loop: run one cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await job()
        except Exception:
            logger.exception("Unhandled error in %s cycle", name)
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(_stop_event.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass  # next cycle
