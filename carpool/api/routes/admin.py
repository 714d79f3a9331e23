"""
Admin / operations endpoints
============================

GET  /api/v1/admin/health              -- simple health check
POST /api/v1/admin/sweeps/expiry       -- run the expiry sweep now
POST /api/v1/admin/sweeps/auto-complete -- run the auto-completion sweep now
POST /api/v1/admin/outbox/dispatch     -- deliver queued notifications now

The sweeps take the same distributed locks as the background jobs; a
cycle already running elsewhere makes these return empty results.
"""

from fastapi import APIRouter

from carpool.api.schemas import DispatchResponse, HealthResponse, SweepResponse
from carpool.workers.sweeper import (
    run_auto_completion_sweep,
    run_dispatch_cycle,
    run_expiry_sweep,
)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()


@router.post(
    "/sweeps/expiry",
    response_model=SweepResponse,
    summary="Expire AVAILABLE rides past their grace window",
)
async def expiry_sweep():
    return SweepResponse(rides=await run_expiry_sweep())


@router.post(
    "/sweeps/auto-complete",
    response_model=SweepResponse,
    summary="Complete rides and bookings whose ETA has passed",
)
async def auto_complete_sweep():
    return SweepResponse(**await run_auto_completion_sweep())


@router.post(
    "/outbox/dispatch",
    response_model=DispatchResponse,
    summary="Deliver pending notifications",
)
async def dispatch_outbox():
    return DispatchResponse(delivered=await run_dispatch_cycle())
