"""
FastAPI application factory.

* Registers routes for rides, bookings, notifications, admin and the live
  ride websocket.
* Starts / stops the background sweeps via lifespan events.
* Maps core exceptions to HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from carpool.api.errors import register_exception_handlers
from carpool.api.middleware import limiter
from carpool.api.routes import admin, bookings, live, notifications, rides
from carpool.config import settings
from carpool.workers import scheduler

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the background sweeps on startup; stop them on shutdown."""
    if settings.background_jobs_enabled:
        await scheduler.start_background_jobs()
    yield
    if settings.background_jobs_enabled:
        await scheduler.stop_background_jobs()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Office Carpool API",
        description=(
            "Drivers offer seats on commutes to and from the office; "
            "passengers book them.  Keeps seat counts consistent under "
            "concurrent bookings and walks each ride through pickup, trip "
            "and payment."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    register_exception_handlers(app)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(live.router)

    return app
