"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  The production models are used as-is; Redis
is replaced by an ``AsyncMock`` wherever the code asks for a client.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from carpool.domain.enums import Direction
from carpool.infrastructure.database import Base
from carpool.infrastructure.repositories import RideRepository

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

# 08:30 in Asia/Kolkata
NOW = datetime(2026, 3, 2, 3, 0, tzinfo=timezone.utc)

HOME = {
    "id": "home-andheri",
    "name": "Andheri East",
    "latitude": 19.1136,
    "longitude": 72.8697,
}
OFFICE = {
    "id": "office-bkc",
    "name": "Office (BKC)",
    "latitude": 19.0660,
    "longitude": 72.8680,
}


@pytest.fixture
def now() -> datetime:
    return NOW


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory schema per test; every session shares one connection."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Redis ─────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def redis_mock(monkeypatch) -> AsyncMock:
    """Stand-in Redis client: locks always acquire, publishes succeed."""
    client = AsyncMock()
    client.set = AsyncMock(return_value=True)
    client.eval = AsyncMock(return_value=1)
    client.publish = AsyncMock(return_value=1)

    async def _get_redis():
        return client

    monkeypatch.setattr("carpool.infrastructure.changefeed.get_redis", _get_redis)
    monkeypatch.setattr("carpool.workers.sweeper.get_redis", _get_redis)
    return client


# ── Data helpers ──────────────────────────────────────────────────────


@pytest.fixture
def make_ride(db_session, now):
    """Create a ride departing an hour after ``now`` (defaults overridable)."""

    async def _make(**overrides):
        fields = {
            "driver_id": "driver-1",
            "vehicle_id": "MH-02-AB-1234",
            "start_location": HOME,
            "end_location": OFFICE,
            "direction": Direction.TO_OFFICE,
            "departure_time": now + timedelta(hours=1),
            "total_seats": 3,
            "cost_per_seat": 80,
            "now": now,
        }
        fields.update(overrides)
        return await RideRepository(db_session).create_ride(**fields)

    return _make


# ── API ───────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(session_factory, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    from carpool.api.app import create_app
    from carpool.api.middleware import limiter

    monkeypatch.setattr("carpool.api.dependencies.async_session_factory", session_factory)
    monkeypatch.setattr("carpool.workers.sweeper.async_session_factory", session_factory)
    monkeypatch.setattr(limiter, "enabled", False)

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
