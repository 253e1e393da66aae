"""
Shared test fixtures.

Uses a throwaway SQLite database per test (via aiosqlite) so tests run
without Docker / PostgreSQL / Redis.  The production models are used
as-is; every column type they declare maps onto SQLite, and foreign keys
are enforced as they are on PostgreSQL.

Time is a ``FrozenClock`` injected into the orchestrator and dispatcher,
so waiting phases and cancellation windows are asserted exactly.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ride_lifecycle.domain.entities import Actor, Location
from ride_lifecycle.domain.enums import Role, UserRole
from ride_lifecycle.infrastructure.database import Base
from ride_lifecycle.infrastructure.locks import LocalRideLocks
from ride_lifecycle.infrastructure.models import UserModel
from ride_lifecycle.services.orchestrator import RideOrchestrator

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

RIDER = Actor(Role.RIDER, "rider-1")
OTHER_RIDER = Actor(Role.RIDER, "rider-2")
DRIVER = Actor(Role.DRIVER, "driver-1")
OTHER_DRIVER = Actor(Role.DRIVER, "driver-2")
SYSTEM = Actor(Role.SYSTEM, "system")

AIRPORT = Location("Mumbai Airport T2", 19.0896, 72.8656)
ANDHERI = Location("Andheri West", 19.1364, 72.8296)
POWAI = Location("Powai Lake", 19.1176, 72.9060)

EMERGENCY_PHONE = "+91 98200 00002"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables in a fresh database, seed users, then dispose."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'rides.db'}", echo=False
    )

    @event.listens_for(engine.sync_engine, "connect")
    def enforce_foreign_keys(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        session.add_all(
            [
                UserModel(
                    id="rider-1",
                    role=UserRole.RIDER,
                    name="Priya Patel",
                    rating=4.9,
                    emergency_contact=EMERGENCY_PHONE,
                ),
                UserModel(id="rider-2", role=UserRole.RIDER, name="Rohan Mehta", rating=4.5),
                UserModel(
                    id="driver-1",
                    role=UserRole.DRIVER,
                    name="Karan Joshi",
                    rating=4.3,
                    vehicle="White Swift Dzire MH02 AB 1234",
                ),
                UserModel(
                    id="driver-2",
                    role=UserRole.DRIVER,
                    name="Meera Nair",
                    rating=4.8,
                    vehicle="Grey Innova MH04 CD 5678",
                ),
            ]
        )
        await session.commit()

    yield factory

    await engine.dispose()


@pytest.fixture
def orchestrator(session_factory, clock) -> RideOrchestrator:
    return RideOrchestrator(session_factory, LocalRideLocks(), clock=clock)
