"""
Shared test fixtures.

Services run on ``InMemoryDocumentStore`` so tests need no Docker /
PostgreSQL / Redis.  ``sql_store`` gives the SQLAlchemy backend on a
throwaway SQLite file (via aiosqlite) for the store-level tests.
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from ladies_drive.domain.entities import (
    REQUIRED_DRIVER_DOCUMENTS,
    Location,
    Place,
    User,
    VehicleInfo,
)
from ladies_drive.domain.enums import Availability, UserRole
from ladies_drive.infrastructure.database import Base, make_session_factory
from ladies_drive.infrastructure.memory_store import InMemoryDocumentStore
from ladies_drive.infrastructure.sql_store import SqlDocumentStore
from ladies_drive.services.dispatch import DispatchCoordinator
from ladies_drive.services.lifecycle import RideLifecycleManager
from ladies_drive.services.rating import RatingAggregator
from ladies_drive.services.users import UserService

CITY = "Casablanca"

MAARIF = Place("Maarif", Location(33.5808, -7.6326))
AIN_DIAB = Place("Ain Diab", Location(33.5920, -7.6700))

DRIVER_DOCUMENTS = {
    key: f"https://files.example.com/{key}.jpg" for key in REQUIRED_DRIVER_DOCUMENTS
}


class FakeClock:
    """Settable clock so expiry and ordering tests are deterministic."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# ── Stores ────────────────────────────────────────────────────────────


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(max_attempts=20)


@pytest_asyncio.fixture
async def sql_store(tmp_path) -> AsyncGenerator[SqlDocumentStore, None]:
    """SQL-backed store on a temp SQLite file; tables created then dropped."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield SqlDocumentStore(make_session_factory(engine), max_attempts=10)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


# ── Services ──────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def lifecycle(store, clock) -> RideLifecycleManager:
    return RideLifecycleManager(store, clock=clock)


@pytest.fixture
def dispatch(store) -> DispatchCoordinator:
    return DispatchCoordinator(store)


@pytest.fixture
def ratings(store, clock) -> RatingAggregator:
    return RatingAggregator(store, clock=clock)


@pytest.fixture
def users(store, clock) -> UserService:
    return UserService(store, clock=clock)


# ── Seeded people ─────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def passenger(users) -> User:
    return await users.register(name="Salma", city=CITY)


async def verify_driver(users: UserService, driver_id: str) -> User:
    """Submit the documents and have an admin approve them."""
    await users.submit_application(driver_id, DRIVER_DOCUMENTS)
    return await users.approve_driver(driver_id)


async def _online_driver(users: UserService, name: str, city: str = CITY) -> User:
    driver = await users.register(
        name=name,
        role=UserRole.DRIVER,
        city=city,
        phone_number="+212600000000",
        vehicle=VehicleInfo("Dacia", "Logan", "2021", "White", "12345-A-6"),
    )
    await verify_driver(users, driver.id)
    return await users.set_availability(driver.id, Availability.AVAILABLE)


@pytest_asyncio.fixture
async def driver1(users) -> User:
    return await _online_driver(users, "Khadija")


@pytest_asyncio.fixture
async def driver2(users) -> User:
    return await _online_driver(users, "Fatima")


@pytest.fixture
def make_driver(users):
    async def _make(name: str = "Meryem", city: str = CITY) -> User:
        return await _online_driver(users, name, city)

    return _make


@pytest.fixture
def request_ride(lifecycle, passenger, clock):
    """Create a Regular ride Maarif -> Ain Diab at 18.50, one second apart."""

    async def _request(**kwargs):
        clock.advance(seconds=1)
        kwargs.setdefault("price", 18.50)
        return await lifecycle.request_ride(
            kwargs.pop("passenger", passenger), MAARIF, AIN_DIAB, **kwargs
        )

    return _request
