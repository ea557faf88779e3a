"""
Shared test fixtures.

Each test gets its own SQLite file database (via aiosqlite) built from the
production metadata, so tests run without Docker / PostgreSQL / Redis.
Redis-backed collaborators (notifier, offer store) and the OSRM oracle are
replaced by in-memory doubles that record what they were asked to do.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridehail.config import Settings
from ridehail.domain.cells import driver_cell
from ridehail.domain.entities import Location, Offer, RouteEstimate
from ridehail.domain.enums import VehicleClass
from ridehail.domain.pricing import FareCalculator, SurgeSchedule
from ridehail.infrastructure import tasks
from ridehail.infrastructure.database import Base, build_engine, session_factory_for
from ridehail.infrastructure.models import DriverModel, PricingModel, RiderModel
from ridehail.services.container import Services, build_services

# MG Road, Bangalore
ORIGIN = Location(12.9756, 77.6050)
DESTINATION = Location(12.9352, 77.6245)


# ── Doubles ───────────────────────────────────────────────────────────


class RecordingNotifier:
    def __init__(self):
        self.published: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        self.published.append((topic, payload))

    def events(self, topic: Optional[str] = None) -> list[str]:
        return [p["event"] for t, p in self.published if topic is None or t == topic]

    def topics_for(self, event: str) -> list[str]:
        return [t for t, p in self.published if p["event"] == event]


class InMemoryOfferStore:
    def __init__(self):
        self.offers: dict[int, Offer] = {}

    async def put(self, offer: Offer) -> None:
        self.offers[offer.ride_id] = offer

    async def get(self, ride_id: int) -> Optional[Offer]:
        return self.offers.get(ride_id)

    async def discard(self, ride_id: int) -> None:
        self.offers.pop(ride_id, None)


class StubRouteOracle:
    """Returns a fixed 10 km / 20 min route unless told to fail or stall."""

    def __init__(self):
        self.estimate = RouteEstimate(distance_km=10.0, duration_min=20.0)
        self.error: Optional[Exception] = None
        self.delay = 0.0
        self.calls = 0

    async def route(self, origin: Location, destination: Location) -> RouteEstimate:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.estimate


class DataFactory:
    """Inserts riders, drivers and pricing rows in committed transactions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], resolution: int):
        self.sessions = session_factory
        self.resolution = resolution
        self._seq = 0

    async def _add(self, row):
        async with self.sessions() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return row

    async def rider(self, balance: str | Decimal = "1000.00", name: str = "Test Rider") -> RiderModel:
        self._seq += 1
        return await self._add(
            RiderModel(
                name=name,
                email=f"rider{self._seq}@example.com",
                wallet_balance=Decimal(str(balance)),
            )
        )

    async def driver(
        self,
        lat: float = ORIGIN.latitude,
        lng: float = ORIGIN.longitude,
        vehicle_class: VehicleClass = VehicleClass.SEDAN,
        *,
        is_available: bool = True,
        is_online: bool = True,
        name: str = "Test Driver",
    ) -> DriverModel:
        return await self._add(
            DriverModel(
                name=name,
                vehicle_class=vehicle_class,
                current_lat=lat,
                current_lng=lng,
                h3_cell=driver_cell(lat, lng, self.resolution),
                is_available=is_available,
                is_online=is_online,
            )
        )

    async def pricing(
        self,
        vehicle_class: VehicleClass = VehicleClass.SEDAN,
        base_fare: str = "50",
        per_km_rate: str = "12",
        per_minute_rate: str = "2",
    ) -> PricingModel:
        return await self._add(
            PricingModel(
                vehicle_class=vehicle_class,
                base_fare=Decimal(base_fare),
                per_km_rate=Decimal(per_km_rate),
                per_minute_rate=Decimal(per_minute_rate),
            )
        )

    async def get(self, model, pk):
        async with self.sessions() as session:
            return await session.get(model, pk)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    return Settings(read_timeout_seconds=1.0, route_timeout_seconds=0.2)


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables in a fresh database file, yield a factory, then dispose."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ridehail.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield session_factory_for(engine)

    await tasks.drain()
    await engine.dispose()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def offers() -> InMemoryOfferStore:
    return InMemoryOfferStore()


@pytest.fixture
def router() -> StubRouteOracle:
    return StubRouteOracle()


@pytest.fixture
def data(session_factory, settings) -> DataFactory:
    return DataFactory(session_factory, settings.h3_resolution)


@pytest.fixture
def services(session_factory, settings, notifier, offers, router) -> Services:
    """Service graph with surge disabled (every hour prices at 1.0)."""
    return build_services(
        settings,
        session_factory,
        notifier=notifier,
        offers=offers,
        router=router,
        fares=FareCalculator(SurgeSchedule([])),
    )
