"""Rider profile and wallet operations."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridehail.domain.errors import NotFound
from ridehail.infrastructure.models import RideModel, RiderModel
from ridehail.infrastructure.repositories import RideRepository, RiderRepository
from .ledger import Ledger
from .unit_of_work import read_only


@dataclass
class RiderProfile:
    rider: RiderModel
    completed_trips: int
    average_fare: Decimal
    recent_rides: list[RideModel]


class RiderService:
    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], ledger: Ledger
    ):
        self.sessions = session_factory
        self.ledger = ledger

    async def profile(self, rider_id: int) -> RiderProfile:
        rider, trips, average, (recent, _) = await asyncio.gather(
            self._read(lambda s: RiderRepository(s).get_by_id(rider_id)),
            self._read(lambda s: RideRepository(s).count_completed_for_rider(rider_id)),
            self._read(lambda s: RideRepository(s).average_fare_for_rider(rider_id)),
            self._read(lambda s: RideRepository(s).history(rider_id=rider_id, limit=5)),
        )
        if rider is None:
            raise NotFound(f"Rider {rider_id} not found")
        return RiderProfile(rider, trips, average, recent)

    async def top_up(self, rider_id: int, amount) -> Decimal:
        return await self.ledger.top_up(rider_id, amount)

    async def _read(self, query):
        async with read_only(self.sessions) as session:
            return await query(session)
