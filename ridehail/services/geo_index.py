"""
Geo Index
=========

Driver positions live on the ``drivers`` rows; this service answers
proximity queries over them.

``find_candidates`` algorithm
-----------------------------
1. Convert ``radius_km`` into the H3 cells that can contain a point within
   range (``cells.covering_cells``).  This is a superset filter: it may
   return drivers beyond the radius but never drops one inside it.
2. Ask the store for dispatchable drivers (``is_available`` and
   ``is_online``) of the requested vehicle class in those cells.
3. Compute the exact haversine distance, drop drivers outside the radius
   (this check alone decides who is in range), sort ascending (driver id
   breaks ties) and truncate to ``limit``.

Staleness
---------
The result is a snapshot at query time.  A driver can go busy or offline
between the query and the offer broadcast; the broadcast re-checks the
snapshot just before publishing, and the accept compare-and-set is the
final arbiter for anything that changes after that.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridehail.domain.cells import covering_cells, driver_cell
from ridehail.domain.distance import haversine_km
from ridehail.domain.entities import Candidate, Location
from ridehail.domain.enums import VehicleClass
from ridehail.domain.errors import InvalidInput, NotFound
from ridehail.infrastructure.repositories import DriverRepository
from .unit_of_work import read_only, transaction

logger = logging.getLogger(__name__)


class GeoIndex:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        resolution: int = 7,
        default_radius_km: float = 10.0,
        max_radius_km: float = 25.0,
        default_limit: int = 5,
    ):
        self.sessions = session_factory
        self.resolution = resolution
        self.default_radius_km = default_radius_km
        self.max_radius_km = max_radius_km
        self.default_limit = default_limit

    async def find_candidates(
        self,
        origin: Location,
        vehicle_class: VehicleClass,
        radius_km: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[Candidate]:
        radius_km = self.default_radius_km if radius_km is None else radius_km
        limit = self.default_limit if limit is None else limit
        if not 0 < radius_km <= self.max_radius_km:
            raise InvalidInput(
                f"Search radius must be within (0, {self.max_radius_km}] km"
            )
        if limit < 1:
            raise InvalidInput("Candidate limit must be at least 1")

        # Superset of the in-range cells; the haversine check below is exact
        cells = covering_cells(
            origin.latitude, origin.longitude, radius_km, self.resolution
        )
        async with read_only(self.sessions) as session:
            drivers = await DriverRepository(session).dispatchable_in_cells(
                cells, vehicle_class
            )

        ranked: list[Candidate] = []
        for driver in drivers:
            distance = haversine_km(
                origin.latitude, origin.longitude,
                driver.current_lat, driver.current_lng,
            )
            if distance <= radius_km:
                ranked.append(Candidate(driver.id, distance))
        ranked.sort(key=lambda c: (c.distance_km, c.driver_id))
        return ranked[:limit]

    async def update_position(
        self,
        driver_id: int,
        position: Location,
        reported_at: Optional[datetime] = None,
    ) -> bool:
        """Idempotent upsert of a driver's position.

        Returns False when a newer report is already stored (the update is
        ignored, last write by wall-clock wins).

        Device timestamps are clamped to the server clock; naive ones are
        taken as UTC.
        """
        now = datetime.now(timezone.utc)
        if reported_at is None:
            reported_at = now
        else:
            if reported_at.tzinfo is None:
                reported_at = reported_at.replace(tzinfo=timezone.utc)
            reported_at = min(reported_at, now)
        cell = driver_cell(position.latitude, position.longitude, self.resolution)
        async with transaction(self.sessions) as session:
            drivers = DriverRepository(session)
            applied = await drivers.update_position(
                driver_id, position.latitude, position.longitude, cell, reported_at
            )
            if not applied and await drivers.get_by_id(driver_id) is None:
                raise NotFound(f"Driver {driver_id} not found")
        if not applied:
            logger.debug("Stale position for driver %s ignored", driver_id)
        return applied

    async def still_dispatchable(self, driver_ids: list[int]) -> list[int]:
        """Filter *driver_ids* to those still free and online, keeping order."""
        async with read_only(self.sessions) as session:
            live = await DriverRepository(session).still_dispatchable(driver_ids)
        return [d for d in driver_ids if d in live]
