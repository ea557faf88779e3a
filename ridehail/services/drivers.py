"""Driver-side operations that are not ride transitions."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridehail.domain.entities import Location
from ridehail.domain.errors import NotFound
from ridehail.infrastructure.models import DriverModel, RideModel
from ridehail.infrastructure.notifier import DRIVER_LOCATIONS_TOPIC, Notifier
from ridehail.infrastructure.repositories import DriverRepository, RideRepository
from ridehail.infrastructure.tasks import fire_and_forget
from .geo_index import GeoIndex
from .unit_of_work import read_only, transaction

logger = logging.getLogger(__name__)


class DriverService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        geo: GeoIndex,
        notifier: Notifier,
    ):
        self.sessions = session_factory
        self.geo = geo
        self.notifier = notifier

    async def update_location(
        self,
        driver_id: int,
        position: Location,
        reported_at: Optional[datetime] = None,
    ) -> bool:
        applied = await self.geo.update_position(driver_id, position, reported_at)
        if applied:
            fire_and_forget(
                self.notifier.publish(
                    DRIVER_LOCATIONS_TOPIC,
                    {
                        "event": "driver_moved",
                        "driver_id": driver_id,
                        "location": {
                            "lat": position.latitude,
                            "lng": position.longitude,
                        },
                    },
                ),
                f"driver-moved-{driver_id}",
            )
        return applied

    async def toggle_availability(self, driver_id: int) -> DriverModel:
        """Flip the duty switch.  ``is_available`` (ride occupancy) is untouched."""
        async with transaction(self.sessions) as session:
            drivers = DriverRepository(session)
            if not await drivers.toggle_online(driver_id):
                raise NotFound(f"Driver {driver_id} not found")
            driver = await drivers.reload(driver_id)
        logger.info("Driver %s is now %s", driver_id, "online" if driver.is_online else "offline")
        return driver

    async def active_rides(self, driver_id: int) -> list[RideModel]:
        async with read_only(self.sessions) as session:
            return await RideRepository(session).active_for_driver(driver_id)
