"""
Driver endpoints
================

POST /api/v1/drivers/me/location             -- report current position
POST /api/v1/drivers/me/availability/toggle  -- go online / offline
GET  /api/v1/drivers/me/rides/active         -- accepted or picked-up rides
"""

from fastapi import APIRouter, Depends, Request

from ridehail.api.dependencies import get_services, require_driver
from ridehail.api.middleware import RATE_LIMIT, limiter
from ridehail.api.schemas import (
    DriverStatusResponse,
    LocationUpdateRequest,
    LocationUpdateResponse,
    RideResponse,
)
from ridehail.domain.entities import Identity, Location
from ridehail.services.container import Services

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.post("/me/location", response_model=LocationUpdateResponse, summary="Update location")
@limiter.limit(RATE_LIMIT)
async def update_location(
    request: Request,
    body: LocationUpdateRequest,
    driver: Identity = Depends(require_driver),
    services: Services = Depends(get_services),
):
    applied = await services.drivers.update_location(
        driver.actor_id, Location(body.lat, body.lng), body.reported_at
    )
    return LocationUpdateResponse(applied=applied)


@router.post(
    "/me/availability/toggle",
    response_model=DriverStatusResponse,
    summary="Toggle driver availability",
)
@limiter.limit(RATE_LIMIT)
async def toggle_availability(
    request: Request,
    driver: Identity = Depends(require_driver),
    services: Services = Depends(get_services),
):
    row = await services.drivers.toggle_availability(driver.actor_id)
    return DriverStatusResponse(
        driver_id=row.id, is_online=row.is_online, is_available=row.is_available
    )


@router.get("/me/rides/active", response_model=list[RideResponse], summary="Active rides")
@limiter.limit(RATE_LIMIT)
async def active_rides(
    request: Request,
    driver: Identity = Depends(require_driver),
    services: Services = Depends(get_services),
):
    return await services.drivers.active_rides(driver.actor_id)
