"""
Ride endpoints
==============

POST  /api/v1/rides                    -- book a ride (rider)
GET   /api/v1/rides                    -- ride history, paginated (rider or driver)
GET   /api/v1/rides/{ride_id}          -- ride details (its rider or driver)
POST  /api/v1/rides/{ride_id}/accept   -- accept an offer (driver, first wins)
POST  /api/v1/rides/{ride_id}/pickup   -- mark rider picked up (assigned driver)
POST  /api/v1/rides/{ride_id}/complete -- complete and charge (assigned driver)
POST  /api/v1/rides/{ride_id}/cancel   -- cancel (rider or assigned driver)
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ridehail.api.dependencies import (
    get_identity,
    get_services,
    require_driver,
    require_rider,
)
from ridehail.api.middleware import RATE_LIMIT, limiter
from ridehail.api.schemas import (
    BookingResponse,
    BookRideRequest,
    CancelRideRequest,
    ErrorResponse,
    RideHistoryResponse,
    RideResponse,
)
from ridehail.domain.entities import Identity, Location
from ridehail.domain.enums import RideStatus
from ridehail.services.container import Services

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Book a ride",
    responses={
        402: {"model": ErrorResponse, "description": "Insufficient wallet balance"},
        409: {"model": ErrorResponse, "description": "No drivers available"},
        503: {"model": ErrorResponse, "description": "Critical dependency down"},
    },
)
@limiter.limit(RATE_LIMIT)
async def book_ride(
    request: Request,
    body: BookRideRequest,
    rider: Identity = Depends(require_rider),
    services: Services = Depends(get_services),
):
    result = await services.dispatch.book_ride(
        rider.actor_id,
        Location(body.pickup_lat, body.pickup_lng),
        Location(body.dropoff_lat, body.dropoff_lng),
        body.vehicle_class,
        pickup_address=body.pickup_address,
        dropoff_address=body.dropoff_address,
    )
    return BookingResponse(**result.to_dict())


@router.get("", response_model=RideHistoryResponse, summary="Ride history")
@limiter.limit(RATE_LIMIT)
async def ride_history(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    status: Optional[RideStatus] = Query(None),
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    rides, total = await services.lifecycle.history(
        identity, limit=limit, offset=offset, status=status
    )
    return RideHistoryResponse(
        items=[RideResponse.model_validate(r) for r in rides],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{ride_id}", response_model=RideResponse, summary="Ride details")
@limiter.limit(RATE_LIMIT)
async def get_ride(
    request: Request,
    ride_id: int,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.get_ride(ride_id, identity)


@router.post(
    "/{ride_id}/accept",
    response_model=RideResponse,
    summary="Accept a ride offer",
    description=(
        "First driver to commit wins. Losing drivers receive 409 with "
        "error `AlreadyAccepted` (ride no longer available)."
    ),
)
@limiter.limit(RATE_LIMIT)
async def accept_ride(
    request: Request,
    ride_id: int,
    driver: Identity = Depends(require_driver),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.accept(ride_id, driver.actor_id)


@router.post("/{ride_id}/pickup", response_model=RideResponse, summary="Mark picked up")
@limiter.limit(RATE_LIMIT)
async def mark_picked_up(
    request: Request,
    ride_id: int,
    driver: Identity = Depends(require_driver),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.mark_picked_up(ride_id, driver.actor_id)


@router.post("/{ride_id}/complete", response_model=RideResponse, summary="Complete a ride")
@limiter.limit(RATE_LIMIT)
async def complete_ride(
    request: Request,
    ride_id: int,
    driver: Identity = Depends(require_driver),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.complete(ride_id, driver.actor_id)


@router.post(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    description=(
        "Transitions a REQUESTED or ACCEPTED ride to CANCELLED. "
        "An assigned driver becomes available again."
    ),
)
@limiter.limit(RATE_LIMIT)
async def cancel_ride(
    request: Request,
    ride_id: int,
    body: Optional[CancelRideRequest] = None,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    reason = body.reason if body else ""
    return await services.lifecycle.cancel(ride_id, identity, reason)
