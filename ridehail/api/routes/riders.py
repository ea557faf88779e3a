"""
Rider endpoints
===============

GET  /api/v1/riders/me                -- profile, wallet and recent rides
POST /api/v1/riders/me/wallet/top-up  -- add money to the wallet
"""

from fastapi import APIRouter, Depends, Request

from ridehail.api.dependencies import get_services, require_rider
from ridehail.api.middleware import RATE_LIMIT, limiter
from ridehail.api.schemas import (
    RideResponse,
    RiderProfileResponse,
    TopUpRequest,
    WalletResponse,
)
from ridehail.domain.entities import Identity
from ridehail.services.container import Services

router = APIRouter(prefix="/riders", tags=["riders"])


@router.get("/me", response_model=RiderProfileResponse, summary="Rider profile")
@limiter.limit(RATE_LIMIT)
async def profile(
    request: Request,
    rider: Identity = Depends(require_rider),
    services: Services = Depends(get_services),
):
    p = await services.riders.profile(rider.actor_id)
    return RiderProfileResponse(
        id=p.rider.id,
        name=p.rider.name,
        email=p.rider.email,
        wallet_balance=p.rider.wallet_balance,
        completed_trips=p.completed_trips,
        average_fare=p.average_fare,
        recent_rides=[RideResponse.model_validate(r) for r in p.recent_rides],
    )


@router.post("/me/wallet/top-up", response_model=WalletResponse, summary="Top up wallet")
@limiter.limit(RATE_LIMIT)
async def top_up(
    request: Request,
    body: TopUpRequest,
    rider: Identity = Depends(require_rider),
    services: Services = Depends(get_services),
):
    balance = await services.riders.top_up(rider.actor_id, body.amount)
    return WalletResponse(rider_id=rider.actor_id, balance=balance)
