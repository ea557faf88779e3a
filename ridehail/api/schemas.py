"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ridehail.domain.enums import RideStatus, VehicleClass


# ── Requests ──────────────────────────────────────────────────────────


class BookRideRequest(BaseModel):
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    dropoff_lat: float = Field(..., ge=-90, le=90)
    dropoff_lng: float = Field(..., ge=-180, le=180)
    vehicle_class: VehicleClass
    pickup_address: Optional[str] = Field(None, max_length=200)
    dropoff_address: Optional[str] = Field(None, max_length=200)


class CancelRideRequest(BaseModel):
    reason: str = Field("", max_length=200)


class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    reported_at: Optional[datetime] = Field(
        None,
        description=(
            "Device timestamp, clamped to server time; older reports than the "
            "stored one are ignored."
        ),
    )


class TopUpRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


# ── Responses ─────────────────────────────────────────────────────────


class BookingResponse(BaseModel):
    ride_id: int
    estimated_fare: Decimal
    surge_multiplier: Decimal
    distance_km: float
    duration_min: float
    candidate_count: int
    degraded: bool
    timings: dict[str, float]


class RideResponse(BaseModel):
    id: int
    rider_id: int
    driver_id: Optional[int] = None
    status: RideStatus
    vehicle_class: VehicleClass
    pickup_lat: float
    pickup_lng: float
    dropoff_lat: float
    dropoff_lng: float
    pickup_address: Optional[str] = None
    dropoff_address: Optional[str] = None
    distance_km: float
    duration_min: float
    base_fare: Decimal
    surge_multiplier: Decimal
    total_fare: Decimal
    route_degraded: bool = False
    cancel_reason: Optional[str] = None
    ledger_discrepancy: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RideHistoryResponse(BaseModel):
    items: list[RideResponse]
    total: int
    limit: int
    offset: int


class DriverStatusResponse(BaseModel):
    driver_id: int
    is_online: bool
    is_available: bool


class LocationUpdateResponse(BaseModel):
    applied: bool


class WalletResponse(BaseModel):
    rider_id: int
    balance: Decimal


class RiderProfileResponse(BaseModel):
    id: int
    name: str
    email: str
    wallet_balance: Decimal
    completed_trips: int
    average_fare: Decimal
    recent_rides: list[RideResponse] = []


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    message: str
    detail: dict = {}
