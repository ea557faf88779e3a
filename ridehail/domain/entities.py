"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: enforces valid lifecycle transitions
  (REQUESTED -> ACCEPTED -> PICKED_UP -> COMPLETED | CANCELLED).
- ``Location`` validates coordinate ranges on construction, so an invalid
  point never reaches the store.
- ``Offer`` is ephemeral: it lives only for the accept-race window.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from .enums import ActorRole, RideStatus, RIDE_TRANSITIONS, VehicleClass
from .errors import InvalidInput, InvalidTransition


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise InvalidInput(
                f"Latitude must be between -90 and 90 (got {self.latitude})"
            )
        if not -180.0 <= self.longitude <= 180.0:
            raise InvalidInput(
                f"Longitude must be between -180 and 180 (got {self.longitude})"
            )


@dataclass(frozen=True)
class RouteEstimate:
    distance_km: float
    duration_min: float
    degraded: bool = False


@dataclass(frozen=True)
class Candidate:
    driver_id: int
    distance_km: float


@dataclass(frozen=True)
class FundsCheck:
    ok: bool
    balance: Decimal
    amount: Decimal

    @property
    def shortfall(self) -> Decimal:
        return max(Decimal("0"), self.amount - self.balance)


@dataclass(frozen=True)
class Identity:
    actor_id: int
    role: ActorRole

    @property
    def is_rider(self) -> bool:
        return self.role is ActorRole.RIDER

    @property
    def is_driver(self) -> bool:
        return self.role is ActorRole.DRIVER


def parse_vehicle_class(value: str | VehicleClass) -> VehicleClass:
    try:
        return VehicleClass(value)
    except ValueError:
        allowed = ", ".join(v.value for v in VehicleClass)
        raise InvalidInput(
            f"Vehicle class must be one of: {allowed}", {"vehicle_class": value}
        ) from None


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    id: Optional[int] = None
    rider_id: int = 0
    driver_id: Optional[int] = None
    status: RideStatus = RideStatus.REQUESTED
    total_fare: Optional[Decimal] = None

    def transition_to(self, new_status: RideStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = RIDE_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransition(
                f"Cannot transition from {self.status.value} to {new_status.value}",
                {"ride_id": self.id, "status": self.status.value},
            )
        self.status = new_status


@dataclass
class Offer:
    ride_id: int
    candidates: list[int] = field(default_factory=list)
    expires_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc) + timedelta(seconds=60)
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def includes(self, driver_id: int) -> bool:
        return driver_id in self.candidates

    def to_dict(self) -> dict:
        return {
            "ride_id": self.ride_id,
            "candidates": list(self.candidates),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Offer":
        return cls(
            ride_id=int(data["ride_id"]),
            candidates=[int(c) for c in data["candidates"]],
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )
