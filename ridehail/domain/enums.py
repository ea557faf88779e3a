"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.REQUESTED: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.PICKED_UP, RideStatus.CANCELLED},
    RideStatus.PICKED_UP: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({RideStatus.ACCEPTED, RideStatus.PICKED_UP})


def sources_for(target: RideStatus) -> set[RideStatus]:
    """Every status from which *target* is reachable in one step."""
    return {src for src, dests in RIDE_TRANSITIONS.items() if target in dests}


class VehicleClass(str, enum.Enum):
    COMPACT = "compact"
    SEDAN = "sedan"
    SUV = "suv"


class ActorRole(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"


class LedgerReason(str, enum.Enum):
    RIDE_FARE = "ride_fare"
    TOP_UP = "top_up"
