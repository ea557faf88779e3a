"""
Tagged domain errors.

Every failure a caller can observe carries a stable ``kind`` plus a
human-readable message.  The API layer maps kinds to HTTP statuses; services
and tests match on the exception class.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional


class RideHailError(Exception):
    kind = "Error"

    def __init__(self, message: str, detail: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message, "detail": self.detail}


class InvalidInput(RideHailError):
    """Malformed coordinates, unknown enum value, non-positive amount."""

    kind = "InvalidInput"


class Unauthorized(RideHailError):
    """The verified identity does not own the ride or driver record."""

    kind = "Unauthorized"


class NotFound(RideHailError):
    kind = "NotFound"


class InvalidTransition(RideHailError):
    """Raised when a ride status change violates the state machine."""

    kind = "InvalidTransition"


class AlreadyAccepted(RideHailError):
    """Another driver won the accept race.  Expected, not exceptional."""

    kind = "AlreadyAccepted"

    def __init__(self, ride_id: int):
        super().__init__("Ride no longer available", {"ride_id": ride_id})


class InsufficientFunds(RideHailError):
    kind = "InsufficientFunds"

    def __init__(
        self,
        balance: Decimal,
        amount: Decimal,
        message: str = "Insufficient wallet balance",
        **extra: Any,
    ):
        self.balance = balance
        self.amount = amount
        self.shortfall = amount - balance
        super().__init__(
            message,
            {
                "balance": str(balance),
                "amount": str(amount),
                "shortfall": str(self.shortfall),
                **extra,
            },
        )


class NoDriversAvailable(RideHailError):
    kind = "NoDriversAvailable"

    def __init__(self, message: str = "No drivers available in your area"):
        super().__init__(message)


class UpstreamUnavailable(RideHailError):
    """Store or another critical dependency failed."""

    kind = "UpstreamUnavailable"
