"""
Fare Calculator
===============

Formula
-------
Fare = (Base_Fare + Distance x Per_KM_Rate + Duration x Per_Min_Rate) x Surge_Multiplier

rounded to the currency's minor unit (two decimals) with ROUND_HALF_UP.
All arithmetic runs on ``Decimal``; floats are converted through ``str`` so
``50.005`` stays exactly ``50.005``.

* **Surge_Multiplier** is a step function of the local hour over named bands:
  ``peak`` (commute hours), ``night`` (late night) and 1.0 otherwise.  Bands
  are inclusive ``(start_hour, end_hour)`` ranges taken from settings.

Complexity: O(1) per fare, O(bands) per surge lookup.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from .errors import InvalidInput

MINOR_UNIT = Decimal("0.01")
ONE = Decimal("1")


def to_decimal(value: float | int | str | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    return value.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingRates:
    base_fare: Decimal
    per_km_rate: Decimal
    per_minute_rate: Decimal

    @classmethod
    def of(cls, base_fare, per_km_rate, per_minute_rate) -> "PricingRates":
        return cls(
            to_decimal(base_fare),
            to_decimal(per_km_rate),
            to_decimal(per_minute_rate),
        )


@dataclass(frozen=True)
class FareQuote:
    distance_km: float
    duration_min: float
    base_fare: Decimal
    surge_multiplier: Decimal
    total_fare: Decimal


def fare(
    distance_km: float,
    duration_min: float,
    pricing: PricingRates,
    surge_multiplier: float | Decimal = ONE,
) -> Decimal:
    """Price a trip.  Raises ``InvalidInput`` on negative inputs."""
    if distance_km < 0 or duration_min < 0:
        raise InvalidInput("Distance and duration must be non-negative")
    surge = to_decimal(surge_multiplier)
    if surge <= 0:
        raise InvalidInput("Surge multiplier must be positive")

    subtotal = (
        pricing.base_fare
        + to_decimal(distance_km) * pricing.per_km_rate
        + to_decimal(duration_min) * pricing.per_minute_rate
    )
    return round_money(subtotal * surge)


# ── Surge bands ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class SurgeBand:
    name: str
    ranges: tuple[tuple[int, int], ...]
    multiplier: Decimal

    def contains(self, hour: int) -> bool:
        return any(start <= hour <= end for start, end in self.ranges)


class SurgeSchedule:
    """Ordered bands; the first band containing the hour wins."""

    def __init__(self, bands: Sequence[SurgeBand], default: Decimal = ONE):
        self.bands = tuple(bands)
        self.default = default

    @classmethod
    def from_settings(cls, settings) -> "SurgeSchedule":
        return cls(
            [
                SurgeBand(
                    "peak",
                    tuple(tuple(r) for r in settings.peak_hours),
                    to_decimal(settings.peak_multiplier),
                ),
                SurgeBand(
                    "night",
                    tuple(tuple(r) for r in settings.night_hours),
                    to_decimal(settings.night_multiplier),
                ),
            ]
        )

    def band_for(self, local_hour: int) -> Optional[SurgeBand]:
        if not 0 <= local_hour <= 23:
            raise InvalidInput(f"Hour must be within 0-23 (got {local_hour})")
        for band in self.bands:
            if band.contains(local_hour):
                return band
        return None

    def multiplier(self, local_hour: int) -> Decimal:
        band = self.band_for(local_hour)
        return band.multiplier if band else self.default


# ── Calculator facade ─────────────────────────────────────────────────


class FareCalculator:
    """High-level API used by the dispatch coordinator."""

    def __init__(self, schedule: SurgeSchedule, tz: str = "UTC"):
        self.schedule = schedule
        self.tz = ZoneInfo(tz)

    def local_hour(self, now: Optional[datetime] = None) -> int:
        return (now or datetime.now(self.tz)).astimezone(self.tz).hour

    def surge_multiplier(self, now: Optional[datetime] = None) -> Decimal:
        return self.schedule.multiplier(self.local_hour(now))

    def quote(
        self,
        distance_km: float,
        duration_min: float,
        pricing: PricingRates,
        now: Optional[datetime] = None,
    ) -> FareQuote:
        surge = self.surge_multiplier(now)
        return FareQuote(
            distance_km=distance_km,
            duration_min=duration_min,
            base_fare=pricing.base_fare,
            surge_multiplier=surge,
            total_fare=fare(distance_km, duration_min, pricing, surge),
        )
