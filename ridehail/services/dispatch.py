"""
Dispatch Coordinator
====================

``book_ride`` turns a booking request into a ``requested`` ride and an
offer broadcast.

Steps
-----
1. Four independent reads run concurrently, each in its own session and
   each bounded by ``read_timeout``: wallet balance, completed-trip count
   (analytics only), pricing row, nearby candidates.  A failed trip-count
   read is logged and replaced by 0; any other failure aborts with
   ``UpstreamUnavailable``.
2. Route oracle, bounded by ``route_timeout``.  Any failure switches to the
   configured fallback distance/duration and the response is flagged
   ``degraded``.
3. No candidates -> ``NoDriversAvailable``; nothing is written.
4. Fare quote, then the ledger affordability check -> ``InsufficientFunds``
   with the shortfall; nothing is written.
5. Ride row created in ``requested``.
6. Request log written fire-and-forget.
7. Offer stored and broadcast fire-and-forget.  Candidates that went busy or
   offline since step 1 are dropped just before publishing.
8. ``BookingResult`` returned without waiting for any driver.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridehail.domain.entities import (
    Location,
    Offer,
    RouteEstimate,
    parse_vehicle_class,
)
from ridehail.domain.enums import VehicleClass
from ridehail.domain.errors import (
    InsufficientFunds,
    NoDriversAvailable,
    NotFound,
    RideHailError,
    UpstreamUnavailable,
)
from ridehail.domain.pricing import FareCalculator, PricingRates
from ridehail.infrastructure.models import RideModel
from ridehail.infrastructure.notifier import Notifier, driver_topic
from ridehail.infrastructure.offers import OfferStore
from ridehail.infrastructure.repositories import (
    PricingRepository,
    RequestLogRepository,
    RideRepository,
    RiderRepository,
)
from ridehail.infrastructure.routing import RouteOracle
from ridehail.infrastructure.tasks import fire_and_forget
from .geo_index import GeoIndex
from .ledger import Ledger
from .lifecycle import RideLifecycle, ride_payload
from .unit_of_work import read_only, transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DispatchPolicy:
    read_timeout: float = 3.0
    route_timeout: float = 2.0
    fallback_distance_km: float = 5.0
    fallback_duration_min: float = 15.0
    offer_ttl_seconds: int = 60
    default_rates: PricingRates = field(
        default_factory=lambda: PricingRates.of(50, 12, 2)
    )

    @classmethod
    def from_settings(cls, settings) -> "DispatchPolicy":
        return cls(
            read_timeout=settings.read_timeout_seconds,
            route_timeout=settings.route_timeout_seconds,
            fallback_distance_km=settings.fallback_distance_km,
            fallback_duration_min=settings.fallback_duration_min,
            offer_ttl_seconds=settings.offer_ttl_seconds,
            default_rates=PricingRates.of(
                settings.default_base_fare,
                settings.default_per_km_rate,
                settings.default_per_minute_rate,
            ),
        )


@dataclass
class BookingResult:
    ride_id: int
    estimated_fare: Decimal
    surge_multiplier: Decimal
    distance_km: float
    duration_min: float
    candidate_count: int
    degraded: bool
    timings: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DispatchCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        geo: GeoIndex,
        ledger: Ledger,
        lifecycle: RideLifecycle,
        fares: FareCalculator,
        router: RouteOracle,
        notifier: Notifier,
        offers: OfferStore,
        policy: Optional[DispatchPolicy] = None,
    ):
        self.sessions = session_factory
        self.geo = geo
        self.ledger = ledger
        self.lifecycle = lifecycle
        self.fares = fares
        self.router = router
        self.notifier = notifier
        self.offers = offers
        self.policy = policy or DispatchPolicy()

    async def book_ride(
        self,
        rider_id: int,
        pickup: Location,
        dropoff: Location,
        vehicle_class: VehicleClass | str,
        *,
        pickup_address: Optional[str] = None,
        dropoff_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BookingResult:
        started = time.perf_counter()
        vehicle_class = parse_vehicle_class(vehicle_class)

        # 1. Parallel reads
        balance, trip_count, rates, candidates = await asyncio.gather(
            self._bounded(self._read_balance(rider_id)),
            self._bounded(self._read_trip_count(rider_id)),
            self._bounded(self._read_pricing(vehicle_class)),
            self._bounded(self.geo.find_candidates(pickup, vehicle_class)),
            return_exceptions=True,
        )
        parallel_ms = (time.perf_counter() - started) * 1000

        if isinstance(trip_count, Exception):
            logger.warning(
                "Trip history read failed for rider %s, continuing", rider_id,
                exc_info=trip_count,
            )
            trip_count = 0
        balance = self._critical(balance, "wallet balance")
        rates = self._critical(rates, "pricing")
        candidates = self._critical(candidates, "candidate drivers")

        # 2. Route, degraded on failure
        route = await self._route(pickup, dropoff)

        # 3. Supply
        if not candidates:
            raise NoDriversAvailable()

        # 4. Fare and funds
        quote = self.fares.quote(route.distance_km, route.duration_min, rates, now)
        funds = await self.ledger.check_and_reserve(
            rider_id, quote.total_fare, balance=balance
        )
        if not funds.ok:
            raise InsufficientFunds(funds.balance, funds.amount)

        # 5. Ride record
        ride = await self.lifecycle.create(
            rider_id,
            pickup,
            dropoff,
            vehicle_class,
            quote,
            route,
            pickup_address=pickup_address,
            dropoff_address=dropoff_address,
        )

        # 6. Analytics
        fire_and_forget(
            self._log_request(rider_id, pickup, dropoff, trip_count, parallel_ms),
            f"request-log-{ride.id}",
        )

        # 7. Offer
        offer = Offer(
            ride_id=ride.id,
            candidates=[c.driver_id for c in candidates],
            expires_at=datetime.now(timezone.utc)
            + timedelta(seconds=self.policy.offer_ttl_seconds),
        )
        fire_and_forget(self._broadcast(ride, offer), f"offer-broadcast-{ride.id}")

        total_ms = (time.perf_counter() - started) * 1000
        return BookingResult(
            ride_id=ride.id,
            estimated_fare=quote.total_fare,
            surge_multiplier=quote.surge_multiplier,
            distance_km=route.distance_km,
            duration_min=route.duration_min,
            candidate_count=len(candidates),
            degraded=route.degraded,
            timings={
                "parallel_read_ms": round(parallel_ms, 2),
                "total_ms": round(total_ms, 2),
            },
        )

    # ── reads ─────────────────────────────────────────────────────────

    async def _bounded(self, aw: Awaitable[T]) -> T:
        return await asyncio.wait_for(aw, timeout=self.policy.read_timeout)

    @staticmethod
    def _critical(result: Any, what: str) -> Any:
        if isinstance(result, RideHailError) and not isinstance(
            result, UpstreamUnavailable
        ):
            raise result
        if isinstance(result, Exception):
            logger.error("Booking aborted: %s read failed", what, exc_info=result)
            raise UpstreamUnavailable(f"Could not read {what}") from result
        return result

    async def _read_balance(self, rider_id: int) -> Decimal:
        async with read_only(self.sessions) as session:
            balance = await RiderRepository(session).get_balance(rider_id)
        if balance is None:
            raise NotFound(f"Rider {rider_id} not found")
        return balance

    async def _read_trip_count(self, rider_id: int) -> int:
        async with read_only(self.sessions) as session:
            return await RideRepository(session).count_completed_for_rider(rider_id)

    async def _read_pricing(self, vehicle_class: VehicleClass) -> PricingRates:
        async with read_only(self.sessions) as session:
            row = await PricingRepository(session).get(vehicle_class)
        if row is None:
            logger.warning(
                "No pricing row for %s, using default rates", vehicle_class.value
            )
            return self.policy.default_rates
        return PricingRates.of(row.base_fare, row.per_km_rate, row.per_minute_rate)

    async def _route(self, pickup: Location, dropoff: Location) -> RouteEstimate:
        try:
            return await asyncio.wait_for(
                self.router.route(pickup, dropoff), timeout=self.policy.route_timeout
            )
        except Exception:
            logger.warning(
                "Route oracle unavailable, using fallback %.1f km / %.1f min",
                self.policy.fallback_distance_km,
                self.policy.fallback_duration_min,
                exc_info=True,
            )
            return RouteEstimate(
                distance_km=self.policy.fallback_distance_km,
                duration_min=self.policy.fallback_duration_min,
                degraded=True,
            )

    # ── detached work ─────────────────────────────────────────────────

    async def _log_request(
        self,
        rider_id: int,
        pickup: Location,
        dropoff: Location,
        trip_count: int,
        parallel_ms: float,
    ) -> None:
        async with transaction(self.sessions) as session:
            await RequestLogRepository(session).add(
                rider_id=rider_id,
                request_type="ride_booking",
                request_data={
                    "pickup": [pickup.latitude, pickup.longitude],
                    "dropoff": [dropoff.latitude, dropoff.longitude],
                    "completed_trips": trip_count,
                },
                response_time_ms=parallel_ms,
            )

    async def _broadcast(self, ride: RideModel, offer: Offer) -> None:
        await self.offers.put(offer)
        live = await self.geo.still_dispatchable(offer.candidates)
        payload = {
            "event": "ride_offer",
            **ride_payload(ride),
            "expires_at": offer.expires_at.isoformat(),
        }
        results = await asyncio.gather(
            *(self.notifier.publish(driver_topic(d), payload) for d in live),
            return_exceptions=True,
        )
        for driver_id, result in zip(live, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Offer for ride %s not delivered to driver %s: %s",
                    ride.id, driver_id, result,
                )
        logger.info(
            "Ride %s offered to %d/%d candidates", ride.id, len(live), len(offer.candidates)
        )
