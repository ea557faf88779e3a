"""
Ride Lifecycle State Machine
============================

States: ``requested -> accepted -> picked_up -> completed``; ``cancelled``
is reachable from ``requested`` and ``accepted``.  ``completed`` and
``cancelled`` are terminal.

Every transition is one transaction built around a compare-and-set on the
ride row (``UPDATE rides ... WHERE id = :id AND status IN (...)``).  Side
effects on ``drivers.is_available`` and the wallet run in the same
transaction, so a transition and its effects commit together or not at all.
When the compare-and-set loses, the ride is re-read only to pick the right
error; nothing is written.

Accept race
-----------
N drivers may call ``accept`` concurrently.  The store serialises the
conditional updates; the first to commit flips the ride to ``accepted`` and
every later one matches zero rows and receives ``AlreadyAccepted``.  Arrival
order at the API is irrelevant.

Events are published after commit as detached tasks.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridehail.domain.distance import haversine_km
from ridehail.domain.entities import (
    Identity,
    Location,
    Ride,
    RouteEstimate,
    parse_vehicle_class,
)
from ridehail.domain.enums import LedgerReason, RideStatus, VehicleClass, sources_for
from ridehail.domain.errors import (
    AlreadyAccepted,
    InsufficientFunds,
    InvalidInput,
    InvalidTransition,
    NotFound,
    Unauthorized,
)
from ridehail.domain.pricing import FareQuote
from ridehail.infrastructure.models import DriverModel, RideModel
from ridehail.infrastructure.notifier import Notifier, driver_topic, rider_topic
from ridehail.infrastructure.offers import OfferStore
from ridehail.infrastructure.repositories import DriverRepository, RideRepository
from ridehail.infrastructure.tasks import fire_and_forget
from .ledger import Ledger
from .unit_of_work import read_only, transaction

logger = logging.getLogger(__name__)

CANCEL_ATTEMPTS = 3
MAX_PAGE_SIZE = 100


def ride_payload(ride: RideModel) -> dict[str, Any]:
    return {
        "ride_id": ride.id,
        "rider_id": ride.rider_id,
        "driver_id": ride.driver_id,
        "status": RideStatus(ride.status).value,
        "pickup": {"lat": ride.pickup_lat, "lng": ride.pickup_lng},
        "dropoff": {"lat": ride.dropoff_lat, "lng": ride.dropoff_lng},
        "fare": str(ride.total_fare),
        "distance_km": ride.distance_km,
        "duration_min": ride.duration_min,
    }


class RideLifecycle:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: Ledger,
        notifier: Notifier,
        offers: OfferStore,
        *,
        pickup_radius_km: float = 10.0,
    ):
        self.sessions = session_factory
        self.ledger = ledger
        self.notifier = notifier
        self.offers = offers
        self.pickup_radius_km = pickup_radius_km

    # ── create ────────────────────────────────────────────────────────

    async def create(
        self,
        rider_id: int,
        pickup: Location,
        dropoff: Location,
        vehicle_class: VehicleClass | str,
        quote: FareQuote,
        route: RouteEstimate,
        pickup_address: Optional[str] = None,
        dropoff_address: Optional[str] = None,
    ) -> RideModel:
        vehicle_class = parse_vehicle_class(vehicle_class)
        # Location validates ranges; re-check in case a caller bypassed it
        for point in (pickup, dropoff):
            Location(point.latitude, point.longitude)

        async with transaction(self.sessions) as session:
            ride = await RideRepository(session).create_ride(
                rider_id=rider_id,
                pickup_lat=pickup.latitude,
                pickup_lng=pickup.longitude,
                dropoff_lat=dropoff.latitude,
                dropoff_lng=dropoff.longitude,
                pickup_address=pickup_address,
                dropoff_address=dropoff_address,
                vehicle_class=vehicle_class,
                distance_km=route.distance_km,
                duration_min=route.duration_min,
                base_fare=quote.base_fare,
                surge_multiplier=quote.surge_multiplier,
                total_fare=quote.total_fare,
                route_degraded=route.degraded,
            )
        logger.info(
            "Ride %s requested by rider %s (fare=%s)", ride.id, rider_id, quote.total_fare
        )
        return ride

    # ── accept ────────────────────────────────────────────────────────

    async def accept(self, ride_id: int, driver_id: int) -> RideModel:
        """Assign *driver_id* to a requested ride.

        The stored offer narrows who may accept but can be missing (expired,
        not yet written, Redis down).  The driver must always match
        the ride's vehicle class, and without an offer must also be within
        ``pickup_radius_km`` of the pickup.
        """
        offer = await self.offers.get(ride_id)
        if offer is not None and not offer.includes(driver_id):
            raise Unauthorized(
                "Ride was not offered to this driver",
                {"ride_id": ride_id, "driver_id": driver_id},
            )

        async with transaction(self.sessions) as session:
            rides = RideRepository(session)
            drivers = DriverRepository(session)

            driver = await drivers.get_by_id(driver_id)
            if driver is None:
                raise NotFound(f"Driver {driver_id} not found")
            if not driver.is_online:
                raise InvalidTransition("Driver is offline", {"driver_id": driver_id})
            await self._check_eligible(rides, ride_id, driver, offer is not None)

            won = await rides.compare_and_set(
                ride_id,
                {RideStatus.REQUESTED},
                {"status": RideStatus.ACCEPTED, "driver_id": driver_id},
            )
            if not won:
                ride = await rides.reload(ride_id)
                if ride is None:
                    raise NotFound(f"Ride {ride_id} not found")
                if ride.driver_id is not None:
                    raise AlreadyAccepted(ride_id)
                raise self._illegal(ride, RideStatus.ACCEPTED)

            # Rolls back the ride update too when the driver is already busy
            if not await drivers.claim(driver_id):
                raise InvalidTransition(
                    "Driver already has an active ride", {"driver_id": driver_id}
                )
            ride = await rides.reload(ride_id)

        logger.info("Ride %s accepted by driver %s", ride_id, driver_id)
        fire_and_forget(self.offers.discard(ride_id), f"offer-discard-{ride_id}")
        payload = ride_payload(ride)
        self._emit(rider_topic(ride.rider_id), "ride_accepted", payload)
        if offer is not None:
            for other in offer.candidates:
                if other != driver_id:
                    self._emit(driver_topic(other), "ride_unavailable", {"ride_id": ride_id})
        return ride

    # ── picked up ─────────────────────────────────────────────────────

    async def mark_picked_up(self, ride_id: int, driver_id: int) -> RideModel:
        async with transaction(self.sessions) as session:
            rides = RideRepository(session)
            won = await rides.compare_and_set(
                ride_id,
                {RideStatus.ACCEPTED},
                {"status": RideStatus.PICKED_UP},
                driver_id=driver_id,
            )
            if not won:
                raise await self._rejection(rides, ride_id, driver_id, RideStatus.PICKED_UP)
            ride = await rides.reload(ride_id)

        logger.info("Ride %s picked up by driver %s", ride_id, driver_id)
        self._emit(rider_topic(ride.rider_id), "ride_picked_up", ride_payload(ride))
        return ride

    # ── complete ──────────────────────────────────────────────────────

    async def complete(self, ride_id: int, driver_id: int) -> RideModel:
        """Finish the trip, free the driver and debit the fare.

        If the wallet can no longer cover the fare the ride still completes
        (the trip happened), ``ledger_discrepancy`` is set on the row and
        ``InsufficientFunds`` is raised after commit.
        """
        shortfall: Optional[InsufficientFunds] = None
        async with transaction(self.sessions) as session:
            rides = RideRepository(session)
            won = await rides.compare_and_set(
                ride_id,
                {RideStatus.PICKED_UP},
                {"status": RideStatus.COMPLETED},
                driver_id=driver_id,
            )
            if not won:
                raise await self._rejection(rides, ride_id, driver_id, RideStatus.COMPLETED)

            ride = await rides.reload(ride_id)
            await DriverRepository(session).release(driver_id)
            try:
                await self.ledger.debit(
                    session,
                    ride.rider_id,
                    ride.total_fare,
                    reason=LedgerReason.RIDE_FARE,
                    ride_id=ride_id,
                )
            except InsufficientFunds as exc:
                ride.ledger_discrepancy = True
                shortfall = exc
                logger.warning(
                    "Ride %s completed but fare %s not covered (balance %s)",
                    ride_id, exc.amount, exc.balance,
                )

        logger.info("Ride %s completed by driver %s", ride_id, driver_id)
        self._emit(
            rider_topic(ride.rider_id),
            "ride_completed",
            {**ride_payload(ride), "total_fare": str(ride.total_fare)},
        )
        if shortfall is not None:
            raise InsufficientFunds(
                shortfall.balance,
                shortfall.amount,
                "Ride completed but the wallet could not cover the fare",
                ride_id=ride_id,
                ledger_discrepancy=True,
            )
        return ride

    # ── cancel ────────────────────────────────────────────────────────

    async def cancel(
        self,
        ride_id: int,
        actor: Optional[Identity],
        reason: str = "",
    ) -> RideModel:
        """Cancel from ``requested`` or ``accepted``.

        *actor* ``None`` is the system (offer expiry).  The compare-and-set
        pins both the status and the driver that were read, so a driver
        accepting concurrently is either released here or makes this call
        retry against the new state.
        """
        cancellable = sources_for(RideStatus.CANCELLED)
        for _ in range(CANCEL_ATTEMPTS):
            async with transaction(self.sessions) as session:
                rides = RideRepository(session)
                ride = await rides.reload(ride_id)
                if ride is None:
                    raise NotFound(f"Ride {ride_id} not found")
                self._authorize(ride, actor)
                status = RideStatus(ride.status)
                if status not in cancellable:
                    raise self._illegal(ride, RideStatus.CANCELLED)

                assigned = ride.driver_id
                won = await rides.compare_and_set(
                    ride_id,
                    {status},
                    {
                        "status": RideStatus.CANCELLED,
                        "cancel_reason": reason or None,
                        "cancelled_by": actor.actor_id if actor else None,
                    },
                    driver_id=assigned,
                )
                if not won:
                    continue
                if assigned is not None:
                    await DriverRepository(session).release(assigned)
                ride = await rides.reload(ride_id)
            break
        else:
            raise InvalidTransition(
                "Ride changed state while cancelling, retry", {"ride_id": ride_id}
            )

        logger.info("Ride %s cancelled (reason=%s)", ride_id, reason or "-")
        offer = None
        if assigned is None:
            offer = await self.offers.get(ride_id)
        fire_and_forget(self.offers.discard(ride_id), f"offer-discard-{ride_id}")

        payload = {**ride_payload(ride), "reason": reason}
        self._emit(rider_topic(ride.rider_id), "ride_cancelled", payload)
        if assigned is not None:
            self._emit(driver_topic(assigned), "ride_cancelled", payload)
        elif offer is not None:
            for candidate in offer.candidates:
                self._emit(driver_topic(candidate), "ride_unavailable", {"ride_id": ride_id})
        return ride

    # ── reads ─────────────────────────────────────────────────────────

    async def get_ride(self, ride_id: int, viewer: Identity) -> RideModel:
        async with read_only(self.sessions) as session:
            ride = await RideRepository(session).get_by_id(ride_id)
        if ride is None:
            raise NotFound(f"Ride {ride_id} not found")
        self._authorize(ride, viewer)
        return ride

    async def history(
        self,
        viewer: Identity,
        *,
        limit: int = 20,
        offset: int = 0,
        status: Optional[RideStatus | str] = None,
    ) -> tuple[list[RideModel], int]:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidInput(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise InvalidInput("offset must be non-negative")
        if status is not None:
            try:
                status = RideStatus(status)
            except ValueError:
                raise InvalidInput(f"Unknown ride status: {status}") from None

        owner = {"rider_id": viewer.actor_id} if viewer.is_rider else {"driver_id": viewer.actor_id}
        async with read_only(self.sessions) as session:
            return await RideRepository(session).history(
                **owner, status=status, limit=limit, offset=offset
            )

    # ── helpers ───────────────────────────────────────────────────────

    async def _check_eligible(
        self,
        rides: RideRepository,
        ride_id: int,
        driver: DriverModel,
        offered: bool,
    ) -> None:
        ride = await rides.get_by_id(ride_id)
        if ride is None:
            raise NotFound(f"Ride {ride_id} not found")
        if driver.vehicle_class != ride.vehicle_class:
            raise Unauthorized(
                "Driver vehicle class does not match the ride",
                {"ride_id": ride_id, "driver_id": driver.id},
            )
        if offered:
            return
        if driver.current_lat is None or driver.current_lng is None:
            raise Unauthorized(
                "Driver has no reported position", {"driver_id": driver.id}
            )
        distance = haversine_km(
            ride.pickup_lat, ride.pickup_lng, driver.current_lat, driver.current_lng
        )
        if distance > self.pickup_radius_km:
            raise Unauthorized(
                "Driver is too far from the pickup",
                {"ride_id": ride_id, "driver_id": driver.id, "distance_km": round(distance, 2)},
            )

    @staticmethod
    def _authorize(ride: RideModel, actor: Optional[Identity]) -> None:
        if actor is None:
            return
        owner = ride.rider_id if actor.is_rider else ride.driver_id
        if owner != actor.actor_id:
            raise Unauthorized(
                "Ride does not belong to this account", {"ride_id": ride.id}
            )

    @staticmethod
    def _illegal(ride: RideModel, target: RideStatus) -> InvalidTransition:
        entity = Ride(id=ride.id, status=RideStatus(ride.status))
        try:
            entity.transition_to(target)
        except InvalidTransition as exc:
            return exc
        return InvalidTransition(
            f"Ride {ride.id} changed state concurrently", {"ride_id": ride.id}
        )

    async def _rejection(
        self,
        rides: RideRepository,
        ride_id: int,
        driver_id: int,
        target: RideStatus,
    ) -> Exception:
        ride = await rides.reload(ride_id)
        if ride is None:
            return NotFound(f"Ride {ride_id} not found")
        if ride.driver_id != driver_id:
            return InvalidTransition(
                "Ride is not assigned to this driver",
                {"ride_id": ride_id, "status": RideStatus(ride.status).value},
            )
        return self._illegal(ride, target)

    def _emit(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        fire_and_forget(
            self.notifier.publish(topic, {"event": event, **payload}),
            f"publish-{event}-{topic}",
        )
