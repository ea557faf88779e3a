"""
Ride lifecycle integration tests.

Rides are booked through the dispatch coordinator, then driven through
accept / pickup / complete / cancel against a real (SQLite) store.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from ridehail.domain.entities import Identity
from ridehail.domain.enums import ActorRole, LedgerReason, RideStatus, VehicleClass
from ridehail.domain.errors import (
    InsufficientFunds,
    InvalidInput,
    InvalidTransition,
    NotFound,
    Unauthorized,
)
from ridehail.infrastructure import tasks
from ridehail.infrastructure.models import DriverModel, RideModel
from ridehail.infrastructure.notifier import driver_topic, rider_topic
from ridehail.infrastructure.repositories import LedgerRepository
from ridehail.services.unit_of_work import transaction
from tests.conftest import DESTINATION, ORIGIN


def rider_of(rider) -> Identity:
    return Identity(rider.id, ActorRole.RIDER)


def driver_of(driver) -> Identity:
    return Identity(driver.id, ActorRole.DRIVER)


async def book(services, data, balance="1000.00", drivers=1):
    """Rider plus *drivers* nearby sedans and one booked ride (fare 210.00)."""
    rider = await data.rider(balance)
    fleet = [
        await data.driver(ORIGIN.latitude + 0.002 * (i + 1), ORIGIN.longitude)
        for i in range(drivers)
    ]
    result = await services.dispatch.book_ride(rider.id, ORIGIN, DESTINATION, "sedan")
    await tasks.drain()
    return rider, fleet, result.ride_id


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_full_lifecycle_charges_once(self, services, data, notifier):
        rider, (driver,), ride_id = await book(services, data)

        ride = await services.lifecycle.accept(ride_id, driver.id)
        assert ride.status == RideStatus.ACCEPTED
        assert ride.driver_id == driver.id
        assert not (await data.get(DriverModel, driver.id)).is_available

        ride = await services.lifecycle.mark_picked_up(ride_id, driver.id)
        assert ride.status == RideStatus.PICKED_UP

        ride = await services.lifecycle.complete(ride_id, driver.id)
        assert ride.status == RideStatus.COMPLETED
        assert not ride.ledger_discrepancy
        assert (await data.get(DriverModel, driver.id)).is_available
        assert await services.ledger.balance(rider.id) == Decimal("790.00")

        await tasks.drain()
        assert notifier.events(rider_topic(rider.id)) == [
            "ride_accepted",
            "ride_picked_up",
            "ride_completed",
        ]

    @pytest.mark.asyncio
    async def test_accept_tells_other_candidates(self, services, data, notifier, offers):
        _, (winner, other), ride_id = await book(services, data, drivers=2)
        assert offers.offers[ride_id].candidates == [winner.id, other.id]

        await services.lifecycle.accept(ride_id, winner.id)
        await tasks.drain()

        assert "ride_unavailable" in notifier.events(driver_topic(other.id))
        assert "ride_unavailable" not in notifier.events(driver_topic(winner.id))
        assert ride_id not in offers.offers


class TestAcceptRejections:
    @pytest.mark.asyncio
    async def test_driver_not_in_offer(self, services, data):
        _, _, ride_id = await book(services, data)
        outsider = await data.driver(13.5, 77.6)

        with pytest.raises(Unauthorized):
            await services.lifecycle.accept(ride_id, outsider.id)

    @pytest.mark.asyncio
    async def test_other_class_rejected_without_offer(self, services, data, offers):
        _, _, ride_id = await book(services, data)
        await offers.discard(ride_id)
        suv = await data.driver(vehicle_class=VehicleClass.SUV)

        with pytest.raises(Unauthorized, match="vehicle class"):
            await services.lifecycle.accept(ride_id, suv.id)

        row = await data.get(RideModel, ride_id)
        assert row.status == RideStatus.REQUESTED
        assert row.driver_id is None

    @pytest.mark.asyncio
    async def test_distant_driver_rejected_without_offer(self, services, data, offers):
        _, _, ride_id = await book(services, data)
        await offers.discard(ride_id)
        paris = await data.driver(48.85, 2.35)

        with pytest.raises(Unauthorized, match="too far"):
            await services.lifecycle.accept(ride_id, paris.id)
        assert (await data.get(RideModel, ride_id)).status == RideStatus.REQUESTED
        assert (await data.get(DriverModel, paris.id)).is_available

    @pytest.mark.asyncio
    async def test_nearby_driver_accepts_without_offer(self, services, data, offers):
        _, (driver,), ride_id = await book(services, data)
        await offers.discard(ride_id)

        ride = await services.lifecycle.accept(ride_id, driver.id)

        assert ride.status == RideStatus.ACCEPTED
        assert ride.driver_id == driver.id

    @pytest.mark.asyncio
    async def test_offline_driver(self, services, data):
        _, (driver,), ride_id = await book(services, data)
        await services.drivers.toggle_availability(driver.id)

        with pytest.raises(InvalidTransition):
            await services.lifecycle.accept(ride_id, driver.id)
        assert (await data.get(RideModel, ride_id)).status == RideStatus.REQUESTED

    @pytest.mark.asyncio
    async def test_busy_driver_rolls_back_ride(self, services, data):
        _, (driver,), first = await book(services, data)
        second = (
            await services.dispatch.book_ride(
                (await data.rider()).id, ORIGIN, DESTINATION, "sedan"
            )
        ).ride_id
        await tasks.drain()
        await services.lifecycle.accept(first, driver.id)

        with pytest.raises(InvalidTransition):
            await services.lifecycle.accept(second, driver.id)

        row = await data.get(RideModel, second)
        assert row.status == RideStatus.REQUESTED
        assert row.driver_id is None

    @pytest.mark.asyncio
    async def test_unknown_ride(self, services, data):
        driver = await data.driver()
        with pytest.raises(NotFound):
            await services.lifecycle.accept(12345, driver.id)

    @pytest.mark.asyncio
    async def test_cancelled_ride_cannot_be_accepted(self, services, data):
        rider, (driver,), ride_id = await book(services, data)
        await services.lifecycle.cancel(ride_id, rider_of(rider))

        with pytest.raises(InvalidTransition):
            await services.lifecycle.accept(ride_id, driver.id)


class TestProgressRejections:
    @pytest.mark.asyncio
    async def test_pickup_before_accept(self, services, data):
        _, (driver,), ride_id = await book(services, data)
        with pytest.raises(InvalidTransition):
            await services.lifecycle.mark_picked_up(ride_id, driver.id)

    @pytest.mark.asyncio
    async def test_pickup_by_other_driver(self, services, data):
        _, (driver, other), ride_id = await book(services, data, drivers=2)
        await services.lifecycle.accept(ride_id, driver.id)

        with pytest.raises(InvalidTransition, match="not assigned"):
            await services.lifecycle.mark_picked_up(ride_id, other.id)
        assert (await data.get(RideModel, ride_id)).status == RideStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_complete_twice(self, services, data, session_factory):
        rider, (driver,), ride_id = await book(services, data)
        await services.lifecycle.accept(ride_id, driver.id)
        await services.lifecycle.mark_picked_up(ride_id, driver.id)
        await services.lifecycle.complete(ride_id, driver.id)

        with pytest.raises(InvalidTransition):
            await services.lifecycle.complete(ride_id, driver.id)

        assert await services.ledger.balance(rider.id) == Decimal("790.00")
        async with session_factory() as session:
            entries = await LedgerRepository(session).for_rider(rider.id)
        assert [e.reason for e in entries] == [LedgerReason.RIDE_FARE]

    @pytest.mark.asyncio
    async def test_wallet_drained_before_completion(self, services, data, session_factory):
        rider, (driver,), ride_id = await book(services, data, balance="300.00")
        await services.lifecycle.accept(ride_id, driver.id)
        await services.lifecycle.mark_picked_up(ride_id, driver.id)
        async with transaction(session_factory) as session:
            await services.ledger.debit(session, rider.id, Decimal("200.00"))

        with pytest.raises(InsufficientFunds) as info:
            await services.lifecycle.complete(ride_id, driver.id)

        assert info.value.shortfall == Decimal("110.00")
        assert info.value.detail["ledger_discrepancy"] is True
        row = await data.get(RideModel, ride_id)
        assert row.status == RideStatus.COMPLETED
        assert row.ledger_discrepancy
        assert (await data.get(DriverModel, driver.id)).is_available
        assert await services.ledger.balance(rider.id) == Decimal("100.00")


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_requested_notifies_candidates(self, services, data, notifier, offers):
        rider, (a, b), ride_id = await book(services, data, drivers=2)

        ride = await services.lifecycle.cancel(ride_id, rider_of(rider), "changed plans")
        await tasks.drain()

        assert ride.status == RideStatus.CANCELLED
        assert ride.cancel_reason == "changed plans"
        assert ride.cancelled_by == rider.id
        assert "ride_cancelled" in notifier.events(rider_topic(rider.id))
        for driver in (a, b):
            assert "ride_unavailable" in notifier.events(driver_topic(driver.id))
        assert ride_id not in offers.offers

    @pytest.mark.asyncio
    async def test_cancel_after_accept_frees_only_assigned_driver(self, services, data, notifier):
        rider, (driver, bystander), ride_id = await book(services, data, drivers=2)
        busy = await data.driver(is_available=False)
        await services.lifecycle.accept(ride_id, driver.id)

        await services.lifecycle.cancel(ride_id, rider_of(rider))
        await tasks.drain()

        assert (await data.get(DriverModel, driver.id)).is_available
        assert (await data.get(DriverModel, bystander.id)).is_available
        assert not (await data.get(DriverModel, busy.id)).is_available
        assert "ride_cancelled" in notifier.events(driver_topic(driver.id))

    @pytest.mark.asyncio
    async def test_assigned_driver_may_cancel(self, services, data):
        _, (driver,), ride_id = await book(services, data)
        await services.lifecycle.accept(ride_id, driver.id)

        ride = await services.lifecycle.cancel(ride_id, driver_of(driver))
        assert ride.status == RideStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_stranger_cannot_cancel(self, services, data):
        _, _, ride_id = await book(services, data)
        stranger = await data.rider()

        with pytest.raises(Unauthorized):
            await services.lifecycle.cancel(ride_id, rider_of(stranger))
        assert (await data.get(RideModel, ride_id)).status == RideStatus.REQUESTED

    @pytest.mark.asyncio
    async def test_cannot_cancel_in_progress(self, services, data):
        rider, (driver,), ride_id = await book(services, data)
        await services.lifecycle.accept(ride_id, driver.id)
        await services.lifecycle.mark_picked_up(ride_id, driver.id)

        with pytest.raises(InvalidTransition):
            await services.lifecycle.cancel(ride_id, rider_of(rider))


class TestReads:
    @pytest.mark.asyncio
    async def test_get_ride_checks_ownership(self, services, data):
        rider, (driver,), ride_id = await book(services, data)

        assert (await services.lifecycle.get_ride(ride_id, rider_of(rider))).id == ride_id
        with pytest.raises(Unauthorized):
            await services.lifecycle.get_ride(ride_id, driver_of(driver))
        with pytest.raises(NotFound):
            await services.lifecycle.get_ride(999, rider_of(rider))

    @pytest.mark.asyncio
    async def test_history_is_scoped_and_filtered(self, services, data):
        rider, (driver,), first = await book(services, data)
        second = (
            await services.dispatch.book_ride(rider.id, ORIGIN, DESTINATION, "sedan")
        ).ride_id
        await tasks.drain()
        await services.lifecycle.cancel(first, rider_of(rider))
        await data.rider()

        rides, total = await services.lifecycle.history(rider_of(rider))
        assert total == 2
        assert {r.id for r in rides} == {first, second}

        rides, total = await services.lifecycle.history(
            rider_of(rider), status=RideStatus.CANCELLED
        )
        assert [r.id for r in rides] == [first]

        rides, total = await services.lifecycle.history(rider_of(rider), limit=1, offset=1)
        assert total == 2 and len(rides) == 1

        assert await services.lifecycle.history(driver_of(driver)) == ([], 0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit, offset", [(0, 0), (101, 0), (10, -1)])
    async def test_history_paging_validated(self, services, data, limit, offset):
        rider = await data.rider()
        with pytest.raises(InvalidInput):
            await services.lifecycle.history(rider_of(rider), limit=limit, offset=offset)
