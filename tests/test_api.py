"""
Integration tests for the REST API endpoints.

The app is built with the test service graph (SQLite store, in-memory
notifier / offers / router) and without the background expiry worker.
Identity travels in the ``X-Actor-Id`` / ``X-Actor-Role`` headers.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ridehail.api.app import create_app
from ridehail.api.middleware import limiter
from ridehail.infrastructure import tasks

BOOKING = {
    "pickup_lat": 12.9756,
    "pickup_lng": 77.6050,
    "dropoff_lat": 12.9352,
    "dropoff_lng": 77.6245,
    "vehicle_class": "sedan",
    "pickup_address": "MG Road",
}


def as_rider(rider_id: int) -> dict[str, str]:
    return {"X-Actor-Id": str(rider_id), "X-Actor-Role": "rider"}


def as_driver(driver_id: int) -> dict[str, str]:
    return {"X-Actor-Id": str(driver_id), "X-Actor-Role": "driver"}


# ── Fixture ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(services):
    limiter.reset()
    app = create_app(services=services, run_worker=False)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health_check(client):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_book_and_drive_ride(client, data):
    rider = await data.rider("500.00")
    driver = await data.driver()

    resp = await client.post("/api/v1/rides", json=BOOKING, headers=as_rider(rider.id))
    assert resp.status_code == 201
    booking = resp.json()
    assert booking["estimated_fare"] == "210.00"
    assert booking["candidate_count"] == 1
    assert booking["degraded"] is False
    ride_id = booking["ride_id"]
    await tasks.drain()

    resp = await client.post(f"/api/v1/rides/{ride_id}/accept", headers=as_driver(driver.id))
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"
    assert resp.json()["driver_id"] == driver.id

    resp = await client.get("/api/v1/drivers/me/rides/active", headers=as_driver(driver.id))
    assert [r["id"] for r in resp.json()] == [ride_id]

    resp = await client.post(f"/api/v1/rides/{ride_id}/pickup", headers=as_driver(driver.id))
    assert resp.json()["status"] == "picked_up"

    resp = await client.post(f"/api/v1/rides/{ride_id}/complete", headers=as_driver(driver.id))
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"

    resp = await client.get("/api/v1/riders/me", headers=as_rider(rider.id))
    profile = resp.json()
    assert profile["wallet_balance"] == "290.00"
    assert profile["completed_trips"] == 1
    assert profile["recent_rides"][0]["id"] == ride_id


@pytest.mark.asyncio
async def test_second_accept_gets_conflict(client, data):
    rider = await data.rider()
    first = await data.driver()
    second = await data.driver()
    ride_id = (
        await client.post("/api/v1/rides", json=BOOKING, headers=as_rider(rider.id))
    ).json()["ride_id"]
    await tasks.drain()

    await client.post(f"/api/v1/rides/{ride_id}/accept", headers=as_driver(first.id))
    resp = await client.post(f"/api/v1/rides/{ride_id}/accept", headers=as_driver(second.id))

    assert resp.status_code == 409
    assert resp.json()["error"] == "AlreadyAccepted"
    assert resp.json()["message"] == "Ride no longer available"


@pytest.mark.asyncio
async def test_insufficient_funds(client, data):
    rider = await data.rider("100.00")
    await data.driver()

    resp = await client.post("/api/v1/rides", json=BOOKING, headers=as_rider(rider.id))

    assert resp.status_code == 402
    body = resp.json()
    assert body["error"] == "InsufficientFunds"
    assert body["detail"]["shortfall"] == "110.00"


@pytest.mark.asyncio
async def test_no_drivers(client, data):
    rider = await data.rider()
    resp = await client.post("/api/v1/rides", json=BOOKING, headers=as_rider(rider.id))
    assert resp.status_code == 409
    assert resp.json()["error"] == "NoDriversAvailable"


@pytest.mark.asyncio
async def test_invalid_coordinates(client, data):
    rider = await data.rider()
    resp = await client.post(
        "/api/v1/rides", json={**BOOKING, "pickup_lat": 123}, headers=as_rider(rider.id)
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "InvalidInput"


@pytest.mark.asyncio
async def test_missing_identity(client):
    resp = await client.post("/api/v1/rides", json=BOOKING)
    assert resp.status_code == 403
    assert resp.json()["error"] == "Unauthorized"


@pytest.mark.asyncio
async def test_driver_cannot_book(client, data):
    driver = await data.driver()
    resp = await client.post("/api/v1/rides", json=BOOKING, headers=as_driver(driver.id))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_get_ride_not_found(client, data):
    rider = await data.rider()
    resp = await client.get("/api/v1/rides/999", headers=as_rider(rider.id))
    assert resp.status_code == 404
    assert resp.json()["error"] == "NotFound"


@pytest.mark.asyncio
async def test_cancel_and_history(client, data):
    rider = await data.rider()
    await data.driver()
    ride_id = (
        await client.post("/api/v1/rides", json=BOOKING, headers=as_rider(rider.id))
    ).json()["ride_id"]
    await tasks.drain()

    resp = await client.post(
        f"/api/v1/rides/{ride_id}/cancel",
        json={"reason": "changed plans"},
        headers=as_rider(rider.id),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["cancel_reason"] == "changed plans"

    resp = await client.post(f"/api/v1/rides/{ride_id}/cancel", headers=as_rider(rider.id))
    assert resp.status_code == 409
    assert resp.json()["error"] == "InvalidTransition"

    resp = await client.get(
        "/api/v1/rides", params={"status": "cancelled"}, headers=as_rider(rider.id)
    )
    history = resp.json()
    assert history["total"] == 1
    assert history["items"][0]["id"] == ride_id


@pytest.mark.asyncio
async def test_driver_location_and_toggle(client, data):
    driver = await data.driver(13.5, 77.6)

    resp = await client.post(
        "/api/v1/drivers/me/location",
        json={"lat": 12.9760, "lng": 77.6055},
        headers=as_driver(driver.id),
    )
    assert resp.json() == {"applied": True}

    resp = await client.post(
        "/api/v1/drivers/me/availability/toggle", headers=as_driver(driver.id)
    )
    assert resp.json() == {"driver_id": driver.id, "is_online": False, "is_available": True}


@pytest.mark.asyncio
async def test_wallet_top_up(client, data):
    rider = await data.rider("10.00")

    resp = await client.post(
        "/api/v1/riders/me/wallet/top-up", json={"amount": "15.25"}, headers=as_rider(rider.id)
    )
    assert resp.status_code == 200
    assert resp.json()["balance"] == "25.25"

    resp = await client.post(
        "/api/v1/riders/me/wallet/top-up", json={"amount": "-1"}, headers=as_rider(rider.id)
    )
    assert resp.status_code == 422
