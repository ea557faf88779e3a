"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 3 pricing rows (compact, sedan, suv)
  - 8 sample riders with wallet balances
  - 12 sample drivers spread around central Bangalore
  - 4 sample rides (mix of requested, completed, cancelled)
"""

import asyncio
from decimal import Decimal

from sqlalchemy import func, select

from ridehail.config import settings
from ridehail.domain.cells import driver_cell
from ridehail.domain.enums import LedgerReason, RideStatus, VehicleClass
from ridehail.infrastructure.database import async_session_factory, engine
from ridehail.infrastructure.models import (
    DriverModel,
    LedgerEntryModel,
    PricingModel,
    RideModel,
    RiderModel,
)

# MG Road, Bangalore (approx)
CENTER_LAT, CENTER_LNG = 12.9756, 77.6050


PRICING = [
    {"vehicle_class": VehicleClass.COMPACT, "base": "40", "per_km": "10", "per_min": "1.5"},
    {"vehicle_class": VehicleClass.SEDAN, "base": "50", "per_km": "12", "per_min": "2"},
    {"vehicle_class": VehicleClass.SUV, "base": "80", "per_km": "18", "per_min": "3"},
]

RIDERS = [
    {"name": "Aarav Sharma", "email": "aarav@example.com", "balance": "1500.00"},
    {"name": "Priya Patel", "email": "priya@example.com", "balance": "800.00"},
    {"name": "Rohan Mehta", "email": "rohan@example.com", "balance": "100.00"},
    {"name": "Sneha Gupta", "email": "sneha@example.com", "balance": "2500.00"},
    {"name": "Vikram Singh", "email": "vikram@example.com", "balance": "0.00"},
    {"name": "Ananya Reddy", "email": "ananya@example.com", "balance": "450.00"},
    {"name": "Karan Joshi", "email": "karan@example.com", "balance": "1200.00"},
    {"name": "Meera Nair", "email": "meera@example.com", "balance": "300.00"},
]

DRIVERS = [
    {"name": "Ravi Kumar", "vehicle_class": VehicleClass.SEDAN, "lat": 12.9760, "lng": 77.6055},
    {"name": "Suresh Babu", "vehicle_class": VehicleClass.SEDAN, "lat": 12.9790, "lng": 77.6100},
    {"name": "Manjunath H", "vehicle_class": VehicleClass.SEDAN, "lat": 12.9700, "lng": 77.5990},
    {"name": "Imran Khan", "vehicle_class": VehicleClass.COMPACT, "lat": 12.9745, "lng": 77.6070},
    {"name": "Deepa Rao", "vehicle_class": VehicleClass.COMPACT, "lat": 12.9810, "lng": 77.6020},
    {"name": "Joseph D'Souza", "vehicle_class": VehicleClass.COMPACT, "lat": 12.9680, "lng": 77.6150},
    {"name": "Lakshmi Devi", "vehicle_class": VehicleClass.SUV, "lat": 12.9770, "lng": 77.6000},
    {"name": "Arjun Shetty", "vehicle_class": VehicleClass.SUV, "lat": 12.9900, "lng": 77.6200},
    # Further out: only reachable with a wider radius
    {"name": "Naveen Gowda", "vehicle_class": VehicleClass.SEDAN, "lat": 13.0350, "lng": 77.5970},
    {"name": "Farah Ali", "vehicle_class": VehicleClass.COMPACT, "lat": 12.9100, "lng": 77.6400},
    # Off duty
    {"name": "Prakash M", "vehicle_class": VehicleClass.SEDAN, "lat": 12.9765, "lng": 77.6045, "online": False},
    {"name": "Shalini V", "vehicle_class": VehicleClass.SUV, "lat": 12.9750, "lng": 77.6060, "online": False},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(RiderModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Pricing ───────────────────────────────────────────────────
        for p in PRICING:
            session.add(
                PricingModel(
                    vehicle_class=p["vehicle_class"],
                    base_fare=Decimal(p["base"]),
                    per_km_rate=Decimal(p["per_km"]),
                    per_minute_rate=Decimal(p["per_min"]),
                )
            )
        print(f"  Created {len(PRICING)} pricing rows")

        # ── Riders ────────────────────────────────────────────────────
        rider_models = []
        for r in RIDERS:
            m = RiderModel(
                name=r["name"], email=r["email"], wallet_balance=Decimal(r["balance"])
            )
            session.add(m)
            rider_models.append(m)
        await session.flush()
        print(f"  Created {len(rider_models)} riders")

        # ── Drivers ───────────────────────────────────────────────────
        driver_models = []
        for d in DRIVERS:
            m = DriverModel(
                name=d["name"],
                vehicle_class=d["vehicle_class"],
                current_lat=d["lat"],
                current_lng=d["lng"],
                h3_cell=driver_cell(d["lat"], d["lng"], settings.h3_resolution),
                location_updated_at=func.now(),
                is_available=True,
                is_online=d.get("online", True),
            )
            session.add(m)
            driver_models.append(m)
        await session.flush()
        print(f"  Created {len(driver_models)} drivers")

        # ── Rides ─────────────────────────────────────────────────────
        rides_data = [
            {
                "rider": rider_models[0], "driver": driver_models[0],
                "pickup": (12.9756, 77.6050), "dropoff": (12.9352, 77.6245),  # Koramangala
                "class": VehicleClass.SEDAN, "status": RideStatus.COMPLETED,
                "km": 6.1, "min": 18.0, "fare": "159.20",
            },
            {
                "rider": rider_models[3], "driver": None,
                "pickup": (12.9716, 77.5946), "dropoff": (12.9784, 77.6408),  # Indiranagar
                "class": VehicleClass.COMPACT, "status": RideStatus.CANCELLED,
                "km": 5.3, "min": 16.0, "fare": "117.00",
            },
            {
                "rider": rider_models[1], "driver": None,
                "pickup": (12.9760, 77.6040), "dropoff": (13.0358, 77.5970),  # Hebbal
                "class": VehicleClass.SEDAN, "status": RideStatus.REQUESTED,
                "km": 8.4, "min": 24.0, "fare": "198.80",
            },
            {
                "rider": rider_models[6], "driver": None,
                "pickup": (12.9770, 77.6010), "dropoff": (12.9250, 77.5938),  # Jayanagar
                "class": VehicleClass.SUV, "status": RideStatus.REQUESTED,
                "km": 7.0, "min": 22.0, "fare": "272.00",
            },
        ]

        for r in rides_data:
            ride = RideModel(
                rider_id=r["rider"].id,
                driver_id=r["driver"].id if r["driver"] else None,
                pickup_lat=r["pickup"][0],
                pickup_lng=r["pickup"][1],
                dropoff_lat=r["dropoff"][0],
                dropoff_lng=r["dropoff"][1],
                vehicle_class=r["class"],
                distance_km=r["km"],
                duration_min=r["min"],
                base_fare=Decimal(r["fare"]),
                surge_multiplier=Decimal("1.00"),
                total_fare=Decimal(r["fare"]),
                status=r["status"],
                cancel_reason="changed plans" if r["status"] is RideStatus.CANCELLED else None,
            )
            session.add(ride)
            await session.flush()
            if r["status"] is RideStatus.COMPLETED:
                rider = r["rider"]
                rider.wallet_balance -= ride.total_fare
                session.add(
                    LedgerEntryModel(
                        rider_id=rider.id,
                        ride_id=ride.id,
                        amount=-ride.total_fare,
                        balance_after=rider.wallet_balance,
                        reason=LedgerReason.RIDE_FARE,
                    )
                )
        await session.flush()
        print(f"  Created {len(rides_data)} rides")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
