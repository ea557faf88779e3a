"""
SQLAlchemy ORM models.

Tables
------
* ``riders``          -- passengers with a wallet balance
* ``drivers``         -- vehicles, last position, H3 cell, availability flags
* ``pricing``         -- one rate row per vehicle class
* ``rides``           -- ride records; status and driver_id move only through
  compare-and-set updates issued by the lifecycle service
* ``ledger_entries``  -- append-only wallet movements
* ``request_logs``    -- booking analytics, written fire-and-forget

Indexes
-------
* **B-Tree** on ``drivers(h3_cell, vehicle_class)`` for the proximity
  prefilter, and on ``rides(status, created_at)``, ``rides(rider_id)``,
  ``rides(driver_id)`` for history, expiry sweeps and active-ride lookups.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)

from .database import Base
from ridehail.domain.enums import LedgerReason, RideStatus, VehicleClass


def _values(enum_cls):
    return [member.value for member in enum_cls]


MONEY = Numeric(12, 2, asdecimal=True)


class RiderModel(Base):
    __tablename__ = "riders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(32), nullable=True)
    wallet_balance = Column(MONEY, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("wallet_balance >= 0", name="ck_riders_balance_non_negative"),
    )


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    vehicle_class = Column(
        Enum(VehicleClass, values_callable=_values, name="vehicleclass"),
        nullable=False,
    )
    rating = Column(Float, default=5.0)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    h3_cell = Column(String(20), nullable=True)
    location_updated_at = Column(DateTime(timezone=True), nullable=True)
    # Free of any active ride; flipped only by lifecycle transitions.
    is_available = Column(Boolean, default=True, nullable=False)
    # Driver's own on/off duty switch.
    is_online = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_drivers_cell_class", "h3_cell", "vehicle_class"),
        Index("idx_drivers_available", "is_available", "is_online"),
    )


class PricingModel(Base):
    __tablename__ = "pricing"

    vehicle_class = Column(
        Enum(VehicleClass, values_callable=_values, name="vehicleclass"),
        primary_key=True,
    )
    base_fare = Column(MONEY, nullable=False)
    per_km_rate = Column(MONEY, nullable=False)
    per_minute_rate = Column(MONEY, nullable=False)


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    pickup_address = Column(String(200), nullable=True)
    dropoff_address = Column(String(200), nullable=True)
    vehicle_class = Column(
        Enum(VehicleClass, values_callable=_values, name="vehicleclass"),
        nullable=False,
    )

    # Fixed at creation
    distance_km = Column(Float, nullable=False)
    duration_min = Column(Float, nullable=False)
    base_fare = Column(MONEY, nullable=False)
    surge_multiplier = Column(Numeric(4, 2, asdecimal=True), nullable=False)
    total_fare = Column(MONEY, nullable=False)
    route_degraded = Column(Boolean, default=False, nullable=False)

    status = Column(
        Enum(RideStatus, values_callable=_values, name="ridestatus"),
        default=RideStatus.REQUESTED,
        nullable=False,
    )
    cancel_reason = Column(String(200), nullable=True)
    cancelled_by = Column(Integer, nullable=True)
    # Set when the completion-time debit could not be taken
    ledger_discrepancy = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status_created", "status", "created_at"),
        Index("idx_rides_rider", "rider_id"),
        Index("idx_rides_driver", "driver_id"),
    )


class LedgerEntryModel(Base):
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=False)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=True)
    amount = Column(MONEY, nullable=False)  # signed: debits are negative
    balance_after = Column(MONEY, nullable=False)
    reason = Column(
        Enum(LedgerReason, values_callable=_values, name="ledgerreason"),
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_ledger_rider", "rider_id"),)


class RequestLogModel(Base):
    __tablename__ = "request_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rider_id = Column(Integer, nullable=True)
    request_type = Column(String(40), nullable=False)
    request_data = Column(JSON, nullable=True)
    response_time_ms = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
