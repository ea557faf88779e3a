"""Initial schema: riders, drivers, pricing, rides, ledger and request logs.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


VEHICLE_CLASS = postgresql.ENUM(
    "compact", "sedan", "suv", name="vehicleclass", create_type=False
)
RIDE_STATUS = postgresql.ENUM(
    "requested",
    "accepted",
    "picked_up",
    "completed",
    "cancelled",
    name="ridestatus",
    create_type=False,
)
LEDGER_REASON = postgresql.ENUM(
    "ride_fare", "top_up", name="ledgerreason", create_type=False
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (VEHICLE_CLASS, RIDE_STATUS, LEDGER_REASON):
        enum_type.create(bind, checkfirst=True)

    # ── riders ────────────────────────────────────────────────────────
    op.create_table(
        "riders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("wallet_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        _created_at(),
        sa.CheckConstraint("wallet_balance >= 0", name="ck_riders_balance_non_negative"),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("vehicle_class", VEHICLE_CLASS, nullable=False),
        sa.Column("rating", sa.Float, default=5.0),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("h3_cell", sa.String(20), nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index("idx_drivers_cell_class", "drivers", ["h3_cell", "vehicle_class"])
    op.create_index("idx_drivers_available", "drivers", ["is_available", "is_online"])

    # ── pricing ───────────────────────────────────────────────────────
    op.create_table(
        "pricing",
        sa.Column(
            "vehicle_class",
            VEHICLE_CLASS,
            primary_key=True,
        ),
        sa.Column("base_fare", sa.Numeric(12, 2), nullable=False),
        sa.Column("per_km_rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("per_minute_rate", sa.Numeric(12, 2), nullable=False),
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("rider_id", sa.Integer, sa.ForeignKey("riders.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("pickup_address", sa.String(200), nullable=True),
        sa.Column("dropoff_address", sa.String(200), nullable=True),
        sa.Column(
            "vehicle_class",
            VEHICLE_CLASS,
            nullable=False,
        ),
        sa.Column("distance_km", sa.Float, nullable=False),
        sa.Column("duration_min", sa.Float, nullable=False),
        sa.Column("base_fare", sa.Numeric(12, 2), nullable=False),
        sa.Column("surge_multiplier", sa.Numeric(4, 2), nullable=False),
        sa.Column("total_fare", sa.Numeric(12, 2), nullable=False),
        sa.Column("route_degraded", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("status", RIDE_STATUS, nullable=False, server_default="requested"),
        sa.Column("cancel_reason", sa.String(200), nullable=True),
        sa.Column("cancelled_by", sa.Integer, nullable=True),
        sa.Column(
            "ledger_discrepancy", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        _created_at(),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index("idx_rides_status_created", "rides", ["status", "created_at"])
    op.create_index("idx_rides_rider", "rides", ["rider_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])

    # ── ledger_entries ────────────────────────────────────────────────
    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("rider_id", sa.Integer, sa.ForeignKey("riders.id"), nullable=False),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("reason", LEDGER_REASON, nullable=False),
        _created_at(),
    )
    op.create_index("idx_ledger_rider", "ledger_entries", ["rider_id"])

    # ── request_logs ──────────────────────────────────────────────────
    op.create_table(
        "request_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("rider_id", sa.Integer, nullable=True),
        sa.Column("request_type", sa.String(40), nullable=False),
        sa.Column("request_data", sa.JSON, nullable=True),
        sa.Column("response_time_ms", sa.Float, nullable=True),
        _created_at(),
    )


def downgrade() -> None:
    op.drop_table("request_logs")
    op.drop_table("ledger_entries")
    op.drop_table("rides")
    op.drop_table("pricing")
    op.drop_table("drivers")
    op.drop_table("riders")
    op.execute("DROP TYPE IF EXISTS ledgerreason")
    op.execute("DROP TYPE IF EXISTS ridestatus")
    op.execute("DROP TYPE IF EXISTS vehicleclass")
