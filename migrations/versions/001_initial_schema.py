"""Initial schema: users, drivers, rides and ride settlements.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("rating", sa.Float, nullable=False, server_default="5.0"),
        sa.Column("points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("level", sa.Integer, nullable=False, server_default="1"),
        sa.Column("total_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("vehicle", sa.String(120), nullable=False),
        sa.Column("license_plate", sa.String(20), nullable=False),
        sa.Column(
            "is_active", sa.Boolean, nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_drivers_user", "drivers", ["user_id"])
    op.create_index("idx_drivers_active", "drivers", ["is_active"])

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "rider_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True
        ),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("pickup_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column(
            "destination_name", sa.String(255), nullable=False, server_default=""
        ),
        sa.Column("fare", sa.Float, nullable=False, server_default="0"),
        sa.Column("vehicle_type", sa.String(9), nullable=False),
        sa.Column("payment_method", sa.String(6), nullable=False),
        sa.Column(
            "split_fare", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column("split_with", sa.JSON, nullable=False),
        sa.Column("status", sa.String(11), nullable=False),
        sa.Column(
            "rider_completed_ride",
            sa.Boolean,
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "driver_completed_ride",
            sa.Boolean,
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("rating", sa.Integer, nullable=True),
        sa.Column("points_earned", sa.Integer, nullable=False, server_default="0"),
        sa.Column("driver_bonus", sa.Float, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("fare >= 0", name="ck_rides_fare_non_negative"),
        sa.CheckConstraint(
            "rating IS NULL OR (rating BETWEEN 1 AND 5)", name="ck_rides_rating"
        ),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_rider", "rides", ["rider_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])

    # ── ride_settlements ──────────────────────────────────────────────
    op.create_table(
        "ride_settlements",
        sa.Column(
            "ride_id", sa.Integer, sa.ForeignKey("rides.id"), primary_key=True
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("ride_settlements")
    op.drop_table("rides")
    op.drop_table("drivers")
    op.drop_table("users")
