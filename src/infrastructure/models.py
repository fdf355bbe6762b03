"""
SQLAlchemy ORM models.

Tables
------
* ``users``    -- riders (and the user side of drivers): rating, points,
                  level, completed-ride counter
* ``drivers``  -- fleet record: vehicle, plate, online flag
* ``rides``    -- ride lifecycle, dual-confirmation flags and outcome;
                  ``version`` backs the optimistic compare-and-set save
* ``ride_settlements`` -- one row per ride whose rewards were applied

Locations are stored as plain lat / lng / name columns; the engine never
computes over them.

Indexes
-------
* **B-Tree** on ``rides.status`` (pending-queue rebuild), ``rider_id`` and
  ``driver_id`` (ride history), ``drivers.is_active`` (auto-dispatch).
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
    String,
    func,
)

from .database import Base
from src.domain.enums import PaymentMethod, RideStatus, VehicleType


def _values(enum_cls):
    return [member.value for member in enum_cls]


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    rating = Column(Float, default=5.0, nullable=False)
    points = Column(Integer, default=0, nullable=False)
    level = Column(Integer, default=1, nullable=False)
    total_rides = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    vehicle = Column(String(120), nullable=False)
    license_plate = Column(String(20), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_drivers_user", "user_id"),
        Index("idx_drivers_active", "is_active"),
    )


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    pickup_name = Column(String(255), default="", nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)
    destination_name = Column(String(255), default="", nullable=False)

    fare = Column(Float, default=0.0, nullable=False)
    vehicle_type = Column(
        Enum(VehicleType, values_callable=_values, native_enum=False),
        default=VehicleType.STANDARD,
        nullable=False,
    )
    payment_method = Column(
        Enum(PaymentMethod, values_callable=_values, native_enum=False),
        default=PaymentMethod.CASH,
        nullable=False,
    )
    split_fare = Column(Boolean, default=False, nullable=False)
    split_with = Column(JSON, default=list, nullable=False)

    status = Column(
        Enum(RideStatus, values_callable=_values, native_enum=False),
        default=RideStatus.REQUESTED,
        nullable=False,
    )
    rider_completed_ride = Column(Boolean, default=False, nullable=False)
    driver_completed_ride = Column(Boolean, default=False, nullable=False)

    rating = Column(Integer, nullable=True)
    points_earned = Column(Integer, default=0, nullable=False)
    driver_bonus = Column(Float, default=0.0, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    settled = Column(Boolean, default=False, nullable=False)
    version = Column(Integer, default=0, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_rider", "rider_id"),
        Index("idx_rides_driver", "driver_id"),
        CheckConstraint("fare >= 0", name="ck_rides_fare_non_negative"),
        CheckConstraint(
            "rating IS NULL OR (rating BETWEEN 1 AND 5)", name="ck_rides_rating"
        ),
    )


class RideSettlementModel(Base):
    """Marks a ride whose points, counters and rating were applied."""

    __tablename__ = "ride_settlements"

    ride_id = Column(Integer, ForeignKey("rides.id"), primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
