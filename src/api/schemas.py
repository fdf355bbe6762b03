"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.domain.entities import Location
from src.domain.enums import PaymentMethod, RideStatus, VehicleType


class LocationPayload(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    name: str = Field("", max_length=255)

    model_config = {"from_attributes": True}

    def to_domain(self) -> Location:
        return Location(self.latitude, self.longitude, self.name)


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    rider_id: int
    pickup: LocationPayload
    destination: LocationPayload
    vehicle_type: VehicleType = VehicleType.STANDARD
    payment_method: PaymentMethod = PaymentMethod.CASH
    fare: float = Field(..., ge=0, description="Fare computed by the pricing service.")
    split_fare: bool = False
    split_with: list[str] = Field(
        default_factory=list,
        max_length=10,
        description="Co-payer identifiers when the fare is split.",
    )


class DriverActionRequest(BaseModel):
    driver_id: int


class RiderConfirmationRequest(BaseModel):
    rating: Optional[int] = Field(
        None, ge=1, le=5, description="Optional 1-5 rating for the driver."
    )


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    rider_id: int
    driver_id: Optional[int] = None
    pickup: LocationPayload
    destination: LocationPayload
    fare: float
    vehicle_type: VehicleType
    payment_method: PaymentMethod
    split_fare: bool
    split_with: list[str] = []
    status: RideStatus
    rider_completed_ride: bool
    driver_completed_ride: bool
    rating: Optional[int] = None
    points_earned: int
    driver_bonus: float
    created_at: datetime
    completed_at: Optional[datetime] = None
    settled: bool = False

    model_config = {"from_attributes": True}


class PendingRideResponse(BaseModel):
    ride_id: int
    rider_id: int
    rider_name: str
    rider_rating: float
    total_rides: int
    is_priority: bool
    pickup: LocationPayload
    destination: LocationPayload
    fare: float
    vehicle_type: VehicleType
    payment_method: PaymentMethod
    created_at: datetime

    model_config = {"from_attributes": True}


class CompletionStatusResponse(BaseModel):
    rider_completed: bool
    driver_completed: bool
    both_completed: bool

    model_config = {"from_attributes": True}


class UserResponse(BaseModel):
    id: int
    name: str
    rating: float
    total_rides: int
    points: int
    level: int

    model_config = {"from_attributes": True}


class DriverResponse(BaseModel):
    id: int
    user_id: int
    name: str
    vehicle: str
    license_plate: str
    rating: float
    total_rides: int
    is_active: bool

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"
    pending_rides: int = 0


class ErrorResponse(BaseModel):
    detail: str
    error: str
