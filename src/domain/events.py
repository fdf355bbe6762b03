"""Ride state-change events and channel names for real-time propagation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from .entities import CompletionStatus, DriverProfile, Ride, utcnow

if TYPE_CHECKING:
    from .ports import EventPublisher

logger = logging.getLogger(__name__)

# Channel names
CHANNEL_RIDE_UPDATES = "ride-updates"


def ride_channel(ride_id: int) -> str:
    return f"{CHANNEL_RIDE_UPDATES}:{ride_id}"


EventType = Literal[
    "ride.requested",
    "ride.accepted",
    "ride.started",
    "ride.confirmation_received",
    "ride.completed",
    "ride.canceled",
]


class DriverSummary(BaseModel):
    """Public driver profile sent to the rider on acceptance."""

    driver_id: int
    name: str
    vehicle: str
    license_plate: str
    rating: float

    @classmethod
    def from_profile(cls, driver: DriverProfile) -> "DriverSummary":
        return cls(
            driver_id=driver.id,
            name=driver.name,
            vehicle=driver.vehicle,
            license_plate=driver.license_plate,
            rating=driver.rating,
        )


class CompletionPayload(BaseModel):
    rider_completed: bool
    driver_completed: bool
    both_completed: bool

    @classmethod
    def from_status(cls, status: CompletionStatus) -> "CompletionPayload":
        return cls(
            rider_completed=status.rider_completed,
            driver_completed=status.driver_completed,
            both_completed=status.both_completed,
        )


class RideEvent(BaseModel):
    """Event for ride state transitions"""

    event_id: UUID = Field(default_factory=uuid4)
    event_type: EventType
    ride_id: int
    status: str
    rider_id: int
    driver_id: Optional[int] = None
    timestamp: str = Field(default_factory=lambda: utcnow().isoformat())
    driver: Optional[DriverSummary] = None
    completion: Optional[CompletionPayload] = None
    points_earned: Optional[int] = None
    driver_bonus: Optional[float] = None

    @classmethod
    def for_ride(cls, event_type: EventType, ride: Ride, **extra) -> "RideEvent":
        return cls(
            event_type=event_type,
            ride_id=ride.id,
            status=ride.status.value,
            rider_id=ride.rider_id,
            driver_id=ride.driver_id,
            **extra,
        )


async def emit(publisher: "EventPublisher", event: RideEvent) -> None:
    """Fire-and-forget publish: transport failures never undo a transition."""
    try:
        await publisher.publish(event.ride_id, event)
    except Exception:
        logger.exception(
            "Failed to publish %s for ride %s", event.event_type, event.ride_id
        )
