"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: enforces valid lifecycle transitions
  (REQUESTED -> ACCEPTED -> IN_PROGRESS -> COMPLETED | CANCELED).
- **Dual confirmation**: a ride only reaches COMPLETED once both the rider
  and the driver have set their completion flag.
- ``PendingRequest`` is a read-only projection of a REQUESTED ride used for
  matching priority; the ``Ride`` stays the source of truth.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .enums import (
    RIDE_TRANSITIONS,
    TERMINAL_STATUSES,
    PaymentMethod,
    RideStatus,
    VehicleType,
)
from .exceptions import InvalidRideState, InvalidTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_rating(rating: Optional[int]) -> Optional[int]:
    if rating is None:
        return None
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValueError(f"Rating must be an integer, got {rating!r}")
    if not 1 <= rating <= 5:
        raise ValueError(f"Rating must be between 1 and 5, got {rating}")
    return rating


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    name: str = ""

    def __post_init__(self) -> None:
        if not -90 <= self.latitude <= 90:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValueError(f"Longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class CompletionStatus:
    rider_completed: bool
    driver_completed: bool

    @property
    def both_completed(self) -> bool:
        return self.rider_completed and self.driver_completed


@dataclass(frozen=True)
class RiderSnapshot:
    """Rider reputation captured when the ride was requested."""

    rating: float = 5.0
    name: str = ""
    total_rides: int = 0


@dataclass(frozen=True)
class PendingRequest:
    ride_id: int
    rider_id: int
    rider_name: str
    rider_rating: float
    total_rides: int
    pickup: Location
    destination: Location
    fare: float
    vehicle_type: VehicleType
    payment_method: PaymentMethod
    created_at: datetime
    is_priority: bool = False


@dataclass(frozen=True)
class UserProfile:
    id: int
    name: str
    rating: float = 5.0
    total_rides: int = 0
    points: int = 0
    level: int = 1


@dataclass(frozen=True)
class DriverProfile:
    """Driver as seen by the engine: fleet record joined with its user."""

    id: int
    user_id: int
    name: str
    vehicle: str
    license_plate: str
    rating: float = 5.0
    total_rides: int = 0
    is_active: bool = True


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    id: Optional[int] = None
    rider_id: int = 0
    pickup: Location = field(default_factory=lambda: Location(0, 0))
    destination: Location = field(default_factory=lambda: Location(0, 0))
    fare: float = 0.0
    vehicle_type: VehicleType = VehicleType.STANDARD
    payment_method: PaymentMethod = PaymentMethod.CASH
    split_fare: bool = False
    split_with: tuple[str, ...] = ()
    status: RideStatus = RideStatus.REQUESTED
    driver_id: Optional[int] = None
    rider_completed_ride: bool = False
    driver_completed_ride: bool = False
    rating: Optional[int] = None
    points_earned: int = 0
    driver_bonus: float = 0.0
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    settled: bool = False
    # Bumped by the store on every save; a save carrying an old version fails.
    version: int = 0

    def __post_init__(self) -> None:
        if self.fare < 0:
            raise ValueError(f"Fare must be non-negative, got {self.fare}")
        validate_rating(self.rating)
        self.split_with = tuple(self.split_with)

    # ── State machine ─────────────────────────────────────────────

    def transition_to(self, new_status: RideStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = RIDE_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransition(
                f"Cannot transition ride {self.id} from "
                f"{self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def assign_driver(self, driver_id: int) -> None:
        if self.status is not RideStatus.REQUESTED or self.driver_id is not None:
            raise InvalidTransition(
                f"Ride {self.id} is {self.status.value}; cannot assign a driver"
            )
        self.transition_to(RideStatus.ACCEPTED)
        self.driver_id = driver_id

    def start(self) -> None:
        if self.status is not RideStatus.ACCEPTED:
            raise InvalidTransition(
                f"Ride {self.id} is {self.status.value}; only accepted rides can start"
            )
        self.transition_to(RideStatus.IN_PROGRESS)

    def cancel(self) -> None:
        self.transition_to(RideStatus.CANCELED)

    # ── Dual confirmation ─────────────────────────────────────────

    def _ensure_confirmable(self) -> None:
        if self.status in TERMINAL_STATUSES:
            raise InvalidRideState(
                f"Ride {self.id} is already {self.status.value}"
            )
        if self.status is RideStatus.REQUESTED:
            raise InvalidRideState(f"Ride {self.id} has no driver yet")

    def confirm_by_rider(self, rating: Optional[int] = None) -> None:
        self._ensure_confirmable()
        if rating is not None:
            self.rating = validate_rating(rating)
        self.rider_completed_ride = True

    def confirm_by_driver(self) -> None:
        self._ensure_confirmable()
        self.driver_completed_ride = True

    @property
    def both_completed(self) -> bool:
        return self.rider_completed_ride and self.driver_completed_ride

    def completion_status(self) -> CompletionStatus:
        return CompletionStatus(
            rider_completed=self.rider_completed_ride,
            driver_completed=self.driver_completed_ride,
        )

    def finalize(
        self, points: int, bonus: float = 0.0, at: Optional[datetime] = None
    ) -> None:
        """Move to COMPLETED and record the outcome.  Runs once per ride."""
        if not self.both_completed:
            raise InvalidTransition(
                f"Ride {self.id} needs both rider and driver confirmation"
            )
        if points < 0:
            raise ValueError(f"Points must be non-negative, got {points}")
        self.transition_to(RideStatus.COMPLETED)
        self.points_earned = points
        self.driver_bonus = bonus
        self.completed_at = at or utcnow()

    @property
    def is_pending(self) -> bool:
        return self.status is RideStatus.REQUESTED

    @property
    def needs_settlement(self) -> bool:
        return self.status is RideStatus.COMPLETED and not self.settled


@dataclass(frozen=True)
class Settlement:
    """Everything the rewards ledger applies for one finalized ride."""

    ride_id: int
    rider_id: int
    driver_id: Optional[int]
    points: int
    rating: Optional[int] = None

    @classmethod
    def for_ride(cls, ride: Ride) -> "Settlement":
        return cls(
            ride_id=ride.id,
            rider_id=ride.rider_id,
            driver_id=ride.driver_id,
            points=ride.points_earned,
            rating=ride.rating,
        )
