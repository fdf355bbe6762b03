"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"


# State machine: maps current status -> set of valid next statuses.
# ACCEPTED -> COMPLETED is only reachable through dual confirmation.
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.REQUESTED: {RideStatus.ACCEPTED, RideStatus.CANCELED},
    RideStatus.ACCEPTED: {
        RideStatus.IN_PROGRESS,
        RideStatus.COMPLETED,
        RideStatus.CANCELED,
    },
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELED: set(),
}

TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELED})


class VehicleType(str, enum.Enum):
    STANDARD = "standard"
    PREMIUM = "premium"
    RIDESHARE = "rideshare"
    PINKBIKE = "pinkbike"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    UPI = "upi"
    CARD = "card"
    WALLET = "wallet"
