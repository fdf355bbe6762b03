"""
Completion Rewards  (Strategy Pattern)
======================================

Computed once, when a ride is finalized.

Points
------
Points = round(Fare x Points_Per_Fare_Unit x Rating_Factor)

* **Rating_Factor** = rating / Rating_Divisor   (rated ride, divisor 3)
* **Rating_Factor** = 1                         (rating skipped)

Driver bonus
------------
Priority riders (rating >= threshold, default 4.8) earn the driver a
completion bonus of ``Bonus_Rate x Fare`` (default 10 %).

Both formulas are product parameters, so each is a swappable strategy.
Complexity: O(1) per ride.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .entities import Ride


# ── Points strategies ─────────────────────────────────────────────────


class PointsPolicy(ABC):
    @abstractmethod
    def compute(self, ride: Ride) -> int: ...


class FlatPoints(PointsPolicy):
    def __init__(self, points: int = 20):
        self.points = points

    def compute(self, ride: Ride) -> int:
        return self.points


class FareRatingPoints(PointsPolicy):
    """Base points proportional to fare, scaled by rating quality."""

    def __init__(
        self, points_per_fare_unit: float = 1.0, rating_divisor: float = 3.0
    ):
        if rating_divisor <= 0:
            raise ValueError("rating_divisor must be positive")
        self.points_per_fare_unit = points_per_fare_unit
        self.rating_divisor = rating_divisor

    def compute(self, ride: Ride) -> int:
        factor = ride.rating / self.rating_divisor if ride.rating else 1.0
        return max(0, round(ride.fare * self.points_per_fare_unit * factor))


# ── Bonus strategies ──────────────────────────────────────────────────


class BonusPolicy(ABC):
    @abstractmethod
    def compute_bonus(self, ride: Ride, rider_rating: float) -> float: ...


class NoBonus(BonusPolicy):
    def compute_bonus(self, ride: Ride, rider_rating: float) -> float:
        return 0.0


class PriorityRiderBonus(BonusPolicy):
    """Driver bonus for carrying a highly rated ("priority") rider."""

    def __init__(self, threshold: float = 4.8, rate: float = 0.10):
        self.threshold = threshold
        self.rate = rate

    def compute_bonus(self, ride: Ride, rider_rating: float) -> float:
        if rider_rating < self.threshold:
            return 0.0
        return round(ride.fare * self.rate, 2)


# ── Engine facade ─────────────────────────────────────────────────────


class RewardsEngine:
    """High-level API used by the completion protocol."""

    def __init__(
        self,
        points_policy: PointsPolicy | None = None,
        bonus_policy: BonusPolicy | None = None,
    ):
        self.points_policy = points_policy or FareRatingPoints()
        self.bonus_policy = bonus_policy or PriorityRiderBonus()

    def points_for(self, ride: Ride) -> int:
        return self.points_policy.compute(ride)

    def bonus_for(self, ride: Ride, rider_rating: float) -> float:
        return self.bonus_policy.compute_bonus(ride, rider_rating)
