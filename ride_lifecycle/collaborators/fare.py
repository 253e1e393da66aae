"""
Fare collaborator  (Strategy Pattern)
=====================================

The orchestrator never prices a ride.  On ``completed`` it queues a
``ride.fare_requested`` event; the dispatcher calls
``FareCollaborator.compute_fare`` and writes the result back through the
orchestrator.  ``final_leg_override`` is set for an early end: the fare is
recomputed from the position where the trip actually ended instead of the
quoted dropoff.

Default formula (``DistanceFareCalculator``)
--------------------------------------------
Fare = Base_Fare + Distance x Rate_Per_KM + Paid_Wait_Minutes x Waiting_Rate

Grace minutes are free; bonus minutes are recorded in the breakdown for
driver compensation but not charged to the rider.

Complexity: O(1) per calculation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from ride_lifecycle.domain.distance import leg_km
from ride_lifecycle.domain.entities import Location, Ride
from ride_lifecycle.domain.waiting import WaitingConfig, ride_waiting_breakdown


@dataclass(frozen=True)
class FareResult:
    amount: float
    currency: str
    breakdown: dict[str, Any] = field(default_factory=dict)


class FareCollaborator(ABC):
    @abstractmethod
    async def compute_fare(
        self, ride: Ride, final_leg_override: Optional[Location] = None
    ) -> FareResult: ...


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(
        self, distance_km: float, base_fare: float, rate_per_km: float
    ) -> float: ...


class StandardPricing(PricingStrategy):
    def calculate(
        self, distance_km: float, base_fare: float, rate_per_km: float
    ) -> float:
        return base_fare + distance_km * rate_per_km


class WaitingChargePricing(PricingStrategy):
    """Standard distance pricing plus a per-minute charge for paid waiting."""

    def __init__(self, paid_wait_minutes: float, rate_per_minute: float):
        self.paid_wait_minutes = paid_wait_minutes
        self.rate_per_minute = rate_per_minute

    @property
    def waiting_charge(self) -> float:
        return self.paid_wait_minutes * self.rate_per_minute

    def calculate(
        self, distance_km: float, base_fare: float, rate_per_km: float
    ) -> float:
        return round(
            StandardPricing().calculate(distance_km, base_fare, rate_per_km)
            + self.waiting_charge,
            2,
        )


# ── Default collaborator ──────────────────────────────────────────────


class DistanceFareCalculator(FareCollaborator):
    def __init__(
        self,
        base_fare: float = 50.0,
        rate_per_km: float = 15.0,
        waiting_rate_per_minute: float = 2.0,
        currency: str = "USD",
        waiting_config: Optional[WaitingConfig] = None,
    ):
        self.base_fare = base_fare
        self.rate_per_km = rate_per_km
        self.waiting_rate_per_minute = waiting_rate_per_minute
        self.currency = currency
        self.waiting_config = waiting_config or WaitingConfig()

    @classmethod
    def from_settings(cls, settings, waiting_config: WaitingConfig) -> "DistanceFareCalculator":
        return cls(
            base_fare=settings.base_fare,
            rate_per_km=settings.rate_per_km,
            waiting_rate_per_minute=settings.waiting_rate_per_minute,
            currency=settings.currency,
            waiting_config=waiting_config,
        )

    async def compute_fare(
        self, ride: Ride, final_leg_override: Optional[Location] = None
    ) -> FareResult:
        end = final_leg_override or ride.dropoff
        distance = leg_km(ride.pickup, end)

        waiting = ride_waiting_breakdown(ride, self.waiting_config)
        paid_minutes = waiting.paid.total_seconds() / 60
        strategy = WaitingChargePricing(paid_minutes, self.waiting_rate_per_minute)

        if distance is None:
            # no coordinates: keep the quoted estimate (or the base fare)
            distance_charge_base = (
                ride.fare.estimate if ride.fare.estimate is not None else self.base_fare
            )
            amount = round(distance_charge_base + strategy.waiting_charge, 2)
        else:
            amount = strategy.calculate(distance, self.base_fare, self.rate_per_km)

        return FareResult(
            amount=amount,
            currency=ride.fare.currency or self.currency,
            breakdown={
                "distance_km": round(distance, 3) if distance is not None else None,
                "base_fare": self.base_fare,
                "rate_per_km": self.rate_per_km,
                "waiting_paid_minutes": round(paid_minutes, 2),
                "waiting_bonus_minutes": round(waiting.bonus.total_seconds() / 60, 2),
                "waiting_charge": round(strategy.waiting_charge, 2),
                "early_end": final_leg_override is not None,
            },
        )
