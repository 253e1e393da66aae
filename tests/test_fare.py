"""Unit tests for the default fare collaborator."""

from datetime import timedelta

import pytest

from ride_lifecycle.collaborators.fare import (
    DistanceFareCalculator,
    StandardPricing,
    WaitingChargePricing,
)
from ride_lifecycle.domain.distance import haversine_km, leg_km
from ride_lifecycle.domain.entities import Checkpoints, Fare, Location, Ride
from ride_lifecycle.domain.enums import RideStatus
from tests.conftest import AIRPORT, ANDHERI, T0


def _completed(pickup=AIRPORT, dropoff=ANDHERI, wait=timedelta(0), estimate=None):
    return Ride(
        rider_id="rider-1",
        driver_id="driver-1",
        pickup=pickup,
        dropoff=dropoff,
        status=RideStatus.COMPLETED,
        checkpoints=Checkpoints(
            requested_at=T0,
            accepted_at=T0,
            en_route_at=T0,
            arrived_at=T0,
            in_progress_at=T0 + wait,
            completed_at=T0 + wait + timedelta(minutes=20),
        ),
        fare=Fare(estimate=estimate),
    )


class TestPricingStrategies:
    def test_standard_pricing(self):
        assert StandardPricing().calculate(10.0, 50.0, 15.0) == 200.0  # 50 + 10*15

    def test_waiting_charge_added(self):
        strategy = WaitingChargePricing(paid_wait_minutes=3, rate_per_minute=2.0)
        assert strategy.waiting_charge == 6.0
        assert strategy.calculate(10.0, 50.0, 15.0) == 206.0


class TestDistance:
    def test_haversine_known_distance(self):
        # Mumbai airport -> Andheri West is roughly 6.4 km as the crow flies
        km = haversine_km(19.0896, 72.8656, 19.1364, 72.8296)
        assert 6.0 < km < 7.0

    def test_leg_without_coordinates(self):
        assert leg_km(AIRPORT, Location("Somewhere")) is None


class TestDistanceFareCalculator:
    @pytest.mark.asyncio
    async def test_distance_fare(self):
        calc = DistanceFareCalculator(base_fare=50.0, rate_per_km=15.0, currency="INR")
        result = await calc.compute_fare(_completed())
        expected = round(50.0 + leg_km(AIRPORT, ANDHERI) * 15.0, 2)
        assert result.amount == expected
        assert result.currency == "INR"
        assert result.breakdown["early_end"] is False

    @pytest.mark.asyncio
    async def test_early_end_prices_actual_leg(self):
        calc = DistanceFareCalculator()
        ride = _completed()
        halfway = Location("Marol", 19.1100, 72.8500)
        full = await calc.compute_fare(ride)
        short = await calc.compute_fare(ride, final_leg_override=halfway)
        assert short.amount < full.amount
        assert short.breakdown["early_end"] is True

    @pytest.mark.asyncio
    async def test_paid_waiting_is_charged_bonus_is_not(self):
        calc = DistanceFareCalculator(waiting_rate_per_minute=2.0)
        base = await calc.compute_fare(_completed())
        # 10 min wait: 2 free, 5 paid, 3 bonus
        waited = await calc.compute_fare(_completed(wait=timedelta(minutes=10)))
        assert waited.amount == pytest.approx(base.amount + 10.0)
        assert waited.breakdown["waiting_paid_minutes"] == 5.0
        assert waited.breakdown["waiting_bonus_minutes"] == 3.0

    @pytest.mark.asyncio
    async def test_without_coordinates_keeps_estimate(self):
        calc = DistanceFareCalculator()
        ride = _completed(
            pickup=Location("Terminal 2"), dropoff=Location("Hotel"), estimate=240.0
        )
        result = await calc.compute_fare(ride)
        assert result.amount == 240.0
        assert result.breakdown["distance_km"] is None
