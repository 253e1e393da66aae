"""Unit tests for the waiting-compensation engine."""

from datetime import timedelta

import pytest

from ride_lifecycle.domain.entities import Checkpoints, Ride
from ride_lifecycle.domain.enums import RideStatus, WaitingPhase
from ride_lifecycle.domain.waiting import (
    WaitingConfig,
    compute_waiting,
    ride_waiting_breakdown,
    waiting_breakdown,
    waiting_for_ride,
)
from tests.conftest import AIRPORT, ANDHERI, T0

CONFIG = WaitingConfig()  # 2 min grace, 5 min paid, 4 min bonus


class TestComputeWaiting:
    @pytest.mark.parametrize(
        "elapsed, phase, remaining",
        [
            (timedelta(seconds=90), WaitingPhase.GRACE, timedelta(seconds=30)),
            (timedelta(minutes=3), WaitingPhase.PAID, timedelta(minutes=4)),
            (timedelta(minutes=8), WaitingPhase.BONUS, timedelta(minutes=3)),
            (timedelta(minutes=12), WaitingPhase.EXPIRED, timedelta(0)),
        ],
    )
    def test_phase_after_elapsed(self, elapsed, phase, remaining):
        snap = compute_waiting(T0, None, T0 + elapsed, CONFIG)
        assert snap.phase == phase
        assert snap.elapsed == elapsed
        assert snap.remaining_in_phase == remaining

    def test_boundary_belongs_to_next_phase(self):
        snap = compute_waiting(T0, None, T0 + timedelta(minutes=2), CONFIG)
        assert snap.phase == WaitingPhase.PAID

    def test_waiting_started_at_takes_precedence(self):
        started = T0 + timedelta(minutes=1)
        snap = compute_waiting(T0, started, T0 + timedelta(minutes=2), CONFIG)
        assert snap.started_at == started
        assert snap.phase == WaitingPhase.GRACE
        assert snap.elapsed == timedelta(minutes=1)

    def test_clock_skew_never_goes_negative(self):
        snap = compute_waiting(T0, None, T0 - timedelta(seconds=20), CONFIG)
        assert snap.elapsed == timedelta(0)
        assert snap.phase == WaitingPhase.GRACE

    def test_expired_is_advisory_flag(self):
        snap = compute_waiting(T0, None, T0 + timedelta(hours=1), CONFIG)
        assert snap.expired

    def test_custom_durations(self):
        config = WaitingConfig(
            grace_period=timedelta(seconds=30),
            paid_wait=timedelta(seconds=30),
            bonus_wait=timedelta(seconds=30),
        )
        snap = compute_waiting(T0, None, T0 + timedelta(seconds=75), config)
        assert snap.phase == WaitingPhase.BONUS
        assert snap.remaining_in_phase == timedelta(seconds=15)


class TestRideWaiting:
    def _ride(self, status, **stamps):
        return Ride(
            rider_id="rider-1",
            pickup=AIRPORT,
            dropoff=ANDHERI,
            status=status,
            checkpoints=Checkpoints(requested_at=T0, **stamps),
        )

    def test_no_snapshot_before_arrival(self):
        ride = self._ride(RideStatus.DRIVER_EN_ROUTE, accepted_at=T0, en_route_at=T0)
        assert waiting_for_ride(ride, T0 + timedelta(minutes=5), CONFIG) is None

    def test_snapshot_while_arrived(self):
        ride = self._ride(
            RideStatus.ARRIVED, accepted_at=T0, en_route_at=T0, arrived_at=T0
        )
        snap = waiting_for_ride(ride, T0 + timedelta(minutes=3), CONFIG)
        assert snap.phase == WaitingPhase.PAID

    def test_no_snapshot_once_trip_started(self):
        ride = self._ride(
            RideStatus.IN_PROGRESS,
            accepted_at=T0,
            en_route_at=T0,
            arrived_at=T0,
            in_progress_at=T0 + timedelta(minutes=4),
        )
        assert waiting_for_ride(ride, T0 + timedelta(minutes=5), CONFIG) is None


class TestWaitingBreakdown:
    def test_split_across_phases(self):
        b = waiting_breakdown(T0, T0 + timedelta(minutes=9), CONFIG)
        assert b.free == timedelta(minutes=2)
        assert b.paid == timedelta(minutes=5)
        assert b.bonus == timedelta(minutes=2)
        assert b.total == timedelta(minutes=9)

    def test_caps_at_total(self):
        b = waiting_breakdown(T0, T0 + timedelta(minutes=30), CONFIG)
        assert b.total == CONFIG.total

    def test_no_wait(self):
        b = waiting_breakdown(None, T0, CONFIG)
        assert b.total == timedelta(0)

    def test_ride_breakdown_ends_at_trip_start(self):
        ride = Ride(
            rider_id="rider-1",
            pickup=AIRPORT,
            dropoff=ANDHERI,
            status=RideStatus.COMPLETED,
            checkpoints=Checkpoints(
                requested_at=T0,
                accepted_at=T0,
                en_route_at=T0,
                arrived_at=T0,
                in_progress_at=T0 + timedelta(minutes=4),
                completed_at=T0 + timedelta(minutes=30),
            ),
        )
        b = ride_waiting_breakdown(ride, CONFIG)
        assert b.free == timedelta(minutes=2)
        assert b.paid == timedelta(minutes=2)
        assert b.bonus == timedelta(0)
