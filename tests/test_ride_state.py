"""Unit tests for ride entity state transitions and checkpoints (State Pattern)."""

import json
from datetime import datetime, timedelta

import pytest

from ride_lifecycle.domain.entities import Checkpoints, Ride
from ride_lifecycle.domain.enums import RideStatus
from ride_lifecycle.domain.errors import InvalidTransition
from tests.conftest import AIRPORT, ANDHERI, T0


def _ride(status=RideStatus.REQUESTED, **checkpoints) -> Ride:
    stamps = {"requested_at": T0, **checkpoints}
    return Ride(
        rider_id="rider-1",
        pickup=AIRPORT,
        dropoff=ANDHERI,
        status=status,
        checkpoints=Checkpoints(**stamps),
    )


class TestRideStateMachine:
    def test_initial_status_is_requested(self):
        ride = Ride(rider_id="rider-1", pickup=AIRPORT, dropoff=ANDHERI)
        assert ride.status == RideStatus.REQUESTED
        assert not ride.is_terminal

    def test_passenger_count_must_be_positive(self):
        with pytest.raises(ValueError):
            Ride(rider_id="rider-1", pickup=AIRPORT, dropoff=ANDHERI, passenger_count=0)

    # ── Valid transitions ─────────────────────────────────────────

    def test_requested_to_matching_sets_no_checkpoint(self):
        ride = _ride()
        ride.transition_to(RideStatus.MATCHING, T0 + timedelta(seconds=5))
        assert ride.status == RideStatus.MATCHING
        assert ride.checkpoints.accepted_at is None

    def test_matching_to_accepted(self):
        ride = _ride(RideStatus.MATCHING)
        at = T0 + timedelta(minutes=1)
        ride.transition_to(RideStatus.ACCEPTED, at)
        assert ride.status == RideStatus.ACCEPTED
        assert ride.checkpoints.accepted_at == at

    def test_arrived_can_skip_waiting(self):
        ride = _ride(
            RideStatus.ARRIVED,
            accepted_at=T0,
            en_route_at=T0,
            arrived_at=T0 + timedelta(minutes=5),
        )
        ride.transition_to(RideStatus.IN_PROGRESS, T0 + timedelta(minutes=6))
        assert ride.status == RideStatus.IN_PROGRESS
        assert ride.checkpoints.waiting_started_at is None

    def test_in_progress_to_cancelled(self):
        ride = _ride(
            RideStatus.IN_PROGRESS,
            accepted_at=T0,
            en_route_at=T0,
            arrived_at=T0,
            in_progress_at=T0,
        )
        ride.transition_to(RideStatus.CANCELLED, T0 + timedelta(minutes=1))
        assert ride.is_terminal

    # ── Invalid transitions ───────────────────────────────────────

    def test_requested_to_completed_fails(self):
        ride = _ride()
        with pytest.raises(InvalidTransition):
            ride.transition_to(RideStatus.COMPLETED, T0)

    def test_completed_to_anything_fails(self):
        ride = _ride(RideStatus.COMPLETED)
        with pytest.raises(InvalidTransition):
            ride.transition_to(RideStatus.CANCELLED, T0)

    def test_cancelled_to_anything_fails(self):
        ride = _ride(RideStatus.CANCELLED)
        with pytest.raises(InvalidTransition):
            ride.transition_to(RideStatus.REQUESTED, T0)

    def test_failed_transition_leaves_ride_untouched(self):
        ride = _ride(RideStatus.ACCEPTED, accepted_at=T0)
        with pytest.raises(InvalidTransition):
            ride.transition_to(RideStatus.IN_PROGRESS, T0 + timedelta(minutes=1))
        assert ride.status == RideStatus.ACCEPTED
        assert ride.checkpoints.in_progress_at is None


class TestCheckpoints:
    def test_checkpoint_is_written_once(self):
        cp = Checkpoints(requested_at=T0)
        cp.stamp("accepted_at", T0 + timedelta(minutes=1))
        with pytest.raises(InvalidTransition, match="already set"):
            cp.stamp("accepted_at", T0 + timedelta(minutes=2))
        assert cp.accepted_at == T0 + timedelta(minutes=1)

    def test_prerequisite_must_be_set(self):
        cp = Checkpoints(requested_at=T0)
        with pytest.raises(InvalidTransition, match="before"):
            cp.stamp("in_progress_at", T0)

    def test_timestamps_never_go_backwards(self):
        cp = Checkpoints(requested_at=T0, accepted_at=T0 + timedelta(minutes=3))
        stored = cp.stamp("en_route_at", T0 + timedelta(minutes=1))
        assert stored == T0 + timedelta(minutes=3)
        assert cp.latest() == stored

    def test_snapshot_is_json_friendly(self):
        ride = _ride()
        snap = ride.snapshot()
        assert snap["status"] == "requested"
        stamp = snap["checkpoints"]["requested_at"].replace("Z", "+00:00")
        assert datetime.fromisoformat(stamp) == T0
        assert snap["pickup"]["address"] == AIRPORT.address
        assert snap["safety"]["state"] == "idle"
        assert snap["cancellation"] is None
        json.dumps(snap)
