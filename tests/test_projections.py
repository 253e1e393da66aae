"""Unit tests for the rider / driver read models."""

from datetime import timedelta

import pytest

from ride_lifecycle.domain.enums import RideAction, RideStatus, WaitingPhase
from ride_lifecycle.domain.errors import Unauthorized
from ride_lifecycle.domain.projections import (
    DriverView,
    ParticipantCard,
    RiderView,
    RideViewProjector,
)
from ride_lifecycle.domain.state_machine import Command, RideStateMachine
from tests.conftest import (
    AIRPORT,
    ANDHERI,
    DRIVER,
    OTHER_DRIVER,
    OTHER_RIDER,
    RIDER,
    T0,
)


@pytest.fixture
def machine():
    return RideStateMachine()


@pytest.fixture
def projector(machine):
    return RideViewProjector(machine)


def _arrived(machine):
    ride = machine.request(
        RIDER, pickup=AIRPORT, dropoff=ANDHERI, passenger_count=1, now=T0
    ).ride
    for action in (RideAction.ACCEPT, RideAction.START_PICKUP, RideAction.MARK_ARRIVED):
        ride = machine.apply(ride, Command(action, DRIVER), T0).ride
    return ride


class TestProjections:
    def test_views_agree_on_status_and_checkpoints(self, machine, projector):
        ride = _arrived(machine)
        now = T0 + timedelta(minutes=3)
        rider_view = projector.for_rider(ride, now)
        driver_view = projector.for_driver(ride, now)
        assert rider_view.status == driver_view.status == RideStatus.ARRIVED
        assert rider_view.checkpoints == driver_view.checkpoints
        assert rider_view.waiting == driver_view.waiting
        assert rider_view.waiting.phase == WaitingPhase.PAID

    def test_views_do_not_share_mutable_checkpoints(self, machine, projector):
        ride = _arrived(machine)
        view = projector.for_rider(ride, T0)
        assert view.checkpoints is not ride.checkpoints

    def test_rider_sees_driver_card(self, machine, projector):
        card = ParticipantCard("driver-1", "Karan Joshi", 4.3, "White Swift Dzire")
        view = projector.for_rider(_arrived(machine), T0, driver=card)
        assert isinstance(view, RiderView)
        assert view.driver == card

    def test_rider_sees_no_driver_before_acceptance(self, machine, projector):
        ride = machine.request(
            RIDER, pickup=AIRPORT, dropoff=ANDHERI, passenger_count=1, now=T0
        ).ride
        view = projector.for_rider(ride, T0)
        assert view.driver is None
        assert view.waiting is None

    def test_driver_gets_cancel_suggestion_when_wait_expired(self, machine, projector):
        ride = _arrived(machine)
        fresh = projector.for_driver(ride, T0 + timedelta(minutes=5))
        stale = projector.for_driver(ride, T0 + timedelta(minutes=12))
        assert fresh.suggest_cancel is False
        assert stale.suggest_cancel is True
        assert stale.status == RideStatus.ARRIVED

    def test_allowed_actions_are_role_specific(self, machine, projector):
        ride = _arrived(machine)
        rider_view = projector.for_rider(ride, T0)
        driver_view = projector.for_driver(ride, T0)
        assert RideAction.START_TRIP in driver_view.allowed_actions
        assert RideAction.START_TRIP not in rider_view.allowed_actions
        assert RideAction.CANCEL in rider_view.allowed_actions


class TestForActor:
    def test_unassigned_driver_previews_open_ride(self, machine, projector):
        ride = machine.request(
            RIDER, pickup=AIRPORT, dropoff=ANDHERI, passenger_count=1, now=T0
        ).ride
        view = projector.for_actor(ride, OTHER_DRIVER, T0)
        assert isinstance(view, DriverView)
        assert view.allowed_actions == [RideAction.ACCEPT]

    def test_other_driver_cannot_view_assigned_ride(self, machine, projector):
        with pytest.raises(Unauthorized):
            projector.for_actor(_arrived(machine), OTHER_DRIVER, T0)

    def test_other_rider_cannot_view(self, machine, projector):
        with pytest.raises(Unauthorized):
            projector.for_actor(_arrived(machine), OTHER_RIDER, T0)
