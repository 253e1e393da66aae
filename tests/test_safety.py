"""Unit tests for the safety escalation side-channel."""

from datetime import timedelta

import pytest

from ride_lifecycle.domain.entities import Checkpoints, Ride
from ride_lifecycle.domain.enums import (
    EventType,
    RideAction,
    RideStatus,
    SafetyResponse,
    SafetyState,
)
from ride_lifecycle.domain.errors import InvalidTransition, Unauthorized
from ride_lifecycle.domain.safety import (
    respond,
    should_trigger_idle_alert,
    sos,
    trigger_check,
)
from ride_lifecycle.domain.state_machine import Command, RideStateMachine
from tests.conftest import AIRPORT, ANDHERI, DRIVER, OTHER_RIDER, RIDER, SYSTEM, T0


def _ride(status=RideStatus.ARRIVED) -> Ride:
    return Ride(
        rider_id="rider-1",
        driver_id="driver-1",
        pickup=AIRPORT,
        dropoff=ANDHERI,
        status=status,
        checkpoints=Checkpoints(
            requested_at=T0, accepted_at=T0, en_route_at=T0, arrived_at=T0
        ),
    )


class TestSafetyProtocol:
    def test_trigger_moves_to_pending(self):
        ride = _ride()
        event = trigger_check(ride, RIDER, T0)
        assert ride.safety.state == SafetyState.PENDING
        assert ride.safety.last_check_at == T0
        assert event.type == EventType.SAFETY_CHECK_REQUESTED
        assert event.payload["requested_by"] == "rider"

    def test_safe_response_resolves(self):
        ride = _ride()
        trigger_check(ride, DRIVER, T0)
        event = respond(ride, RIDER, SafetyResponse.SAFE, T0 + timedelta(seconds=10))
        assert ride.safety.state == SafetyState.RESOLVED_SAFE
        assert ride.safety.response == SafetyResponse.SAFE
        assert event.type == EventType.SAFETY_RESOLVED

    def test_need_help_escalates_without_touching_status(self):
        ride = _ride(RideStatus.ARRIVED)
        trigger_check(ride, RIDER, T0)
        event = respond(ride, RIDER, SafetyResponse.NEED_HELP, T0)
        assert ride.status == RideStatus.ARRIVED
        assert ride.safety.state == SafetyState.ESCALATED
        assert event.type == EventType.SAFETY_ESCALATED
        assert event.payload["alert_targets"] == ["emergency_contact", "operations"]

    def test_driver_escalation_targets(self):
        ride = _ride()
        trigger_check(ride, DRIVER, T0)
        event = respond(ride, DRIVER, SafetyResponse.NEED_HELP, T0)
        assert event.payload["alert_targets"] == [
            "operations",
            "emergency_services_prompt",
        ]

    def test_respond_without_pending_check_fails(self):
        with pytest.raises(InvalidTransition):
            respond(_ride(), RIDER, SafetyResponse.SAFE, T0)

    def test_double_trigger_fails(self):
        ride = _ride()
        trigger_check(ride, RIDER, T0)
        with pytest.raises(InvalidTransition):
            trigger_check(ride, DRIVER, T0)

    def test_resolved_check_can_be_reopened(self):
        ride = _ride()
        trigger_check(ride, RIDER, T0)
        respond(ride, RIDER, SafetyResponse.SAFE, T0)
        trigger_check(ride, SYSTEM, T0 + timedelta(minutes=5), source="idle_alert")
        assert ride.safety.state == SafetyState.PENDING
        assert ride.safety.response is None
        assert ride.safety.source == "idle_alert"

    def test_no_checks_on_terminal_ride(self):
        with pytest.raises(InvalidTransition):
            trigger_check(_ride(RideStatus.COMPLETED), RIDER, T0)

    def test_outsider_cannot_trigger(self):
        with pytest.raises(Unauthorized):
            trigger_check(_ride(), OTHER_RIDER, T0)

    def test_system_cannot_answer(self):
        ride = _ride()
        trigger_check(ride, SYSTEM, T0)
        with pytest.raises(Unauthorized):
            respond(ride, SYSTEM, SafetyResponse.SAFE, T0)


class TestSos:
    def test_sos_escalates_from_idle(self):
        ride = _ride(RideStatus.IN_PROGRESS)
        event = sos(ride, RIDER, T0, position=ANDHERI)
        assert ride.safety.state == SafetyState.ESCALATED
        assert ride.safety.response == SafetyResponse.NEED_HELP
        assert ride.safety.source == "sos"
        assert ride.status == RideStatus.IN_PROGRESS
        assert event.type == EventType.SAFETY_ESCALATED
        assert event.payload["sos"] is True
        assert event.payload["silent"] is False
        assert event.payload["position"]["address"] == ANDHERI.address
        assert event.payload["alert_targets"] == ["emergency_contact", "operations"]

    def test_silent_flag_is_carried(self):
        ride = _ride()
        event = sos(ride, DRIVER, T0, silent=True)
        assert event.payload["silent"] is True
        assert event.payload["alert_targets"] == [
            "operations",
            "emergency_services_prompt",
        ]

    def test_sos_while_check_pending(self):
        ride = _ride()
        trigger_check(ride, DRIVER, T0)
        sos(ride, RIDER, T0 + timedelta(seconds=5))
        assert ride.safety.state == SafetyState.ESCALATED

    def test_system_cannot_raise_sos(self):
        with pytest.raises(Unauthorized):
            sos(_ride(), SYSTEM, T0)

    def test_outsider_cannot_raise_sos(self):
        with pytest.raises(Unauthorized):
            sos(_ride(), OTHER_RIDER, T0)

    def test_no_sos_on_terminal_ride(self):
        with pytest.raises(InvalidTransition):
            sos(_ride(RideStatus.CANCELLED), RIDER, T0)

    def test_sos_command_through_state_machine(self):
        outcome = RideStateMachine().apply(
            _ride(), Command(RideAction.SOS, DRIVER, silent=True), T0
        )
        assert outcome.ride.safety.state == SafetyState.ESCALATED
        assert outcome.events[0].action == "sos"
        assert outcome.events[0].payload["silent"] is True


class TestEscalationDoesNotBlockRide:
    def test_trip_proceeds_while_escalated(self):
        machine = RideStateMachine()
        ride = _ride(RideStatus.ARRIVED)
        for command in (
            Command(RideAction.TRIGGER_SAFETY_CHECK, RIDER),
            Command(RideAction.RESPOND_SAFETY, RIDER, response=SafetyResponse.NEED_HELP),
            Command(RideAction.START_TRIP, DRIVER),
            Command(RideAction.COMPLETE_TRIP, DRIVER),
        ):
            ride = machine.apply(ride, command, T0).ride
        assert ride.status == RideStatus.COMPLETED
        assert ride.safety.state == SafetyState.ESCALATED


class TestIdleAlert:
    def test_fires_after_four_idle_minutes(self):
        assert should_trigger_idle_alert(
            RideStatus.IN_PROGRESS, SafetyState.IDLE, None, T0, T0 + timedelta(minutes=4)
        )

    def test_not_before_threshold(self):
        assert not should_trigger_idle_alert(
            RideStatus.IN_PROGRESS,
            SafetyState.IDLE,
            None,
            T0,
            T0 + timedelta(minutes=3, seconds=59),
        )

    def test_only_during_trip(self):
        assert not should_trigger_idle_alert(
            RideStatus.WAITING, SafetyState.IDLE, None, T0, T0 + timedelta(minutes=10)
        )

    def test_once_per_stall(self):
        checked = T0 + timedelta(minutes=4)
        assert not should_trigger_idle_alert(
            RideStatus.IN_PROGRESS,
            SafetyState.RESOLVED_SAFE,
            checked,
            T0,
            T0 + timedelta(minutes=9),
        )

    def test_not_while_check_pending(self):
        assert not should_trigger_idle_alert(
            RideStatus.IN_PROGRESS,
            SafetyState.PENDING,
            None,
            T0,
            T0 + timedelta(minutes=9),
        )
