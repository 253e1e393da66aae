"""
Safety Escalation Protocol
==========================

Side-channel state machine owned by the ride::

    idle -> pending -> resolved_safe
                    -> escalated
    resolved_safe | escalated -> pending   (a new check)
    any state -> escalated                 (SOS, no check step)

It never touches ``Ride.status``.  An escalation produces a
``safety.escalated`` outbox event; the alert itself is delivered by the
dispatcher, so a dismissed or reloaded client cannot lose it.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Optional

from .entities import Actor, Location, Ride, RideEvent
from .enums import EventType, RideStatus, Role, SafetyResponse, SafetyState
from .errors import InvalidTransition, Unauthorized

# Placeholder target, resolved to the rider's contact at delivery time
EMERGENCY_CONTACT = "emergency_contact"

# Out-of-band alert targets per responding role
ESCALATION_TARGETS: dict[Role, tuple[str, ...]] = {
    Role.RIDER: (EMERGENCY_CONTACT, "operations"),
    Role.DRIVER: ("operations", "emergency_services_prompt"),
}

SAFETY_TRANSITIONS: dict[SafetyState, set[SafetyState]] = {
    SafetyState.IDLE: {SafetyState.PENDING},
    SafetyState.PENDING: {SafetyState.RESOLVED_SAFE, SafetyState.ESCALATED},
    SafetyState.RESOLVED_SAFE: {SafetyState.PENDING},
    SafetyState.ESCALATED: {SafetyState.PENDING},
}


def ensure_participant(ride: Ride, actor: Actor) -> None:
    if actor.role is Role.SYSTEM:
        return
    if actor.role is Role.RIDER and actor.user_id == ride.rider_id:
        return
    if actor.role is Role.DRIVER and actor.user_id == ride.driver_id:
        return
    raise Unauthorized(f"{actor.role.value} {actor.user_id} is not on ride {ride.id}")


def _move(ride: Ride, new_state: SafetyState) -> None:
    if ride.is_terminal:
        raise InvalidTransition(
            f"Safety actions are closed on a {ride.status.value} ride"
        )
    if new_state not in SAFETY_TRANSITIONS[ride.safety.state]:
        raise InvalidTransition(
            f"Cannot move safety check from {ride.safety.state.value} "
            f"to {new_state.value}"
        )
    ride.safety.state = new_state


def trigger_check(
    ride: Ride,
    actor: Actor,
    now: datetime,
    source: str = "manual",
    command_id: Optional[str] = None,
) -> RideEvent:
    """Open a safety check on an active ride."""
    ensure_participant(ride, actor)
    _move(ride, SafetyState.PENDING)
    ride.safety.last_check_at = now
    ride.safety.response = None
    ride.safety.responded_by = None
    ride.safety.requested_by = actor.role
    ride.safety.source = source
    return RideEvent(
        ride_id=ride.id,
        type=EventType.SAFETY_CHECK_REQUESTED,
        occurred_at=now,
        command_id=command_id,
        payload={
            "requested_by": actor.role.value,
            "source": source,
            "rider_id": ride.rider_id,
            "driver_id": ride.driver_id,
            "ride_status": ride.status.value,
        },
    )


def respond(
    ride: Ride,
    actor: Actor,
    response: SafetyResponse,
    now: datetime,
    command_id: Optional[str] = None,
) -> RideEvent:
    """Resolve a pending check; ``need_help`` escalates."""
    if actor.role is Role.SYSTEM:
        raise Unauthorized("Only ride participants can answer a safety check")
    ensure_participant(ride, actor)

    if response is SafetyResponse.SAFE:
        _move(ride, SafetyState.RESOLVED_SAFE)
        event_type = EventType.SAFETY_RESOLVED
    else:
        _move(ride, SafetyState.ESCALATED)
        event_type = EventType.SAFETY_ESCALATED

    ride.safety.response = response
    ride.safety.responded_by = actor.role
    ride.safety.last_check_at = now

    payload = {
        "responded_by": actor.role.value,
        "responder_id": actor.user_id,
        "response": response.value,
        "rider_id": ride.rider_id,
        "driver_id": ride.driver_id,
        "ride_status": ride.status.value,
    }
    if event_type is EventType.SAFETY_ESCALATED:
        payload["alert_targets"] = list(ESCALATION_TARGETS[actor.role])
    return RideEvent(
        ride_id=ride.id,
        type=event_type,
        occurred_at=now,
        command_id=command_id,
        payload=payload,
    )


def sos(
    ride: Ride,
    actor: Actor,
    now: datetime,
    silent: bool = False,
    position: Optional[Location] = None,
    command_id: Optional[str] = None,
) -> RideEvent:
    """Escalate straight away from any safety state.

    A silent SOS keeps the alert away from the other party on the ride.
    """
    if actor.role is Role.SYSTEM:
        raise Unauthorized("Only ride participants can raise an SOS")
    ensure_participant(ride, actor)
    if ride.is_terminal:
        raise InvalidTransition(
            f"Safety actions are closed on a {ride.status.value} ride"
        )

    ride.safety.state = SafetyState.ESCALATED
    ride.safety.response = SafetyResponse.NEED_HELP
    ride.safety.requested_by = actor.role
    ride.safety.responded_by = actor.role
    ride.safety.last_check_at = now
    ride.safety.source = "sos"

    payload = {
        "responded_by": actor.role.value,
        "responder_id": actor.user_id,
        "response": SafetyResponse.NEED_HELP.value,
        "rider_id": ride.rider_id,
        "driver_id": ride.driver_id,
        "ride_status": ride.status.value,
        "sos": True,
        "silent": silent,
        "alert_targets": list(ESCALATION_TARGETS[actor.role]),
    }
    if position is not None:
        payload["position"] = asdict(position)
    return RideEvent(
        ride_id=ride.id,
        type=EventType.SAFETY_ESCALATED,
        occurred_at=now,
        command_id=command_id,
        payload=payload,
    )


def should_trigger_idle_alert(
    status: RideStatus,
    safety_state: SafetyState,
    last_check_at: Optional[datetime],
    last_movement_at: Optional[datetime],
    now: datetime,
    idle_minutes: int = 4,
) -> bool:
    """Stall detection: no movement for *idle_minutes* during a trip.

    Fires at most once per stall -- a check raised after the last
    movement suppresses further alerts until the vehicle moves again.
    """
    if status is not RideStatus.IN_PROGRESS:
        return False
    if last_movement_at is None:
        return False
    if safety_state is SafetyState.PENDING:
        return False
    if last_check_at is not None and last_check_at > last_movement_at:
        return False
    return now - last_movement_at >= timedelta(minutes=idle_minutes)
