"""
Ride State Machine
==================

Validates a ``Command`` against one ``Ride`` and returns the mutated ride
plus the outbox events the change produced.

Checks run in a fixed order, all before any write:

1. role may request the action at all          -> ``Unauthorized``
2. caller is the ride's rider / assigned driver -> ``Unauthorized``
   (``accept`` instead checks nobody else won)  -> ``AlreadyAccepted``
3. ride is not terminal, status guard holds     -> ``InvalidTransition``
4. cancellation reason policy                   -> ``MissingReason``

Every emitted event carries the action that produced it, so a replayed
``command_id`` can be told apart from a reused one.

``apply`` works on a deep copy, so a rejected command leaves the caller's
``Ride`` untouched.  The same code path backs ``allowed_actions`` by
dry-running every action.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from . import safety
from .distance import leg_km
from .entities import Actor, Cancellation, Checkpoints, Fare, Location, Ride, RideEvent
from .enums import (
    ACTION_PERMISSIONS,
    ACTION_REQUIRED_STATUS,
    ACTION_TARGET_STATUS,
    CANCEL_REASONS,
    CANCELLABLE_BY,
    REASON_REQUIRED_STATUSES,
    CancelledBy,
    EventType,
    RideAction,
    RideStatus,
    Role,
    SafetyResponse,
)
from .errors import (
    AlreadyAccepted,
    InvalidTransition,
    MissingReason,
    RideError,
    Unauthorized,
)


_DRY_RUN_POSITION = Location(address="current position")


def driver_compensation_eligible(
    moved_km: Optional[float],
    en_route_for: timedelta,
    *,
    min_km: float = 1.0,
    min_duration: timedelta = timedelta(seconds=60),
) -> bool:
    """A driver who set off is owed compensation when the rider cancels.

    Either distance driven or time spent en route qualifies; *moved_km* is
    ``None`` when no positions were reported.
    """
    if moved_km is not None and moved_km >= min_km:
        return True
    return en_route_for >= min_duration


@dataclass(frozen=True)
class Command:
    action: RideAction
    actor: Actor
    command_id: Optional[str] = None
    reason: Optional[str] = None
    response: Optional[SafetyResponse] = None
    position: Optional[Location] = None
    source: str = "manual"
    silent: bool = False


@dataclass
class TransitionOutcome:
    ride: Ride
    events: list[RideEvent] = field(default_factory=list)


class RideStateMachine:
    def __init__(
        self,
        rider_cancel_grace: timedelta = timedelta(minutes=3),
        driver_compensation_min_km: float = 1.0,
        driver_compensation_min_duration: timedelta = timedelta(seconds=60),
    ):
        self.rider_cancel_grace = rider_cancel_grace
        self.driver_compensation_min_km = driver_compensation_min_km
        self.driver_compensation_min_duration = driver_compensation_min_duration

    # ── Creation ──────────────────────────────────────────────────────

    def request(
        self,
        actor: Actor,
        *,
        pickup: Location,
        dropoff: Location,
        passenger_count: int,
        now: datetime,
        fare_estimate: Optional[float] = None,
        currency: Optional[str] = None,
        command_id: Optional[str] = None,
    ) -> TransitionOutcome:
        self._check_role(RideAction.REQUEST, actor)
        ride = Ride(
            rider_id=actor.user_id,
            pickup=pickup,
            dropoff=dropoff,
            passenger_count=passenger_count,
            checkpoints=Checkpoints(requested_at=now),
            fare=Fare(estimate=fare_estimate, currency=currency),
            idempotency_key=command_id,
        )
        event = self._status_event(ride, None, actor, now, command_id)
        event.action = RideAction.REQUEST.value
        return TransitionOutcome(ride=ride, events=[event])

    # ── Transitions ───────────────────────────────────────────────────

    def apply(self, ride: Ride, command: Command, now: datetime) -> TransitionOutcome:
        outcome = self._apply(ride, command, now)
        for event in outcome.events:
            event.action = command.action.value
        return outcome

    def _apply(self, ride: Ride, command: Command, now: datetime) -> TransitionOutcome:
        action, actor = command.action, command.actor
        self._check_role(action, actor)
        draft = copy.deepcopy(ride)

        if action is RideAction.REQUEST:
            raise InvalidTransition("A ride can only be requested once")
        if action is RideAction.TRIGGER_SAFETY_CHECK:
            event = safety.trigger_check(
                draft, actor, now, source=command.source, command_id=command.command_id
            )
            return TransitionOutcome(ride=draft, events=[event])
        if action is RideAction.RESPOND_SAFETY:
            if command.response is None:
                raise InvalidTransition("A safety response is required")
            event = safety.respond(
                draft, actor, command.response, now, command_id=command.command_id
            )
            return TransitionOutcome(ride=draft, events=[event])
        if action is RideAction.SOS:
            event = safety.sos(
                draft,
                actor,
                now,
                silent=command.silent,
                position=command.position,
                command_id=command.command_id,
            )
            return TransitionOutcome(ride=draft, events=[event])

        if action is RideAction.ACCEPT:
            self._check_accept(draft, actor)
        else:
            self._check_identity(draft, actor)

        if draft.is_terminal:
            raise InvalidTransition(f"Ride is already {draft.status.value}")

        previous = draft.status
        if action is RideAction.CANCEL:
            self._cancel(draft, command, now)
        else:
            if draft.status not in ACTION_REQUIRED_STATUS[action]:
                raise InvalidTransition(
                    f"Cannot {action.value} while ride is {draft.status.value}"
                )
            draft.transition_to(ACTION_TARGET_STATUS[action], now)
            if action is RideAction.ACCEPT:
                draft.driver_id = actor.user_id
            elif action is RideAction.START_PICKUP:
                draft.en_route_origin = command.position
            elif action is RideAction.REQUEST_EARLY_END:
                if command.position is None:
                    raise InvalidTransition("Early end needs the current position")
                draft.early_end = True
                draft.early_end_location = command.position

        return TransitionOutcome(
            ride=draft, events=self._transition_events(draft, previous, command, now)
        )

    def allowed_actions(self, ride: Ride, actor: Actor, now: datetime) -> list[RideAction]:
        """Actions *actor* could perform on *ride* right now."""
        allowed = []
        for action in RideAction:
            if action is RideAction.REQUEST:
                continue
            trial = Command(
                action=action,
                actor=actor,
                reason=CANCEL_REASONS[-1],
                response=SafetyResponse.SAFE,
                position=_DRY_RUN_POSITION,
            )
            try:
                self.apply(ride, trial, now)
            except RideError:
                continue
            allowed.append(action)
        return allowed

    # ── Guards ────────────────────────────────────────────────────────

    @staticmethod
    def _check_role(action: RideAction, actor: Actor) -> None:
        if actor.role not in ACTION_PERMISSIONS[action]:
            raise Unauthorized(f"{actor.role.value} cannot {action.value}")

    @staticmethod
    def _check_identity(ride: Ride, actor: Actor) -> None:
        if actor.role is Role.RIDER and actor.user_id != ride.rider_id:
            raise Unauthorized(f"Rider {actor.user_id} does not own ride {ride.id}")
        if actor.role is Role.DRIVER and (
            ride.driver_id is None or actor.user_id != ride.driver_id
        ):
            raise Unauthorized(
                f"Driver {actor.user_id} is not assigned to ride {ride.id}"
            )

    @staticmethod
    def _check_accept(ride: Ride, actor: Actor) -> None:
        if ride.is_terminal:
            raise InvalidTransition(f"Ride is already {ride.status.value}")
        if ride.driver_id is not None:
            if ride.driver_id == actor.user_id:
                raise InvalidTransition("Ride is already accepted by this driver")
            raise AlreadyAccepted(f"Ride {ride.id} was accepted by another driver")

    def _cancel(self, ride: Ride, command: Command, now: datetime) -> None:
        actor = command.actor
        if ride.status not in CANCELLABLE_BY[actor.role]:
            raise InvalidTransition(
                f"{actor.role.value} cannot cancel while ride is {ride.status.value}"
            )

        reason = (command.reason or "").strip() or None
        if ride.status in REASON_REQUIRED_STATUSES:
            if reason is None:
                raise MissingReason("A reason is required to cancel a trip in progress")
            if reason not in CANCEL_REASONS:
                raise MissingReason(
                    f"Reason must be one of: {', '.join(CANCEL_REASONS)}"
                )

        accepted_at = ride.checkpoints.accepted_at
        fee_applies = (
            actor.role is Role.RIDER
            and accepted_at is not None
            and now - accepted_at > self.rider_cancel_grace
        )
        compensated, moved_km = False, None
        en_route_at = ride.checkpoints.en_route_at
        if actor.role is Role.RIDER and en_route_at is not None:
            if ride.en_route_origin is not None and command.position is not None:
                moved_km = leg_km(ride.en_route_origin, command.position)
            compensated = driver_compensation_eligible(
                moved_km,
                now - en_route_at,
                min_km=self.driver_compensation_min_km,
                min_duration=self.driver_compensation_min_duration,
            )
        at = ride.transition_to(RideStatus.CANCELLED, now)
        ride.cancellation = Cancellation(
            by=CancelledBy(actor.role.value),
            reason=reason,
            at=at,
            fee_applies=fee_applies,
            driver_compensation_eligible=compensated,
            driver_moved_km=round(moved_km, 3) if moved_km is not None else None,
        )

    # ── Events ────────────────────────────────────────────────────────

    @staticmethod
    def _status_event(
        ride: Ride,
        previous: Optional[RideStatus],
        actor: Actor,
        now: datetime,
        command_id: Optional[str],
    ) -> RideEvent:
        payload = {
            "from": previous.value if previous else None,
            "to": ride.status.value,
            "actor_role": actor.role.value,
            "actor_id": actor.user_id,
            "rider_id": ride.rider_id,
            "driver_id": ride.driver_id,
        }
        if ride.cancellation is not None:
            payload["cancellation"] = {
                "by": ride.cancellation.by.value,
                "reason": ride.cancellation.reason,
                "fee_applies": ride.cancellation.fee_applies,
                "driver_compensation_eligible": (
                    ride.cancellation.driver_compensation_eligible
                ),
                "driver_moved_km": ride.cancellation.driver_moved_km,
            }
        return RideEvent(
            ride_id=ride.id,
            type=EventType.STATUS_CHANGED,
            occurred_at=now,
            command_id=command_id,
            payload=payload,
        )

    def _transition_events(
        self, ride: Ride, previous: RideStatus, command: Command, now: datetime
    ) -> list[RideEvent]:
        events = [self._status_event(ride, previous, command.actor, now, command.command_id)]
        if ride.status is RideStatus.COMPLETED:
            override = ride.early_end_location
            events.append(
                RideEvent(
                    ride_id=ride.id,
                    type=EventType.FARE_REQUESTED,
                    occurred_at=now,
                    command_id=command.command_id,
                    payload={
                        "early_end": ride.early_end,
                        "final_leg_override": asdict(override) if override else None,
                    },
                )
            )
        if ride.is_terminal:
            events.append(
                RideEvent(
                    ride_id=ride.id,
                    type=EventType.TERMINAL,
                    occurred_at=now,
                    command_id=command.command_id,
                    payload={"status": ride.status.value},
                )
            )
        return events
