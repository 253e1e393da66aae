"""
Ride View Projector
===================

Builds the rider and driver read models from one ``Ride`` value.  Both
projections are computed synchronously from the same object, so they
always agree on ``status`` and on every checkpoint; neither keeps any
state of its own.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from .entities import Actor, Cancellation, Checkpoints, Location, Ride
from .enums import (
    ACTION_REQUIRED_STATUS,
    RideAction,
    RideStatus,
    Role,
    SafetyResponse,
    SafetyState,
)
from .errors import Unauthorized
from .safety import ensure_participant
from .state_machine import RideStateMachine
from .waiting import WaitingConfig, WaitingSnapshot, waiting_for_ride


@dataclass(frozen=True)
class ParticipantCard:
    user_id: str
    name: Optional[str] = None
    rating: Optional[float] = None
    vehicle: Optional[str] = None


@dataclass(frozen=True)
class SafetyView:
    state: SafetyState
    response: Optional[SafetyResponse]
    last_check_at: Optional[datetime]
    source: Optional[str] = None


@dataclass(frozen=True)
class RiderView:
    ride_id: str
    status: RideStatus
    pickup: Location
    dropoff: Location
    passenger_count: int
    checkpoints: Checkpoints
    cancellation: Optional[Cancellation]
    fare_estimate: Optional[float]
    final_fare: Optional[float]
    currency: Optional[str]
    safety: SafetyView
    waiting: Optional[WaitingSnapshot]
    allowed_actions: list[RideAction]
    driver: Optional[ParticipantCard] = None


@dataclass(frozen=True)
class DriverView:
    ride_id: str
    status: RideStatus
    pickup: Location
    dropoff: Location
    passenger_count: int
    checkpoints: Checkpoints
    cancellation: Optional[Cancellation]
    fare_estimate: Optional[float]
    final_fare: Optional[float]
    currency: Optional[str]
    safety: SafetyView
    waiting: Optional[WaitingSnapshot]
    allowed_actions: list[RideAction]
    rider: ParticipantCard
    early_end: bool = False
    early_end_location: Optional[Location] = None
    suggest_cancel: bool = False


RideView = Union[RiderView, DriverView]


class RideViewProjector:
    def __init__(
        self,
        state_machine: Optional[RideStateMachine] = None,
        waiting_config: Optional[WaitingConfig] = None,
    ):
        self.state_machine = state_machine or RideStateMachine()
        self.waiting_config = waiting_config or WaitingConfig()

    def for_rider(
        self,
        ride: Ride,
        now: datetime,
        driver: Optional[ParticipantCard] = None,
    ) -> RiderView:
        if ride.driver_id is None:
            driver = None
        elif driver is None or driver.user_id != ride.driver_id:
            driver = ParticipantCard(user_id=ride.driver_id)
        actor = Actor(Role.RIDER, ride.rider_id)
        return RiderView(
            ride_id=ride.id,
            status=ride.status,
            pickup=ride.pickup,
            dropoff=ride.dropoff,
            passenger_count=ride.passenger_count,
            checkpoints=copy.copy(ride.checkpoints),
            cancellation=ride.cancellation,
            fare_estimate=ride.fare.estimate,
            final_fare=ride.fare.final_amount,
            currency=ride.fare.currency,
            safety=self._safety(ride),
            waiting=waiting_for_ride(ride, now, self.waiting_config),
            allowed_actions=self.state_machine.allowed_actions(ride, actor, now),
            driver=driver,
        )

    def for_driver(
        self,
        ride: Ride,
        now: datetime,
        rider: Optional[ParticipantCard] = None,
    ) -> DriverView:
        if rider is None or rider.user_id != ride.rider_id:
            rider = ParticipantCard(user_id=ride.rider_id)
        waiting = waiting_for_ride(ride, now, self.waiting_config)
        if ride.driver_id is not None:
            actions = self.state_machine.allowed_actions(
                ride, Actor(Role.DRIVER, ride.driver_id), now
            )
        else:
            actions = (
                [RideAction.ACCEPT]
                if ride.status in ACTION_REQUIRED_STATUS[RideAction.ACCEPT]
                else []
            )
        return DriverView(
            ride_id=ride.id,
            status=ride.status,
            pickup=ride.pickup,
            dropoff=ride.dropoff,
            passenger_count=ride.passenger_count,
            checkpoints=copy.copy(ride.checkpoints),
            cancellation=ride.cancellation,
            fare_estimate=ride.fare.estimate,
            final_fare=ride.fare.final_amount,
            currency=ride.fare.currency,
            safety=self._safety(ride),
            waiting=waiting,
            allowed_actions=actions,
            rider=rider,
            early_end=ride.early_end,
            early_end_location=ride.early_end_location,
            suggest_cancel=bool(waiting and waiting.expired),
        )

    def for_actor(
        self,
        ride: Ride,
        actor: Actor,
        now: datetime,
        counterpart: Optional[ParticipantCard] = None,
    ) -> RideView:
        """Projection for the caller; drivers may preview unassigned rides."""
        if actor.role is Role.RIDER:
            ensure_participant(ride, actor)
            return self.for_rider(ride, now, driver=counterpart)
        if actor.role is Role.DRIVER and ride.driver_id not in (None, actor.user_id):
            raise Unauthorized(f"Ride {ride.id} is assigned to another driver")
        return self.for_driver(ride, now, rider=counterpart)

    @staticmethod
    def _safety(ride: Ride) -> SafetyView:
        return SafetyView(
            state=ride.safety.state,
            response=ride.safety.response,
            last_check_at=ride.safety.last_check_at,
            source=ride.safety.source,
        )
