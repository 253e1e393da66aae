"""
Role Action Gateways
====================

Capability-restricted facades over ``RideOrchestrator``.  A gateway only
exposes the actions its role may request and refuses callers of another
role.  The state machine then re-checks role and identity against the
ride itself, whichever gateway the command came through.

Every command returns the caller's refreshed projection.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ride_lifecycle.domain.entities import Actor, Location
from ride_lifecycle.domain.enums import RideAction, Role, SafetyResponse
from ride_lifecycle.domain.errors import Unauthorized
from ride_lifecycle.domain.projections import RideView
from ride_lifecycle.domain.state_machine import Command

from .orchestrator import RideOrchestrator


class RoleGateway:
    role: Role
    actions: frozenset[RideAction] = frozenset()

    def __init__(self, orchestrator: RideOrchestrator):
        self.orchestrator = orchestrator

    def _check(self, actor: Actor, action: RideAction) -> None:
        if actor.role is not self.role:
            raise Unauthorized(
                f"{actor.role.value} cannot use the {self.role.value} gateway"
            )
        if action not in self.actions:
            raise Unauthorized(f"{self.role.value} cannot {action.value}")

    async def _run(
        self, actor: Actor, ride_id: str, action: RideAction, **kwargs
    ) -> RideView:
        self._check(actor, action)
        ride = await self.orchestrator.execute(
            ride_id, Command(action=action, actor=actor, **kwargs)
        )
        return await self.orchestrator.project(ride, actor)

    async def view(self, actor: Actor, ride_id: str) -> RideView:
        if actor.role is not self.role:
            raise Unauthorized(
                f"{actor.role.value} cannot use the {self.role.value} gateway"
            )
        return await self.orchestrator.view(ride_id, actor)

    async def cancel(
        self,
        actor: Actor,
        ride_id: str,
        reason: Optional[str] = None,
        command_id: Optional[str] = None,
        driver_position: Optional[Location] = None,
    ) -> RideView:
        """Cancel; *driver_position* measures how far a driver en route got."""
        return await self._run(
            actor,
            ride_id,
            RideAction.CANCEL,
            reason=reason,
            position=driver_position,
            command_id=command_id,
        )

    async def trigger_safety_check(
        self, actor: Actor, ride_id: str, command_id: Optional[str] = None
    ) -> RideView:
        return await self._run(
            actor, ride_id, RideAction.TRIGGER_SAFETY_CHECK, command_id=command_id
        )

    async def respond_safety(
        self,
        actor: Actor,
        ride_id: str,
        response: SafetyResponse,
        command_id: Optional[str] = None,
    ) -> RideView:
        return await self._run(
            actor,
            ride_id,
            RideAction.RESPOND_SAFETY,
            response=response,
            command_id=command_id,
        )

    async def sos(
        self,
        actor: Actor,
        ride_id: str,
        silent: bool = False,
        position: Optional[Location] = None,
        command_id: Optional[str] = None,
    ) -> RideView:
        return await self._run(
            actor,
            ride_id,
            RideAction.SOS,
            silent=silent,
            position=position,
            command_id=command_id,
        )


class RiderGateway(RoleGateway):
    role = Role.RIDER
    actions = frozenset(
        {
            RideAction.REQUEST,
            RideAction.CANCEL,
            RideAction.TRIGGER_SAFETY_CHECK,
            RideAction.RESPOND_SAFETY,
            RideAction.SOS,
        }
    )

    async def request(
        self,
        actor: Actor,
        *,
        pickup: Location,
        dropoff: Location,
        passenger_count: int = 1,
        fare_estimate: Optional[float] = None,
        currency: Optional[str] = None,
        command_id: Optional[str] = None,
    ) -> RideView:
        self._check(actor, RideAction.REQUEST)
        ride = await self.orchestrator.request_ride(
            actor,
            pickup=pickup,
            dropoff=dropoff,
            passenger_count=passenger_count,
            fare_estimate=fare_estimate,
            currency=currency,
            command_id=command_id,
        )
        return await self.orchestrator.project(ride, actor)


class DriverGateway(RoleGateway):
    role = Role.DRIVER
    actions = frozenset(
        {
            RideAction.ACCEPT,
            RideAction.START_PICKUP,
            RideAction.MARK_ARRIVED,
            RideAction.START_WAITING,
            RideAction.START_TRIP,
            RideAction.COMPLETE_TRIP,
            RideAction.REQUEST_EARLY_END,
            RideAction.CANCEL,
            RideAction.TRIGGER_SAFETY_CHECK,
            RideAction.RESPOND_SAFETY,
            RideAction.SOS,
        }
    )

    async def accept(self, actor: Actor, ride_id: str, command_id: Optional[str] = None):
        return await self._run(actor, ride_id, RideAction.ACCEPT, command_id=command_id)

    async def start_pickup(
        self,
        actor: Actor,
        ride_id: str,
        command_id: Optional[str] = None,
        position: Optional[Location] = None,
    ):
        return await self._run(
            actor,
            ride_id,
            RideAction.START_PICKUP,
            position=position,
            command_id=command_id,
        )

    async def mark_arrived(self, actor: Actor, ride_id: str, command_id: Optional[str] = None):
        return await self._run(
            actor, ride_id, RideAction.MARK_ARRIVED, command_id=command_id
        )

    async def start_waiting(self, actor: Actor, ride_id: str, command_id: Optional[str] = None):
        return await self._run(
            actor, ride_id, RideAction.START_WAITING, command_id=command_id
        )

    async def start_trip(self, actor: Actor, ride_id: str, command_id: Optional[str] = None):
        return await self._run(actor, ride_id, RideAction.START_TRIP, command_id=command_id)

    async def complete_trip(self, actor: Actor, ride_id: str, command_id: Optional[str] = None):
        return await self._run(
            actor, ride_id, RideAction.COMPLETE_TRIP, command_id=command_id
        )

    async def request_early_end(
        self,
        actor: Actor,
        ride_id: str,
        position: Location,
        command_id: Optional[str] = None,
    ) -> RideView:
        return await self._run(
            actor,
            ride_id,
            RideAction.REQUEST_EARLY_END,
            position=position,
            command_id=command_id,
        )


class SystemGateway(RoleGateway):
    """Server-side actor: matching service, policies, stall detection."""

    role = Role.SYSTEM
    actions = frozenset(
        {
            RideAction.BEGIN_MATCHING,
            RideAction.CANCEL,
            RideAction.TRIGGER_SAFETY_CHECK,
        }
    )

    async def begin_matching(self, actor: Actor, ride_id: str, command_id: Optional[str] = None):
        return await self._run(
            actor, ride_id, RideAction.BEGIN_MATCHING, command_id=command_id
        )

    async def check_idle(self, actor: Actor, ride_id: str, last_movement_at: datetime) -> bool:
        self._check(actor, RideAction.TRIGGER_SAFETY_CHECK)
        return await self.orchestrator.check_idle(ride_id, last_movement_at)
