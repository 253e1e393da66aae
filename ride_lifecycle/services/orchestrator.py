"""
Ride Lifecycle Orchestrator
===========================

Single writer for every ride.  A command goes through::

    per-ride lock -> load -> replay check -> RideStateMachine.apply
        -> versioned UPDATE + outbox INSERT (one transaction) -> commit
        -> wake the dispatcher

Concurrency safety
------------------
* **Per-ride lock** (``LocalRideLocks`` / ``RedisRideLocks``) serialises
  commands on one ride without touching any other ride.
* **Optimistic version** on the ride row catches writers from other
  processes; the command is re-read and re-validated, so the loser of an
  ``accept`` race sees the winner's driver and gets ``AlreadyAccepted``.
* **Replay check**: a ``command_id`` that already produced outbox events
  for the same action returns the current ride and writes nothing; reused
  for a different action it is rejected with ``InvalidTransition``.

Network I/O (fares, notifications, archival) never runs inside a command;
it is driven from the outbox by ``ride_lifecycle.workers.dispatcher``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_lifecycle.domain.entities import Actor, Location, Ride, RideEvent, utcnow
from ride_lifecycle.domain.enums import EventType, RideAction, Role
from ride_lifecycle.domain.errors import InvalidTransition, NotFound, Unauthorized
from ride_lifecycle.domain.projections import RideView, RideViewProjector
from ride_lifecycle.domain.safety import should_trigger_idle_alert
from ride_lifecycle.domain.state_machine import (
    Command,
    RideStateMachine,
    TransitionOutcome,
)
from ride_lifecycle.domain.waiting import WaitingConfig
from ride_lifecycle.infrastructure.locks import LocalRideLocks
from ride_lifecycle.infrastructure.repositories import (
    RideEventRepository,
    RideRepository,
    StaleRideError,
    UserRepository,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = Actor(Role.SYSTEM, "system")

EventsListener = Callable[[list[RideEvent]], None]
Builder = Callable[[Ride, RideEventRepository], Awaitable[Optional[TransitionOutcome]]]


class RideOrchestrator:
    max_conflict_retries = 3

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks=None,
        *,
        state_machine: Optional[RideStateMachine] = None,
        waiting_config: Optional[WaitingConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        auto_begin_matching: bool = True,
        idle_alert_minutes: int = 4,
        on_events: Optional[EventsListener] = None,
    ):
        self.session_factory = session_factory
        self.locks = locks or LocalRideLocks()
        self.state_machine = state_machine or RideStateMachine()
        self.waiting_config = waiting_config or WaitingConfig()
        self.projector = RideViewProjector(self.state_machine, self.waiting_config)
        self.clock = clock
        self.auto_begin_matching = auto_begin_matching
        self.idle_alert_minutes = idle_alert_minutes
        self.on_events = on_events

    # ── Commands ──────────────────────────────────────────────────────

    async def request_ride(
        self,
        actor: Actor,
        *,
        pickup: Location,
        dropoff: Location,
        passenger_count: int = 1,
        fare_estimate: Optional[float] = None,
        currency: Optional[str] = None,
        command_id: Optional[str] = None,
    ) -> Ride:
        """Create a ride; a repeated ``command_id`` returns the original."""
        if command_id:
            existing = await self._get_by_idempotency_key(command_id)
            if existing is not None:
                return self._replayed_request(existing, actor)

        now = self.clock()
        outcome = self.state_machine.request(
            actor,
            pickup=pickup,
            dropoff=dropoff,
            passenger_count=passenger_count,
            now=now,
            fare_estimate=fare_estimate,
            currency=currency,
            command_id=command_id,
        )
        ride, events = outcome.ride, list(outcome.events)
        if self.auto_begin_matching:
            matching = self.state_machine.apply(
                ride, Command(RideAction.BEGIN_MATCHING, SYSTEM_ACTOR), now
            )
            ride = matching.ride
            events.extend(matching.events)

        try:
            async with self.session_factory() as session:
                await RideRepository(session).add(ride)
                RideEventRepository(session).add_all(events)
                await session.commit()
        except IntegrityError:
            if not command_id:
                raise
            # lost a race with the same idempotency key
            existing = await self._get_by_idempotency_key(command_id)
            if existing is None:
                raise
            return self._replayed_request(existing, actor)

        logger.info("Ride %s requested by rider %s", ride.id, actor.user_id)
        self._announce(events)
        return ride

    async def execute(self, ride_id: str, command: Command) -> Ride:
        """Validate and apply one gateway command under the ride's lock."""

        async def build(ride: Ride, events: RideEventRepository):
            if command.command_id:
                applied = await events.get_command_action(ride.id, command.command_id)
                if applied is not None:
                    if applied != command.action.value:
                        raise InvalidTransition(
                            f"Command id {command.command_id} was already used "
                            f"for {applied} on ride {ride.id}"
                        )
                    logger.info(
                        "Command %s already applied to ride %s",
                        command.command_id,
                        ride.id,
                    )
                    return None
            return self.state_machine.apply(ride, command, self.clock())

        before, outcome = await self._write(ride_id, build, command.command_id)
        if outcome is None:
            return before
        self._log_transition(before, outcome.ride, command)
        self._announce(outcome.events)
        return outcome.ride

    async def record_fare(self, ride_id: str, result, event_id: str) -> Ride:
        """Store the fare collaborator's result; the only fare write path."""

        async def build(ride: Ride, events: RideEventRepository):
            if ride.fare.breakdown.get("fare_event_id") == event_id:
                return None
            fare = replace(
                ride.fare,
                final_amount=result.amount,
                currency=result.currency,
                breakdown={**result.breakdown, "fare_event_id": event_id},
            )
            return TransitionOutcome(ride=replace(ride, fare=fare))

        before, outcome = await self._write(ride_id, build)
        if outcome is None:
            return before
        logger.info(
            "Final fare %.2f %s recorded for ride %s",
            result.amount,
            result.currency,
            ride_id,
        )
        return outcome.ride

    async def check_idle(self, ride_id: str, last_movement_at: datetime) -> bool:
        """Raise a system safety check if the trip has stalled."""
        ride = await self.get_ride(ride_id)
        if not should_trigger_idle_alert(
            ride.status,
            ride.safety.state,
            ride.safety.last_check_at,
            last_movement_at,
            self.clock(),
            self.idle_alert_minutes,
        ):
            return False
        command = Command(
            action=RideAction.TRIGGER_SAFETY_CHECK,
            actor=SYSTEM_ACTOR,
            source="idle_alert",
            command_id=f"idle:{last_movement_at.isoformat()}",
        )
        await self.execute(ride_id, command)
        return True

    # ── Reads (no lock, no side effects) ──────────────────────────────

    async def get_ride(self, ride_id: str) -> Ride:
        async with self.session_factory() as session:
            ride = await RideRepository(session).get_by_id(ride_id)
        if ride is None:
            raise NotFound(f"Ride {ride_id} not found")
        return ride

    async def view(self, ride_id: str, actor: Actor) -> RideView:
        return await self.project(await self.get_ride(ride_id), actor)

    async def project(self, ride: Ride, actor: Actor) -> RideView:
        """Role-appropriate projection of *ride*, with the counterpart's card."""
        counterpart_id = ride.driver_id if actor.role is Role.RIDER else ride.rider_id
        async with self.session_factory() as session:
            counterpart = await UserRepository(session).get_card(counterpart_id)
        return self.projector.for_actor(ride, actor, self.clock(), counterpart)

    async def active_escalations(self) -> list[Ride]:
        async with self.session_factory() as session:
            return await RideRepository(session).get_active_escalations()

    # ── Internals ─────────────────────────────────────────────────────

    async def _write(
        self, ride_id: str, build: Builder, command_id: Optional[str] = None
    ) -> tuple[Ride, Optional[TransitionOutcome]]:
        async with self.locks.hold(ride_id):
            for attempt in range(1, self.max_conflict_retries + 1):
                async with self.session_factory() as session:
                    rides = RideRepository(session)
                    events = RideEventRepository(session)
                    ride = await rides.get_by_id(ride_id)
                    if ride is None:
                        raise NotFound(f"Ride {ride_id} not found")

                    outcome = await build(ride, events)
                    if outcome is None:
                        return ride, None
                    try:
                        await rides.save(outcome.ride, expected_version=ride.version)
                        events.add_all(outcome.events)
                        await session.commit()
                    except StaleRideError:
                        await session.rollback()
                        logger.info(
                            "Ride %s changed concurrently, rechecking (attempt %d)",
                            ride_id,
                            attempt,
                        )
                        continue
                    except IntegrityError:
                        await session.rollback()
                        # only a concurrent write of the same command is retried
                        if not command_id or not await self._command_recorded(
                            ride_id, command_id
                        ):
                            raise
                        logger.info(
                            "Command %s on ride %s committed elsewhere, rechecking",
                            command_id,
                            ride_id,
                        )
                        continue
                return ride, outcome
        raise InvalidTransition(f"Ride {ride_id} is busy, retry the command")

    async def _command_recorded(self, ride_id: str, command_id: str) -> bool:
        async with self.session_factory() as session:
            action = await RideEventRepository(session).get_command_action(
                ride_id, command_id
            )
        return action is not None

    async def _get_by_idempotency_key(self, key: str) -> Optional[Ride]:
        async with self.session_factory() as session:
            return await RideRepository(session).get_by_idempotency_key(key)

    @staticmethod
    def _replayed_request(ride: Ride, actor: Actor) -> Ride:
        if ride.rider_id != actor.user_id:
            raise Unauthorized("Idempotency key belongs to another rider")
        return ride

    @staticmethod
    def _log_transition(before: Ride, after: Ride, command: Command) -> None:
        if before.status is not after.status:
            logger.info(
                "Ride %s: %s -> %s by %s %s",
                after.id,
                before.status.value,
                after.status.value,
                command.actor.role.value,
                command.actor.user_id,
            )
        if before.safety.state is not after.safety.state:
            logger.info(
                "Ride %s safety: %s -> %s by %s",
                after.id,
                before.safety.state.value,
                after.safety.state.value,
                command.actor.role.value,
            )

    def _announce(self, events: list[RideEvent]) -> None:
        if self.on_events is not None and events:
            self.on_events(events)
        for event in events:
            if event.type is EventType.SAFETY_ESCALATED:
                logger.warning(
                    "Safety escalation on ride %s queued for alert (event %s)",
                    event.ride_id,
                    event.id,
                )
