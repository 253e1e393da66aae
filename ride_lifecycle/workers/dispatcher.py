"""
Background Outbox Dispatcher
============================

Runs every ``DISPATCH_INTERVAL_SECONDS`` (default 2 s), or immediately
when the orchestrator commits new events.

Delivery contract
-----------------
* At-least-once: an event is marked ``dispatched_at`` only after its
  collaborator returned.  Consumers de-duplicate on the event id.
* A failure never rolls back the ride.  It is a ``DeliveryFailed``: logged,
  ``attempts`` incremented and ``next_attempt_at`` pushed back by capped
  exponential backoff.  Events are never dropped; past
  ``DISPATCH_ALERT_AFTER_ATTEMPTS`` every failure is logged at ERROR.
* No DB transaction is held while a collaborator is called.

Concurrency safety
------------------
When Redis is configured a **distributed lock** ensures only one instance
runs a dispatch cycle at a time across API processes.

Routing per cycle
-----------------
1. Fetch due events (undelivered, ``next_attempt_at <= now``).
2. Order by creation time; a ride's fare request precedes its archival.
3. ``ride.fare_requested``  -> fare collaborator -> ``record_fare``
   ``ride.terminal``        -> trip-history collaborator
   everything else          -> notification collaborator (escalations get
                               the rider's emergency contact)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_lifecycle.collaborators.fare import FareCollaborator
from ride_lifecycle.collaborators.history import TripHistoryCollaborator
from ride_lifecycle.collaborators.notifications import (
    NotificationCollaborator,
    build_notification,
)
from ride_lifecycle.domain.entities import Location, utcnow
from ride_lifecycle.domain.enums import EventType, RideStatus
from ride_lifecycle.domain.errors import DeliveryFailed
from ride_lifecycle.domain.safety import EMERGENCY_CONTACT
from ride_lifecycle.infrastructure.locks import DistributedLock
from ride_lifecycle.infrastructure.repositories import (
    RideEventRepository,
    UserRepository,
)
from ride_lifecycle.services.orchestrator import RideOrchestrator

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None
_wake_event: asyncio.Event | None = None

# within one timestamp, archival goes last
_TYPE_ORDER = {EventType.TERMINAL.value: 1}


@dataclass(frozen=True)
class PendingEvent:
    id: str
    ride_id: str
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    attempts: int = 0


class EventDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orchestrator: RideOrchestrator,
        notifier: NotificationCollaborator,
        fare: FareCollaborator,
        history: TripHistoryCollaborator,
        *,
        clock: Callable[[], datetime] = utcnow,
        batch_size: int = 100,
        backoff_base_seconds: float = 2.0,
        backoff_max_seconds: float = 300.0,
        alert_after_attempts: int = 5,
        lock_client=None,
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator
        self.notifier = notifier
        self.fare = fare
        self.history = history
        self.clock = clock
        self.batch_size = batch_size
        self.backoff_base = backoff_base_seconds
        self.backoff_max = backoff_max_seconds
        self.alert_after = alert_after_attempts
        self.lock_client = lock_client

    def backoff(self, attempts: int) -> timedelta:
        delay = self.backoff_base * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(delay, self.backoff_max))

    async def run_cycle(self) -> int:
        """Execute one dispatch cycle.  Returns the number of events delivered."""
        lock = None
        if self.lock_client is not None:
            lock = DistributedLock(self.lock_client, "event_dispatcher", ttl_seconds=60)
            if not await lock.acquire():
                logger.debug("Lock held by another dispatcher – skipping cycle")
                return 0
        try:
            return await self._dispatch_due()
        finally:
            if lock is not None:
                await lock.release()

    async def _dispatch_due(self) -> int:
        async with self.session_factory() as session:
            rows = await RideEventRepository(session).get_due(
                self.clock(), self.batch_size
            )
            due = [
                PendingEvent(
                    id=r.id,
                    ride_id=r.ride_id,
                    type=r.type,
                    payload=dict(r.payload or {}),
                    created_at=r.created_at,
                    attempts=r.attempts,
                )
                for r in rows
            ]
        due.sort(key=lambda e: (e.created_at, _TYPE_ORDER.get(e.type, 0)))

        delivered = 0
        for event in due:
            try:
                await self.handle(event)
            except Exception as exc:
                await self._record_failure(event, exc)
            else:
                await self._record_success(event)
                delivered += 1

        if delivered:
            logger.info("Dispatch cycle: %d events delivered", delivered)
        return delivered

    async def handle(self, event: PendingEvent) -> None:
        if event.type == EventType.FARE_REQUESTED.value:
            await self._finalize_fare(event)
        elif event.type == EventType.TERMINAL.value:
            await self._archive(event)
        else:
            await self._notify(event)

    async def _notify(self, event: PendingEvent) -> None:
        contact = None
        if EMERGENCY_CONTACT in event.payload.get("alert_targets", []):
            rider_id = event.payload.get("rider_id")
            async with self.session_factory() as session:
                contact = await UserRepository(session).get_emergency_contact(rider_id)
            if contact is None:
                logger.warning(
                    "Rider %s has no emergency contact on file; alerting ride %s without it",
                    rider_id,
                    event.ride_id,
                )
        await self.notifier.deliver(
            build_notification(
                event.id, event.ride_id, event.type, event.payload, contact
            )
        )

    async def _finalize_fare(self, event: PendingEvent) -> None:
        ride = await self.orchestrator.get_ride(event.ride_id)
        override = event.payload.get("final_leg_override")
        result = await self.fare.compute_fare(
            ride, final_leg_override=Location(**override) if override else None
        )
        await self.orchestrator.record_fare(ride.id, result, event_id=event.id)

    async def _archive(self, event: PendingEvent) -> None:
        ride = await self.orchestrator.get_ride(event.ride_id)
        if ride.status is RideStatus.COMPLETED and ride.fare.final_amount is None:
            raise DeliveryFailed(f"Ride {ride.id} has no final fare yet")
        await self.history.archive(ride.snapshot(), event.id)

    async def _record_success(self, event: PendingEvent) -> None:
        async with self.session_factory() as session:
            row = await RideEventRepository(session).get_by_id(event.id)
            row.dispatched_at = self.clock()
            row.last_error = None
            await session.commit()

    async def _record_failure(self, event: PendingEvent, exc: Exception) -> None:
        attempts = event.attempts + 1
        retry_at = self.clock() + self.backoff(attempts)
        async with self.session_factory() as session:
            row = await RideEventRepository(session).get_by_id(event.id)
            row.attempts = attempts
            row.last_error = str(exc)[:1000]
            row.next_attempt_at = retry_at
            await session.commit()

        if attempts >= self.alert_after:
            logger.error(
                "Event %s (%s) for ride %s still undelivered after %d attempts: %s",
                event.id, event.type, event.ride_id, attempts, exc,
            )
        else:
            logger.warning(
                "Delivery of %s (%s) for ride %s failed (attempt %d), retry at %s: %s",
                event.id, event.type, event.ride_id, attempts, retry_at.isoformat(), exc,
            )


# ── Public API ────────────────────────────────────────────────────────


async def start_dispatch_loop(dispatcher: EventDispatcher, interval: float) -> None:
    global _task, _stop_event, _wake_event
    _stop_event = asyncio.Event()
    _wake_event = asyncio.Event()
    _task = asyncio.create_task(_loop(dispatcher, interval))
    logger.info("Dispatch worker started (interval=%.1fs)", interval)


async def stop_dispatch_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _wake_event:
        _wake_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Dispatch worker stopped")


def wake(*_args) -> None:
    """Ask the loop to run a cycle now (called after a command commits)."""
    if _wake_event is not None:
        _wake_event.set()


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(dispatcher: EventDispatcher, interval: float) -> None:
    """Periodic loop: run a dispatch cycle then sleep or wait for a wake-up."""
    assert _stop_event is not None and _wake_event is not None
    while not _stop_event.is_set():
        try:
            await dispatcher.run_cycle()
        except Exception:
            logger.exception("Unhandled error in dispatch cycle")
        try:
            await asyncio.wait_for(_wake_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass  # next cycle
        _wake_event.clear()
