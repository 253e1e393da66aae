"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: enforces valid lifecycle transitions
  (REQUESTED -> MATCHING -> ACCEPTED -> ... -> COMPLETED | CANCELLED) and
  stamps exactly one immutable checkpoint per entered state.
- ``Checkpoints`` keeps timestamps monotonically non-decreasing even when
  the wall clock steps backwards.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import TypeAdapter

from .enums import (
    RIDE_TRANSITIONS,
    TERMINAL_STATUSES,
    CancelledBy,
    EventType,
    RideStatus,
    Role,
    SafetyResponse,
    SafetyState,
)
from .errors import InvalidTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class Actor:
    """Identity/session context supplied with every gateway call."""

    role: Role
    user_id: str


@dataclass(frozen=True)
class Cancellation:
    by: CancelledBy
    reason: Optional[str]
    at: datetime
    fee_applies: bool = False
    # rider cancelled after the driver set off
    driver_compensation_eligible: bool = False
    driver_moved_km: Optional[float] = None


# status -> checkpoint attribute stamped on entry
STATUS_CHECKPOINTS: dict[RideStatus, str] = {
    RideStatus.REQUESTED: "requested_at",
    RideStatus.ACCEPTED: "accepted_at",
    RideStatus.DRIVER_EN_ROUTE: "en_route_at",
    RideStatus.ARRIVED: "arrived_at",
    RideStatus.WAITING: "waiting_started_at",
    RideStatus.IN_PROGRESS: "in_progress_at",
    RideStatus.COMPLETED: "completed_at",
    RideStatus.CANCELLED: "cancelled_at",
}

# checkpoint -> checkpoint that must already be set
CHECKPOINT_PREREQUISITES: dict[str, str] = {
    "accepted_at": "requested_at",
    "en_route_at": "accepted_at",
    "arrived_at": "en_route_at",
    "waiting_started_at": "arrived_at",
    "in_progress_at": "arrived_at",
    "completed_at": "in_progress_at",
    "cancelled_at": "requested_at",
}


@dataclass
class Checkpoints:
    requested_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    en_route_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    waiting_started_at: Optional[datetime] = None
    in_progress_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    def latest(self) -> Optional[datetime]:
        stamps = [getattr(self, f.name) for f in fields(self)]
        stamps = [s for s in stamps if s is not None]
        return max(stamps) if stamps else None

    def stamp(self, name: str, at: datetime) -> datetime:
        """Set checkpoint *name* once; returns the stored timestamp."""
        if getattr(self, name) is not None:
            raise InvalidTransition(f"Checkpoint {name} is already set")
        required = CHECKPOINT_PREREQUISITES.get(name)
        if required and getattr(self, required) is None:
            raise InvalidTransition(f"Cannot set {name} before {required}")
        latest = self.latest()
        if latest is not None and at < latest:
            at = latest
        setattr(self, name, at)
        return at


@dataclass
class Fare:
    """Opaque fare data forwarded to and from the fare collaborator."""

    estimate: Optional[float] = None
    final_amount: Optional[float] = None
    currency: Optional[str] = None
    breakdown: dict[str, Any] = field(default_factory=dict)


@dataclass
class SafetyCheck:
    state: SafetyState = SafetyState.IDLE
    last_check_at: Optional[datetime] = None
    response: Optional[SafetyResponse] = None
    requested_by: Optional[Role] = None
    responded_by: Optional[Role] = None
    source: Optional[str] = None


@dataclass
class RideEvent:
    """Outbox record emitted by a committed transition."""

    ride_id: str
    type: EventType
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    command_id: Optional[str] = None
    action: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


# ── Aggregate root ────────────────────────────────────────────────────


@dataclass
class Ride:
    rider_id: str
    pickup: Location
    dropoff: Location
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    passenger_count: int = 1
    status: RideStatus = RideStatus.REQUESTED
    driver_id: Optional[str] = None
    checkpoints: Checkpoints = field(default_factory=Checkpoints)
    cancellation: Optional[Cancellation] = None
    fare: Fare = field(default_factory=Fare)
    safety: SafetyCheck = field(default_factory=SafetyCheck)
    early_end: bool = False
    early_end_location: Optional[Location] = None
    en_route_origin: Optional[Location] = None
    idempotency_key: Optional[str] = None
    version: int = 0

    def __post_init__(self):
        if self.passenger_count < 1:
            raise ValueError("passenger_count must be a positive integer")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition_to(self, new_status: RideStatus, at: datetime) -> datetime:
        """Move to *new_status* if the transition is legal, else raise.

        Returns the checkpoint timestamp actually stored.
        """
        allowed = RIDE_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransition(
                f"Cannot transition from {self.status.value} to {new_status.value}"
            )
        checkpoint = STATUS_CHECKPOINTS.get(new_status)
        if checkpoint is not None:
            at = self.checkpoints.stamp(checkpoint, at)
        self.status = new_status
        return at

    def snapshot(self) -> dict[str, Any]:
        """JSON-friendly copy of the ride, used for archival."""
        return _SNAPSHOT_ADAPTER.dump_python(self, mode="json")


_SNAPSHOT_ADAPTER = TypeAdapter(Ride)
