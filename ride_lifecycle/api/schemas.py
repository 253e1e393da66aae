"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ride_lifecycle.domain.entities import Location
from ride_lifecycle.domain.enums import CANCEL_REASONS, SafetyResponse
from ride_lifecycle.domain.projections import RiderView, RideView


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(BaseModel):
    address: str = Field(..., min_length=1, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    def to_domain(self) -> Location:
        return Location(
            address=self.address, latitude=self.latitude, longitude=self.longitude
        )


class RideCreateRequest(BaseModel):
    pickup: LocationIn
    dropoff: LocationIn
    passenger_count: int = Field(1, ge=1, le=8)
    fare_estimate: Optional[float] = Field(
        None, ge=0, description="Quote from the fare service, forwarded as-is."
    )
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(
        None,
        max_length=255,
        description=(
            "Optional before the trip starts; required once in progress and "
            f"then one of: {', '.join(CANCEL_REASONS)}."
        ),
    )
    driver_position: Optional[LocationIn] = Field(
        None,
        description="Last reported driver position, to measure how far they drove.",
    )


class SafetyResponseRequest(BaseModel):
    response: SafetyResponse


class SosRequest(BaseModel):
    silent: bool = Field(
        False, description="Alert operations without notifying the other party."
    )
    position: Optional[LocationIn] = None


class StartPickupRequest(BaseModel):
    position: Optional[LocationIn] = None


class EarlyEndRequest(BaseModel):
    position: LocationIn


# ── Responses ─────────────────────────────────────────────────────────


class LocationOut(BaseModel):
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    model_config = {"from_attributes": True}


class CheckpointsOut(BaseModel):
    requested_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    en_route_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    waiting_started_at: Optional[datetime] = None
    in_progress_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CancellationOut(BaseModel):
    by: str
    reason: Optional[str] = None
    at: datetime
    fee_applies: bool = False
    driver_compensation_eligible: bool = False
    driver_moved_km: Optional[float] = None

    model_config = {"from_attributes": True}


class SafetyOut(BaseModel):
    state: str
    response: Optional[str] = None
    last_check_at: Optional[datetime] = None
    source: Optional[str] = None

    model_config = {"from_attributes": True}


class WaitingOut(BaseModel):
    phase: str
    started_at: datetime
    elapsed_seconds: float
    remaining_in_phase_seconds: float


class ParticipantOut(BaseModel):
    user_id: str
    name: Optional[str] = None
    rating: Optional[float] = None
    vehicle: Optional[str] = None

    model_config = {"from_attributes": True}


class RideViewResponse(BaseModel):
    """Role-specific projection; fields the caller's role does not see are null."""

    ride_id: str
    role: str
    status: str
    pickup: LocationOut
    dropoff: LocationOut
    passenger_count: int
    checkpoints: CheckpointsOut
    cancellation: Optional[CancellationOut] = None
    fare_estimate: Optional[float] = None
    final_fare: Optional[float] = None
    currency: Optional[str] = None
    safety: SafetyOut
    waiting: Optional[WaitingOut] = None
    allowed_actions: list[str] = []
    driver: Optional[ParticipantOut] = None
    rider: Optional[ParticipantOut] = None
    early_end: Optional[bool] = None
    early_end_location: Optional[LocationOut] = None
    suggest_cancel: Optional[bool] = None


class EscalationResponse(BaseModel):
    ride_id: str
    status: str
    rider_id: str
    driver_id: Optional[str] = None
    responded_by: Optional[str] = None
    last_check_at: Optional[datetime] = None


class OutboxResponse(BaseModel):
    pending: int
    oldest_pending_at: Optional[datetime] = None


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str


# ── Domain -> response mapping ────────────────────────────────────────


def _location_out(location) -> Optional[LocationOut]:
    if location is None:
        return None
    return LocationOut(
        address=location.address,
        latitude=location.latitude,
        longitude=location.longitude,
    )


def _participant_out(card) -> Optional[ParticipantOut]:
    if card is None:
        return None
    return ParticipantOut(
        user_id=card.user_id, name=card.name, rating=card.rating, vehicle=card.vehicle
    )


def view_response(view: RideView) -> RideViewResponse:
    waiting = None
    if view.waiting is not None:
        waiting = WaitingOut(
            phase=view.waiting.phase.value,
            started_at=view.waiting.started_at,
            elapsed_seconds=view.waiting.elapsed.total_seconds(),
            remaining_in_phase_seconds=view.waiting.remaining_in_phase.total_seconds(),
        )
    cancellation = None
    if view.cancellation is not None:
        cancellation = CancellationOut(
            by=view.cancellation.by.value,
            reason=view.cancellation.reason,
            at=view.cancellation.at,
            fee_applies=view.cancellation.fee_applies,
            driver_compensation_eligible=(
                view.cancellation.driver_compensation_eligible
            ),
            driver_moved_km=view.cancellation.driver_moved_km,
        )
    cp = view.checkpoints
    response = RideViewResponse(
        ride_id=view.ride_id,
        role="rider" if isinstance(view, RiderView) else "driver",
        status=view.status.value,
        pickup=_location_out(view.pickup),
        dropoff=_location_out(view.dropoff),
        passenger_count=view.passenger_count,
        checkpoints=CheckpointsOut(
            requested_at=cp.requested_at,
            accepted_at=cp.accepted_at,
            en_route_at=cp.en_route_at,
            arrived_at=cp.arrived_at,
            waiting_started_at=cp.waiting_started_at,
            in_progress_at=cp.in_progress_at,
            completed_at=cp.completed_at,
            cancelled_at=cp.cancelled_at,
        ),
        cancellation=cancellation,
        fare_estimate=view.fare_estimate,
        final_fare=view.final_fare,
        currency=view.currency,
        safety=SafetyOut(
            state=view.safety.state.value,
            response=view.safety.response.value if view.safety.response else None,
            last_check_at=view.safety.last_check_at,
            source=view.safety.source,
        ),
        waiting=waiting,
        allowed_actions=[a.value for a in view.allowed_actions],
    )
    if isinstance(view, RiderView):
        response.driver = _participant_out(view.driver)
    else:
        response.rider = _participant_out(view.rider)
        response.early_end = view.early_end
        response.early_end_location = _location_out(view.early_end_location)
        response.suggest_cancel = view.suggest_cancel
    return response
