"""
Ride endpoints (rider surface plus routes shared by every role)
===============================================================

POST  /api/v1/rides                                  -- request a ride (202)
GET   /api/v1/rides/{ride_id}                        -- caller's projection
PATCH /api/v1/rides/{ride_id}/cancel                 -- cancel (rider / driver / system)
POST  /api/v1/rides/{ride_id}/safety-check           -- open a safety check
POST  /api/v1/rides/{ride_id}/safety-check/respond   -- answer it (safe / need_help)
POST  /api/v1/rides/{ride_id}/sos                    -- escalate at once (optionally silent)

The caller is identified by the ``X-User-Role`` / ``X-User-Id`` headers;
an ``Idempotency-Key`` header makes a command safe to retry.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from ride_lifecycle.api.dependencies import (
    get_actor,
    get_command_id,
    get_gateway_for,
    get_rider_gateway,
)
from ride_lifecycle.api.middleware import limiter
from ride_lifecycle.api.schemas import (
    CancelRequest,
    ErrorResponse,
    RideCreateRequest,
    RideViewResponse,
    SafetyResponseRequest,
    SosRequest,
    view_response,
)
from ride_lifecycle.domain.entities import Actor
from ride_lifecycle.services.gateways import RiderGateway, RoleGateway

router = APIRouter(
    prefix="/rides",
    tags=["rides"],
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)


@router.post(
    "",
    status_code=202,
    response_model=RideViewResponse,
    summary="Request a ride",
    responses={202: {"description": "Ride requested; matching is async."}},
)
@limiter.limit("100/minute")
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    actor: Actor = Depends(get_actor),
    gateway: RiderGateway = Depends(get_rider_gateway),
    command_id: Optional[str] = Depends(get_command_id),
):
    view = await gateway.request(
        actor,
        pickup=body.pickup.to_domain(),
        dropoff=body.dropoff.to_domain(),
        passenger_count=body.passenger_count,
        fare_estimate=body.fare_estimate,
        currency=body.currency,
        command_id=body.idempotency_key or command_id,
    )
    return view_response(view)


@router.get(
    "/{ride_id}",
    response_model=RideViewResponse,
    summary="Get the caller's view of a ride, including the waiting phase",
)
@limiter.limit("600/minute")
async def get_ride(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_actor),
    gateway: RoleGateway = Depends(get_gateway_for),
):
    return view_response(await gateway.view(actor, ride_id))


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideViewResponse,
    summary="Cancel a ride",
    description=(
        "Riders may cancel until the trip starts; drivers from acceptance "
        "until completion.  Cancelling a trip in progress needs a reason."
    ),
    responses={422: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def cancel_ride(
    request: Request,
    ride_id: str,
    body: Optional[CancelRequest] = None,
    actor: Actor = Depends(get_actor),
    gateway: RoleGateway = Depends(get_gateway_for),
    command_id: Optional[str] = Depends(get_command_id),
):
    reason = body.reason if body else None
    driver_position = (
        body.driver_position.to_domain() if body and body.driver_position else None
    )
    view = await gateway.cancel(
        actor,
        ride_id,
        reason=reason,
        command_id=command_id,
        driver_position=driver_position,
    )
    return view_response(view)


@router.post(
    "/{ride_id}/safety-check",
    response_model=RideViewResponse,
    summary="Open a safety check on an active ride",
)
@limiter.limit("100/minute")
async def trigger_safety_check(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_actor),
    gateway: RoleGateway = Depends(get_gateway_for),
    command_id: Optional[str] = Depends(get_command_id),
):
    view = await gateway.trigger_safety_check(actor, ride_id, command_id=command_id)
    return view_response(view)


@router.post(
    "/{ride_id}/safety-check/respond",
    response_model=RideViewResponse,
    summary="Answer a pending safety check",
)
@limiter.limit("100/minute")
async def respond_safety_check(
    request: Request,
    ride_id: str,
    body: SafetyResponseRequest,
    actor: Actor = Depends(get_actor),
    gateway: RoleGateway = Depends(get_gateway_for),
    command_id: Optional[str] = Depends(get_command_id),
):
    view = await gateway.respond_safety(
        actor, ride_id, body.response, command_id=command_id
    )
    return view_response(view)


@router.post(
    "/{ride_id}/sos",
    response_model=RideViewResponse,
    summary="Raise an SOS on an active ride",
    description=(
        "Escalates immediately without a check step.  A silent SOS alerts "
        "operations and the emergency contact but not the other party."
    ),
)
@limiter.limit("100/minute")
async def raise_sos(
    request: Request,
    ride_id: str,
    body: Optional[SosRequest] = None,
    actor: Actor = Depends(get_actor),
    gateway: RoleGateway = Depends(get_gateway_for),
    command_id: Optional[str] = Depends(get_command_id),
):
    body = body or SosRequest()
    view = await gateway.sos(
        actor,
        ride_id,
        silent=body.silent,
        position=body.position.to_domain() if body.position else None,
        command_id=command_id,
    )
    return view_response(view)
