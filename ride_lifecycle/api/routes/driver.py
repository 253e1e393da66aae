"""
Driver endpoints
================

POST /api/v1/driver/rides/{ride_id}/accept
POST /api/v1/driver/rides/{ride_id}/start-pickup  -- body: optional starting position
POST /api/v1/driver/rides/{ride_id}/arrive
POST /api/v1/driver/rides/{ride_id}/start-waiting
POST /api/v1/driver/rides/{ride_id}/start-trip
POST /api/v1/driver/rides/{ride_id}/complete
POST /api/v1/driver/rides/{ride_id}/early-end    -- body: current position

Cancel, safety and read routes are shared with riders under ``/rides``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from ride_lifecycle.api.dependencies import get_actor, get_command_id, get_driver_gateway
from ride_lifecycle.api.middleware import limiter
from ride_lifecycle.api.schemas import (
    EarlyEndRequest,
    ErrorResponse,
    RideViewResponse,
    StartPickupRequest,
    view_response,
)
from ride_lifecycle.domain.entities import Actor
from ride_lifecycle.services.gateways import DriverGateway

router = APIRouter(
    prefix="/driver/rides",
    tags=["driver"],
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)

# path segment -> DriverGateway method
_SIMPLE_ACTIONS = {
    "accept": "accept",
    "arrive": "mark_arrived",
    "start-waiting": "start_waiting",
    "start-trip": "start_trip",
    "complete": "complete_trip",
}


def _register(segment: str, method: str) -> None:
    async def endpoint(
        request: Request,
        ride_id: str,
        actor: Actor = Depends(get_actor),
        gateway: DriverGateway = Depends(get_driver_gateway),
        command_id: Optional[str] = Depends(get_command_id),
    ):
        view = await getattr(gateway, method)(actor, ride_id, command_id=command_id)
        return view_response(view)

    # the limiter keys on the function name, so name it before decorating
    endpoint.__name__ = endpoint.__qualname__ = f"driver_{method}"
    router.add_api_route(
        f"/{{ride_id}}/{segment}",
        limiter.limit("100/minute")(endpoint),
        methods=["POST"],
        response_model=RideViewResponse,
        summary=method.replace("_", " ").capitalize(),
    )


for _segment, _method in _SIMPLE_ACTIONS.items():
    _register(_segment, _method)


@router.post(
    "/{ride_id}/start-pickup",
    response_model=RideViewResponse,
    summary="Start driving to the pickup",
    description="The optional position is where the driver set off from.",
)
@limiter.limit("100/minute")
async def start_pickup(
    request: Request,
    ride_id: str,
    body: Optional[StartPickupRequest] = None,
    actor: Actor = Depends(get_actor),
    gateway: DriverGateway = Depends(get_driver_gateway),
    command_id: Optional[str] = Depends(get_command_id),
):
    position = body.position.to_domain() if body and body.position else None
    view = await gateway.start_pickup(
        actor, ride_id, command_id=command_id, position=position
    )
    return view_response(view)


@router.post(
    "/{ride_id}/early-end",
    response_model=RideViewResponse,
    summary="End the trip at the current position",
    description="Completes the ride; the fare is recomputed from the actual end point.",
)
@limiter.limit("100/minute")
async def request_early_end(
    request: Request,
    ride_id: str,
    body: EarlyEndRequest,
    actor: Actor = Depends(get_actor),
    gateway: DriverGateway = Depends(get_driver_gateway),
    command_id: Optional[str] = Depends(get_command_id),
):
    view = await gateway.request_early_end(
        actor, ride_id, body.position.to_domain(), command_id=command_id
    )
    return view_response(view)
