"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride_lifecycle.domain.entities import Actor
from ride_lifecycle.domain.enums import Role
from ride_lifecycle.services.gateways import DriverGateway, RiderGateway, SystemGateway
from ride_lifecycle.services.orchestrator import RideOrchestrator


async def get_db(request: Request) -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_actor(
    x_user_role: str = Header(..., description="rider | driver | system"),
    x_user_id: str = Header(..., min_length=1, max_length=64),
) -> Actor:
    """Identity supplied by the upstream session layer, re-checked per ride."""
    try:
        role = Role(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role {x_user_role!r}")
    return Actor(role=role, user_id=x_user_id)


def get_command_id(
    idempotency_key: Optional[str] = Header(None, max_length=64),
) -> Optional[str]:
    return idempotency_key


def get_orchestrator(request: Request) -> RideOrchestrator:
    return request.app.state.orchestrator


def get_rider_gateway(
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> RiderGateway:
    return RiderGateway(orchestrator)


def get_driver_gateway(
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> DriverGateway:
    return DriverGateway(orchestrator)


def get_gateway_for(
    actor: Actor = Depends(get_actor),
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
):
    """Gateway matching the caller's role (shared cancel / safety / read routes)."""
    gateways = {
        Role.RIDER: RiderGateway,
        Role.DRIVER: DriverGateway,
        Role.SYSTEM: SystemGateway,
    }
    return gateways[actor.role](orchestrator)
