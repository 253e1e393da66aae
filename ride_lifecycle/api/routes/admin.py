"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health       -- simple health check
GET /api/v1/admin/escalations  -- active rides with an escalated safety check
GET /api/v1/admin/outbox       -- undelivered event backlog
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride_lifecycle.api.dependencies import get_db, get_orchestrator
from ride_lifecycle.api.middleware import limiter
from ride_lifecycle.api.schemas import EscalationResponse, HealthResponse, OutboxResponse
from ride_lifecycle.infrastructure.repositories import RideEventRepository
from ride_lifecycle.services.orchestrator import RideOrchestrator

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/escalations",
    response_model=list[EscalationResponse],
    summary="List active rides whose safety check escalated",
)
@limiter.limit("100/minute")
async def get_escalations(
    request: Request,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
):
    rides = await orchestrator.active_escalations()
    return [
        EscalationResponse(
            ride_id=r.id,
            status=r.status.value,
            rider_id=r.rider_id,
            driver_id=r.driver_id,
            responded_by=r.safety.responded_by.value if r.safety.responded_by else None,
            last_check_at=r.safety.last_check_at,
        )
        for r in rides
    ]


@router.get(
    "/outbox",
    response_model=OutboxResponse,
    summary="Undelivered outbox events",
)
@limiter.limit("100/minute")
async def get_outbox(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    repo = RideEventRepository(db)
    return OutboxResponse(
        pending=await repo.count_pending(),
        oldest_pending_at=await repo.oldest_pending_at(),
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
