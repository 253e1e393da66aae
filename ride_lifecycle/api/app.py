"""
FastAPI application factory.

* Registers routes for riders, drivers and admin.
* Builds the orchestrator and collaborators, and starts / stops the
  outbox dispatcher via lifespan events.
* Maps domain errors to JSON ``{"detail", "code"}`` responses.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_lifecycle.api.middleware import limiter
from ride_lifecycle.api.routes import admin, driver, rides
from ride_lifecycle.collaborators.fare import DistanceFareCalculator
from ride_lifecycle.collaborators.history import ArchiveTripHistory
from ride_lifecycle.collaborators.notifications import LoggingNotifier, WebhookNotifier
from ride_lifecycle.config import settings
from ride_lifecycle.domain.errors import RideError
from ride_lifecycle.domain.state_machine import RideStateMachine
from ride_lifecycle.domain.waiting import WaitingConfig
from ride_lifecycle.infrastructure.database import async_session_factory
from ride_lifecycle.infrastructure.locks import LocalRideLocks, RedisRideLocks
from ride_lifecycle.infrastructure.redis_client import close_redis, get_redis
from ride_lifecycle.services.orchestrator import RideOrchestrator
from ride_lifecycle.workers import dispatcher as _dispatcher

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _build_notifier():
    if settings.notification_webhook_url:
        return WebhookNotifier(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
    return LoggingNotifier()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the orchestrator and start the dispatch worker; stop on shutdown."""
    if getattr(app.state, "orchestrator", None) is not None:
        # injected (tests): no background worker
        yield
        return

    redis_client = None
    if settings.ride_lock_backend == "redis":
        redis_client = await get_redis()
        locks = RedisRideLocks(
            redis_client,
            ttl_seconds=settings.ride_lock_ttl_seconds,
            wait_seconds=settings.ride_lock_wait_seconds,
        )
    else:
        locks = LocalRideLocks()

    waiting_config = WaitingConfig.from_settings(settings)
    orchestrator = RideOrchestrator(
        async_session_factory,
        locks,
        state_machine=RideStateMachine(
            rider_cancel_grace=timedelta(seconds=settings.rider_cancel_grace_seconds),
            driver_compensation_min_km=settings.driver_compensation_min_km,
            driver_compensation_min_duration=timedelta(
                seconds=settings.driver_compensation_min_seconds
            ),
        ),
        waiting_config=waiting_config,
        auto_begin_matching=settings.auto_begin_matching,
        idle_alert_minutes=settings.safety_idle_alert_minutes,
        on_events=_dispatcher.wake,
    )
    notifier = _build_notifier()
    dispatcher = _dispatcher.EventDispatcher(
        async_session_factory,
        orchestrator,
        notifier,
        DistanceFareCalculator.from_settings(settings, waiting_config),
        ArchiveTripHistory(async_session_factory),
        batch_size=settings.dispatch_batch_size,
        backoff_base_seconds=settings.dispatch_backoff_base_seconds,
        backoff_max_seconds=settings.dispatch_backoff_max_seconds,
        alert_after_attempts=settings.dispatch_alert_after_attempts,
        lock_client=redis_client,
    )

    app.state.session_factory = async_session_factory
    app.state.orchestrator = orchestrator
    await _dispatcher.start_dispatch_loop(dispatcher, settings.dispatch_interval_seconds)
    yield
    await _dispatcher.stop_dispatch_loop()
    if isinstance(notifier, WebhookNotifier):
        await notifier.aclose()
    if redis_client is not None:
        await close_redis()
    app.state.orchestrator = None


async def ride_error_handler(request: Request, exc: RideError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "code": exc.code},
    )


def create_app(
    orchestrator: Optional[RideOrchestrator] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> FastAPI:
    app = FastAPI(
        title="Ride Lifecycle Orchestrator API",
        description=(
            "Owns the lifecycle of a single ride from request to completion "
            "or cancellation: role-checked transitions, waiting compensation "
            "and the in-ride safety check.  Fares, notifications and trip "
            "history are delivered through a transactional outbox."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.session_factory = session_factory or (
        orchestrator.session_factory if orchestrator else None
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(RideError, ride_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(driver.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
