"""
FastAPI Application Entry Point.

Hosts the transport auto-dispatch worker and its ops endpoints.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from ride_dispatch.app.core.config import settings
from ride_dispatch.app.core.observability import ObservabilityMiddleware, configure_logging
from ride_dispatch.app.core.redis_client import redis_client, ping_redis
from ride_dispatch.app.api.v1.router import router as api_v1_router
from ride_dispatch.app.db.session import engine, Base, AsyncSessionLocal
from ride_dispatch.app.services.realtime import RedisNotifier
from ride_dispatch.app.workers.auto_dispatch import build_scheduler
from ride_dispatch.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from ride_dispatch.app.models.user import User
from ride_dispatch.app.models.trip import TransportTrip
from ride_dispatch.app.models.driver_live_location import DriverLiveLocation
from ride_dispatch.app.models.audit_log import AuditLog
from ride_dispatch.app.models.notification import Notification


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Builds the auto-dispatch scheduler and starts it when enabled.
    3. Stops the scheduler and closes Redis on shutdown.
    """
    configure_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    scheduler = build_scheduler(
        AsyncSessionLocal,
        notifier=RedisNotifier(redis_client),
        interval_seconds=settings.dispatch_interval_seconds,
    )
    app.state.dispatch_scheduler = scheduler
    if settings.auto_dispatch_enabled:
        scheduler.start()

    yield

    await scheduler.stop()
    await redis_client.aclose()


app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Automated driver dispatch for paid transport trips",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information, dispatcher state and Redis reachability
    """
    scheduler = getattr(app.state, "dispatch_scheduler", None)
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "auto_dispatch": scheduler.state if scheduler else "stopped",
        "redis": "up" if await ping_redis() else "down",
    }


app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
