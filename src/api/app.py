"""
FastAPI application factory.

* Wires the ride engine for the configured storage / event backends.
* Rebuilds the pending queue and starts the optional dispatch worker via
  lifespan events.
* Maps lifecycle errors to HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.dependencies import build_dispatch_lock_factory, build_ride_engine
from src.api.middleware import limiter
from src.api.routes import admin, drivers, rides, users
from src.config import Settings, settings
from src.domain.exceptions import (
    AlreadyMatched,
    ConcurrentUpdate,
    DriverUnavailable,
    InvalidRideState,
    InvalidTransition,
    NotFound,
    RideError,
)
from src.domain.lifecycle import RideEngine
from src.workers import matcher as _matcher

logger = logging.getLogger(__name__)

_STATUS_CODES: dict[type[RideError], int] = {
    NotFound: 404,
    InvalidTransition: 409,
    AlreadyMatched: 409,
    ConcurrentUpdate: 409,
    InvalidRideState: 409,
    DriverUnavailable: 409,
}


async def _ride_error_handler(request: Request, exc: RideError) -> JSONResponse:
    status_code = _STATUS_CODES.get(type(exc), 400)
    logger.info("%s %s -> %d %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(
        status_code=status_code, content={"detail": str(exc), "error": exc.kind}
    )


async def _value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=422, content={"detail": str(exc), "error": "invalid_value"}
    )


def create_app(
    ride_engine: Optional[RideEngine] = None, config: Settings = settings
) -> FastAPI:
    logging.basicConfig(level=config.log_level)

    cleanups = []
    if ride_engine is None:
        ride_engine, cleanups = build_ride_engine(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Restore the pending queue; run the dispatch worker if enabled."""
        await ride_engine.restore()
        shutdown = list(cleanups)
        if config.auto_dispatch_enabled:
            lock_factory, lock_cleanups = build_dispatch_lock_factory(config)
            shutdown.extend(c for c in lock_cleanups if c not in shutdown)
            await _matcher.start_dispatch_loop(
                ride_engine, config.auto_dispatch_interval_seconds, lock_factory
            )
        yield
        if config.auto_dispatch_enabled:
            await _matcher.stop_dispatch_loop()
        for cleanup in shutdown:
            await cleanup()

    app = FastAPI(
        title=config.app_name,
        description=(
            "Ride request queue, priority matching and dual-confirmation "
            "completion for a ride-hailing app.  Higher-rated riders are "
            "matched first; a ride completes only once rider and driver "
            "both confirm."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.ride_engine = ride_engine

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Lifecycle errors
    app.add_exception_handler(RideError, _ride_error_handler)
    app.add_exception_handler(ValueError, _value_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(users.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
