"""
FastAPI application factory.

* Registers routes for rides, drivers, users, admin and live updates.
* Starts / stops the request-expiry worker via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
import logging
from typing import Optional

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ladies_drive.api.errors import register_error_handlers
from ladies_drive.api.middleware import limiter
from ladies_drive.api.routes import admin, drivers, live, rides, users
from ladies_drive.config import settings
from ladies_drive.infrastructure.factory import build_store
from ladies_drive.infrastructure.store import DocumentStore
from ladies_drive.services.dispatch import DispatchCoordinator
from ladies_drive.services.lifecycle import RideLifecycleManager
from ladies_drive.services.rating import RatingAggregator
from ladies_drive.services.users import UserService
from ladies_drive.workers import expiry as _expiry

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry worker on startup; stop on shutdown."""
    if settings.expiry_worker_enabled:
        redis = None
        if settings.change_feed_backend == "redis":
            from ladies_drive.infrastructure.redis_client import get_redis

            redis = get_redis()
        await _expiry.start_expiry_loop(app.state.lifecycle, redis)
    yield
    if settings.expiry_worker_enabled:
        await _expiry.stop_expiry_loop()


def create_app(store: Optional[DocumentStore] = None) -> FastAPI:
    app = FastAPI(
        title="Ladies Drive API",
        description=(
            "Ride lifecycle, dispatch and ratings for a women-only "
            "ride-hailing service.  Drivers accept requests from a live "
            "feed; the first accept wins."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Services
    store = store or build_store(settings)
    expiry = settings.search_expiry_minutes
    app.state.store = store
    app.state.lifecycle = RideLifecycleManager(
        store,
        enforce_single_active_ride=settings.enforce_single_active_ride,
        search_expiry=timedelta(minutes=expiry) if expiry else None,
        default_city=settings.default_city,
    )
    app.state.dispatch = DispatchCoordinator(store)
    app.state.ratings = RatingAggregator(store)
    app.state.users = UserService(store)

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_error_handlers(app)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(users.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(live.router, prefix="/api/v1")

    return app
