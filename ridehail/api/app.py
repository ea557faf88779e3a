"""
FastAPI application factory.

* Registers routes for rides, drivers, riders and admin.
* Wires services (store, Redis notifier/offers, OSRM oracle) unless the
  caller passes its own ``Services``.
* Starts / stops the offer-expiry worker via lifespan events and drains
  detached tasks on shutdown.
* Applies rate-limiting and maps domain errors to HTTP responses.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ridehail.api.errors import register_error_handlers
from ridehail.api.middleware import limiter
from ridehail.api.routes import admin, drivers, riders, rides
from ridehail.config import settings
from ridehail.infrastructure import tasks
from ridehail.infrastructure.database import async_session_factory, engine
from ridehail.infrastructure.notifier import RedisNotifier
from ridehail.infrastructure.offers import RedisOfferStore
from ridehail.infrastructure.redis_client import close_redis, get_redis
from ridehail.infrastructure.routing import OSRMRouteOracle
from ridehail.services.container import Services, build_services
from ridehail.workers.offer_expiry import OfferExpiryWorker

logging.basicConfig(level=settings.log_level)


def default_services() -> Services:
    return build_services(
        settings,
        async_session_factory,
        notifier=RedisNotifier(get_redis),
        offers=RedisOfferStore(get_redis),
        router=OSRMRouteOracle(
            settings.osrm_base_url, timeout=settings.route_timeout_seconds
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry worker on startup; stop it and flush tasks on shutdown."""
    worker: Optional[OfferExpiryWorker] = app.state.worker
    if worker:
        await worker.start()
    yield
    if worker:
        await worker.stop()
    await tasks.drain()
    await close_redis()
    await engine.dispose()


def create_app(
    services: Optional[Services] = None,
    worker: Optional[OfferExpiryWorker] = None,
    run_worker: bool = True,
) -> FastAPI:
    app = FastAPI(
        title="Ride Hailing Dispatch API",
        description=(
            "Books rides, races offers to nearby drivers, and moves each "
            "ride through requested → accepted → picked_up → completed "
            "with wallet settlement."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.services = services or default_services()
    if worker is None and run_worker:
        worker = OfferExpiryWorker(
            app.state.services.lifecycle.sessions,
            app.state.services.lifecycle,
            get_redis,
            offer_ttl_seconds=settings.offer_ttl_seconds,
            interval_seconds=settings.offer_sweep_interval_seconds,
        )
    app.state.worker = worker

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_error_handlers(app)

    # Routers
    for module in (rides, drivers, riders, admin):
        app.include_router(module.router, prefix="/api/v1")

    return app
