"""LifeFlow Request Core — FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map LifeFlowError -> structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Every component is built once in the lifespan and stored on app.state
    - Shutdown order: sweeper, matching tasks, httpx clients, database

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - One httpx.AsyncClient per collaborator base URL (connection pooling)
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lifeflow.api.error_handlers import register_error_handlers
from lifeflow.api.routes import blood_requests, health
from lifeflow.config import Settings, get_settings
from lifeflow.core.circuit_breaker import CircuitBreakerRegistry
from lifeflow.infrastructure.database import init_db
from lifeflow.infrastructure.downstream_gateway import (
    DownstreamGateway, breaker_configs_from_settings, retry_policy_from_settings,
)
from lifeflow.infrastructure.event_bus import OutboxEventBus
from lifeflow.infrastructure.http_collaborators import (
    HttpAnalyticsClient, HttpDonorClient, HttpGeolocationClient,
    HttpInventoryClient, HttpNotificationClient,
)
from lifeflow.infrastructure.observability import setup_logging
from lifeflow.infrastructure.request_store import SqlAlchemyRequestStore
from lifeflow.services.deadline_sweeper import DeadlineSweeper
from lifeflow.services.matching_engine import MatchingEngine
from lifeflow.services.request_lifecycle import RequestLifecycle

logger = logging.getLogger(__name__)


def _http_clients(settings: Settings) -> dict[str, httpx.AsyncClient]:
    timeout = httpx.Timeout(settings.downstream_timeout_seconds)
    urls = {
        "inventory": settings.inventory_service_url,
        "donor": settings.donor_service_url,
        "geolocation": settings.geolocation_service_url,
        "notification": settings.notification_service_url,
        "analytics": settings.analytics_service_url,
    }
    return {
        name: httpx.AsyncClient(base_url=url, timeout=timeout)
        for name, url in urls.items()
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    db = init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    if settings.database_auto_create:
        await db.create_all()

    clients = _http_clients(settings)
    gateway = DownstreamGateway(
        CircuitBreakerRegistry(breaker_configs_from_settings(settings)),
        inventory=HttpInventoryClient(clients["inventory"]),
        donors=HttpDonorClient(clients["donor"]),
        geolocation=HttpGeolocationClient(clients["geolocation"]),
        notifications=HttpNotificationClient(clients["notification"]),
        analytics=HttpAnalyticsClient(clients["analytics"]),
        retry=retry_policy_from_settings(settings),
        timeout_seconds=settings.downstream_timeout_seconds,
    )
    store = SqlAlchemyRequestStore(db)
    lifecycle = RequestLifecycle(
        store,
        OutboxEventBus(db),
        MatchingEngine(
            gateway,
            max_results=settings.matching_max_results,
            max_concurrency=settings.matching_max_concurrency,
        ),
        gateway,
    )
    sweeper = DeadlineSweeper(
        store, lifecycle, interval_seconds=settings.sweeper_interval_seconds,
    )

    app.state.db = db
    app.state.gateway = gateway
    app.state.lifecycle = lifecycle
    app.state.sweeper = sweeper
    if settings.sweeper_enabled:
        sweeper.start()
    logger.info("LifeFlow request core started")

    yield

    logger.info("LifeFlow request core shutting down")
    await sweeper.stop()
    await lifecycle.shutdown()
    for client in clients.values():
        await client.aclose()
    await db.dispose()


app = FastAPI(
    title="LifeFlow Request Core", version="1.0.0", lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(blood_requests.router)
app.include_router(blood_requests.responses_router)

register_error_handlers(app)
