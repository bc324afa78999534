"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from venue_waitlist.controllers.availability_controller import router as availability_router
from venue_waitlist.controllers.operations_controller import router as operations_router
from venue_waitlist.controllers.reservation_controller import router as reservation_router
from venue_waitlist.controllers.waitlist_controller import router as waitlist_router
from venue_waitlist.repository.data_repository import DataRepository
from venue_waitlist.services.auth_service import AuthService
from venue_waitlist.services.availability_service import AvailabilityService
from venue_waitlist.services.notification_service import (
    NotificationDispatcher,
    RateLimitedNotifier,
    build_notification_dispatcher,
)
from venue_waitlist.services.promotion_service import PromotionOrchestrator
from venue_waitlist.services.rate_limiter import TokenBucketRateLimiter
from venue_waitlist.services.report_service import ReportService
from venue_waitlist.services.reservation_service import TemporaryReservationService
from venue_waitlist.services.waitlist_service import WaitlistService
from venue_waitlist.utils.config import Settings, get_settings
from venue_waitlist.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Every dependency is constructed here; there are no module-level singletons.
    """
    settings = settings or get_settings()

    # --- Repository (SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Notification collaborator ---
    dispatcher = dispatcher or build_notification_dispatcher(repository, settings)
    rate_limiter = TokenBucketRateLimiter(
        capacity=settings.notification_rate_capacity,
        refill_per_second=settings.notification_rate_refill_per_second,
    )

    # --- Services (business logic, no direct SQL) ---
    availability_service = AvailabilityService(repository=repository)
    reservation_service = TemporaryReservationService(
        repository=repository,
        availability_service=availability_service,
        settings=settings,
    )
    waitlist_service = WaitlistService(repository=repository, settings=settings)
    promotion_orchestrator = PromotionOrchestrator(
        repository=repository,
        availability_service=availability_service,
        waitlist_service=waitlist_service,
        reservation_service=reservation_service,
        dispatcher=dispatcher,
        rate_limiter=rate_limiter,
        settings=settings,
    )
    report_service = ReportService(
        repository=repository,
        notifier=RateLimitedNotifier(dispatcher, rate_limiter),
        settings=settings,
    )
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(operations_router)
    app.include_router(availability_router)
    app.include_router(reservation_router)
    app.include_router(waitlist_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.availability_service = availability_service
    app.state.reservation_service = reservation_service
    app.state.waitlist_service = waitlist_service
    app.state.promotion_orchestrator = promotion_orchestrator
    app.state.report_service = report_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before seeding; seeding is skipped when spaces exist.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo spaces and clients (skipped if already present)")
        repository.seed_demo_data_if_empty()

    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()
