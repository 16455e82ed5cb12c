"""
app.py - FastAPI application factory and startup lifecycle.

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

from booking_engine.controllers.booking_controller import router as booking_router
from booking_engine.controllers.facility_controller import router as facility_router
from booking_engine.repository.booking_repository import BookingRepository
from booking_engine.services.availability_service import AvailabilityService
from booking_engine.services.facility_service import FacilityService
from booking_engine.services.scheduling_service import BookingSchedulingService
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Club and facility context always arrive as request parameters; nothing
    here holds per-tenant state.
    """
    settings = settings or get_settings()

    # --- Repository (SQLite booking store) ---
    repository = BookingRepository(settings)

    # --- Services (business logic, no direct SQL) ---
    availability_service = AvailabilityService(repository=repository, settings=settings)
    facility_service = FacilityService(repository=repository, settings=settings)
    scheduling_service = BookingSchedulingService(repository=repository, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(facility_router)
    app.include_router(booking_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.availability_service = availability_service
    app.state.facility_service = facility_service
    app.state.scheduling_service = scheduling_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before the optional demo facilities are seeded.
    """
    repository: BookingRepository = app.state.repository
    settings: Settings = app.state.settings

    logger.info("Startup: initializing booking store schema")
    repository.initialize_database()

    if settings.seed_demo_facilities:
        logger.info("Startup: seeding demo facilities (skipped if any facility exists)")
        repository.seed_demo_facilities_if_empty()

    logger.info("Startup complete - booking engine ready")


# Module-level app object for uvicorn
app = create_app()
