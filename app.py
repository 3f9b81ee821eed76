"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the booking engine services, registers routers, and runs startup
initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.availability_controller import router as availability_router
from backend.controllers.booking_controller import router as booking_router
from backend.repository.data_repository import DataRepository
from backend.services.availability_service import AvailabilityService, validate_settings
from backend.services.booking_service import BookingService
from backend.services.pricing_service import PricingService
from backend.services.slot_finder_service import AlternativeSlotFinder
from backend.utils.config import Settings, get_settings
from backend.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service is created here and injected through app.state, so the
    whole dependency graph is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Repository (SQLite occupancy provider and booking writer) ---
    repository = DataRepository(settings)

    # --- Services ---
    availability_service = AvailabilityService(
        occupancy_provider=repository,
        settings=settings,
    )
    slot_finder = AlternativeSlotFinder(
        availability_service=availability_service,
        settings=settings,
    )
    pricing_service = PricingService(
        repository=repository,
        settings=settings,
    )
    booking_service = BookingService(
        repository=repository,
        availability_service=availability_service,
        slot_finder=slot_finder,
        pricing_service=pricing_service,
        settings=settings,
    )

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
    app.include_router(availability_router)
    app.include_router(booking_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.availability_service = availability_service
    app.state.slot_finder = slot_finder
    app.state.pricing_service = pricing_service
    app.state.booking_service = booking_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Settings are validated before anything touches the store.
      2. Schema and overlap triggers must exist before seeding.
      3. Demo data is only inserted into an empty store.
    """
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository

    logger.info("Startup: validating engine settings")
    validate_settings(settings)

    logger.info(
        "Startup: initializing database schema | %s",
        format_fields(database_path=settings.database_path),
    )
    repository.initialize_database()

    if settings.seed_demo_data:
        seeded = repository.seed_demo_data_if_empty()
        logger.info("Startup: demo data seeding | %s", format_fields(bookings=seeded))

    logger.info("Startup complete, booking engine ready")


# Module-level app object for uvicorn
app = create_app()
