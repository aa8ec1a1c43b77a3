"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the ledger and services, registers routers, and runs startup
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

from transit_inventory.controllers.inventory_controller import router as inventory_router
from transit_inventory.controllers.pricing_controller import router as pricing_router
from transit_inventory.repository.data_repository import DataRepository
from transit_inventory.services.admission_service import AdmissionService
from transit_inventory.services.availability_service import AvailabilityService
from transit_inventory.services.pricing_service import PricingEstimationService
from transit_inventory.utils.config import Settings, get_settings
from transit_inventory.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Every service shares one repository, so admission and reads hit the same ledger.
    """
    settings = settings or get_settings()
    configure_logging()

    repository = DataRepository(settings)

    availability_service = AvailabilityService(repository=repository, settings=settings)
    admission_service = AdmissionService(
        repository=repository,
        settings=settings,
        availability_service=availability_service,
    )
    pricing_service = PricingEstimationService(
        repository=repository,
        settings=settings,
        availability_service=availability_service,
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

    app.include_router(inventory_router)
    app.include_router(pricing_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": settings.app_version}

    app.state.settings = settings
    app.state.repository = repository
    app.state.availability_service = availability_service
    app.state.admission_service = admission_service
    app.state.pricing_service = pricing_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before seeding; seeding is skipped once routes exist.
    """
    repository: DataRepository = app.state.repository
    settings: Settings = app.state.settings

    logger.info("Startup: initializing ledger schema | path=%s", repository.database_path)
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo corridors, routes and pricing (skipped if routes exist)")
        repository.seed_demo_data()

    logger.info("Startup complete | app=%s | version=%s", settings.app_name, settings.app_version)


# Module-level app object for uvicorn
app = create_app()
