"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from incident_agent.core.config import Settings, get_settings
from incident_agent.core.intake import IncidentValidationError
from incident_agent.core.logging import get_logger
from incident_agent.core.runner import IncidentRuntime
from incident_agent.db.engine import StoreUnavailableError

logger = get_logger("api")


def create_app(
    runtime: Optional[IncidentRuntime] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    A runtime passed in is used as-is and left to its owner to start and
    stop; otherwise the app builds one from ``settings`` and manages it.
    """
    owns_runtime = runtime is None
    if runtime is None:
        settings = settings or get_settings()
        runtime = IncidentRuntime(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: create tables and start the worker, stop on shutdown."""
        logger.info("api_starting")
        if owns_runtime:
            await runtime.start(with_worker=runtime.settings.api_run_worker)
        yield
        if owns_runtime:
            await runtime.stop(timeout=10.0)
        logger.info("api_shutdown")

    app = FastAPI(
        title="Incident Autopilot",
        description="Automated incident diagnosis, analysis and mitigation pipeline",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    @app.exception_handler(IncidentValidationError)
    async def _validation_error(request: Request, exc: IncidentValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors)})

    @app.exception_handler(StoreUnavailableError)
    async def _store_unavailable(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        logger.error("store_unavailable", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=503, content={"detail": "Store unavailable"})

    # Register routes
    from incident_agent.api.routes import events, health, incidents

    app.include_router(health.router, tags=["health"])
    app.include_router(incidents.router, prefix="/api", tags=["incidents"])
    app.include_router(events.router, tags=["events"])

    return app
