"""Organisation reference data API: FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from orgdata.config import Settings, get_settings
from orgdata.middleware import (
    configure_cors,
    configure_error_handlers,
    configure_rate_limiting,
    lifespan,
    logging_middleware,
)
from orgdata.routers import health, organisations
from orgdata.service import OrganisationService


def create_app(settings: Settings | None = None, service: OrganisationService | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Without a `service`, one is built from `settings` when the app starts.
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        description="Health and care organisation reference data",
        version=settings.app_version,
        lifespan=lifespan,
    )

    # Store settings and service on app state
    app.state.settings = settings
    app.state.service = service

    # Middleware
    app.middleware("http")(logging_middleware)
    configure_cors(app, settings)
    configure_rate_limiting(app, settings)
    configure_error_handlers(app)

    # Routers
    app.include_router(health.router)
    app.include_router(organisations.router, prefix=settings.api_prefix)

    return app


# Default app instance for uvicorn
app = create_app()
