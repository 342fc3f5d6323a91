"""
Org Users API Server

Entry point for the FastAPI application.
"""

from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from orgusers.api.v1 import router as api_v1_router
from orgusers.core.config import Settings, get_settings
from orgusers.core.database import init_db
from orgusers.core.errors import register_error_handlers
from orgusers.core.logging import configure_logging
from orgusers.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware

log = structlog.get_logger()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    An explicit ``settings`` replaces the environment-derived settings for
    every handler dependency of this app instance. The database engine is
    not rebuilt: it always uses ``database_url`` from the environment.
    """
    injected = settings is not None
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Org Users",
        description="Organization membership management.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    if injected:
        app.dependency_overrides[get_settings] = lambda: settings

    # Middleware: last added is outermost
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Request-Id"],
    )
    app.add_middleware(RequestContextMiddleware)

    register_error_handlers(app)

    app.include_router(api_v1_router, prefix="/api")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint for startup probes."""
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        log.info("orgusers.starting", access_control=settings.access_control_enabled)
        await init_db()

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("orgusers.shutting_down")

    return app


app = create_app()


def run() -> None:
    """CLI entry point for the server."""
    settings = get_settings()
    uvicorn.run("orgusers.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
