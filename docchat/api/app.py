"""
FastAPI application factory and configuration.

This module creates the application with CORS, routers, exception handlers
and a lifespan that wires the core components into ``app.state``.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from docchat import __version__
from docchat.api.dependencies import ServiceContainer
from docchat.api.endpoints import router as api_router
from docchat.api.exceptions import setup_exception_handlers
from docchat.api.models import SystemHealthResponse
from docchat.config.settings import settings
from docchat.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        services: Pre-built components; wired from settings at startup when omitted

    Returns:
        FastAPI: Configured application instance
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting document chat API", environment=settings.environment)
        app.state.services = services or ServiceContainer.from_settings()
        logger.info("API startup completed", data_dir=str(settings.data_dir))
        yield
        logger.info("API shutdown completed")

    app = FastAPI(
        title="Document Chat API",
        description=(
            "Upload text documents, index them into named vector stores and hold "
            "multi-turn conversations grounded on the retrieved chunks."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    setup_middleware(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    setup_exception_handlers(app)
    setup_custom_routes(app)

    return app


def setup_middleware(app: FastAPI) -> None:
    """Set up middleware for the FastAPI application."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )


def setup_custom_routes(app: FastAPI) -> None:
    """Root and health routes outside the API prefix."""

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": "Document Chat API",
            "version": __version__,
            "docs_url": "/docs",
            "api_prefix": settings.api_prefix,
        }

    @app.get("/health", response_model=SystemHealthResponse)
    async def health_check(request: Request):
        services: Optional[ServiceContainer] = getattr(request.app.state, "services", None)
        if services is None:
            return SystemHealthResponse(status="starting", uptime=0.0)
        return SystemHealthResponse(
            status="healthy",
            uptime=(datetime.now(timezone.utc) - services.started_at).total_seconds(),
            resident_stores=services.registry.resident_stores(),
        )
