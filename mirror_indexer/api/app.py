"""
FastAPI application factory.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mirror_indexer import __version__
from mirror_indexer.api.routes import health, refresh
from mirror_indexer.indexer.registry import IndexerRegistry
from mirror_indexer.observability.logging import bind_context, clear_context
from mirror_indexer.storage.database import Database

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Indexer API starting up")
    yield
    logger.info("Indexer API shutting down")


def create_app(
    registry: IndexerRegistry | None = None,
    database: Database | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        registry: Registry whose workers receive refresh requests
        database: Database reported by the health endpoint

    Returns:
        Configured FastAPI application
    """
    openapi_tags = [
        {"name": "health", "description": "Service health checks"},
        {"name": "refresh", "description": "Force re-indexing of a subject"},
    ]

    app = FastAPI(
        title="Mirror Indexer API",
        description="Force refresh and health endpoints for the content indexer.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        openapi_tags=openapi_tags,
    )
    app.state.registry = registry
    app.state.database = database

    # Request logging and correlation ID middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = (
            request.headers.get("X-Request-ID")
            or request.headers.get("X-Correlation-ID")
            or str(uuid.uuid4())
        )
        bind_context(request_id=request_id)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
            duration = time.perf_counter() - start_time
            response.headers["X-Request-ID"] = request_id

            logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )
            return response
        finally:
            clear_context()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_type": "internal"},
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(refresh.router, tags=["refresh"])

    return app
