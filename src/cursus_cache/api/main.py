"""
Main FastAPI Application for the Cursus cache service

Wires the cache services, middleware, exception handlers and the
``/api/cache`` routers.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from ..shared.caching import KeyValueStore, StoreUnavailableError
from ..shared.config import get_config_summary, get_settings
from ..shared.logging_config import LoggingConfig, get_logger
from .dependencies import CacheServices, error_response
from .middleware import LoggingMiddleware
from .routers import alerts, cleanup, invalidate, metrics


logger = get_logger(__name__, 'api')


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    services: CacheServices = app.state.services
    logger.info("Starting Cursus cache service", operation="startup", config=get_config_summary())

    try:
        await services.store.connect()
    except StoreUnavailableError as e:
        # Serve uncached; the store reconnects lazily on the next operation
        logger.error(f"Store unavailable at startup: {e}", operation="startup")

    yield

    logger.info("Shutting down Cursus cache service", operation="shutdown")
    await services.invalidation.drain()
    await services.store.disconnect()


def create_app(store: Optional[KeyValueStore] = None) -> FastAPI:
    """Build the application around a store (the configured backend by default)."""
    settings = get_settings()

    app = FastAPI(
        title=settings.api.api_title,
        description=settings.api.api_description,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )
    app.state.services = CacheServices.build(store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions with the API error envelope."""
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed requests are client errors."""
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        return error_response(400, "Invalid request", details)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Unexpected errors are logged with traceback and reported as 500."""
        logger.exception(f"Unhandled exception: {exc}", operation="unhandled_exception", path=request.url.path)
        return error_response(500, "Internal server error", str(exc))

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Store connectivity plus cache health derived from the metrics."""
        services: CacheServices = request.app.state.services
        store_ok = await services.cache.ping()
        cache_health = services.monitoring.get_health_status()
        status = cache_health["status"] if store_ok else "unhealthy"

        return JSONResponse(
            status_code=200 if store_ok else 503,
            content={
                "status": status,
                "version": settings.app_version,
                "timestamp": datetime.utcnow().isoformat() + "Z",
                "components": {
                    "store": {"status": "healthy" if store_ok else "unhealthy"},
                    "cache": cache_health,
                },
            }
        )

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "description": settings.api.api_description,
            "docs_url": "/docs",
            "health_url": "/health"
        }

    app.include_router(metrics.router, prefix="/api", tags=["Cache Metrics"])
    app.include_router(alerts.router, prefix="/api", tags=["Cache Alerts"])
    app.include_router(cleanup.router, prefix="/api", tags=["Cache Cleanup"])
    app.include_router(invalidate.router, prefix="/api", tags=["Cache Invalidation"])

    return app


if __name__ == "__main__":
    uvicorn.run(
        "cursus_cache.api.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_config=LoggingConfig.get_config_dict(level=get_settings().monitoring.log_level.value),
    )
