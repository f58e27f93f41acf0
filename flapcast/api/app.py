"""FastAPI admin application."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from flapcast.api.routes import circuits, history
from flapcast.core.config import get_settings
from flapcast.core.errors import CircuitStoreError
from flapcast.core.logging import get_logger, setup_logging
from flapcast.schemas.common import HealthResponse, error_body
from flapcast.storage.redis_client import close_redis_pool, init_redis_pool, ping_redis

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    settings = get_settings()

    # Startup
    setup_logging()
    logger.info("Starting admin API", app_name=settings.app_name, version=settings.app_version)

    await init_redis_pool()
    logger.info("Redis connection pool initialized")

    yield

    # Shutdown
    logger.info("Shutting down admin API")
    await close_redis_pool()
    logger.info("Redis connection pool closed")


def create_app() -> FastAPI:
    """Create the admin API: circuit control, content history and metrics."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Split-flap display content service admin API",
        lifespan=lifespan,
    )

    app.include_router(circuits.router, prefix="/api/v1")
    app.include_router(history.router, prefix="/api/v1")
    app.mount("/metrics", make_asgi_app())

    # Every error answer uses the {code, message, data} envelope
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        detail = exc.detail
        if isinstance(detail, str):
            body = error_body(exc.status_code, detail)
        else:
            body = error_body(exc.status_code, "HTTP error", jsonable_encoder(detail))
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=error_body(422, "Validation error", jsonable_encoder(exc.errors())),
        )

    @app.exception_handler(CircuitStoreError)
    async def store_exception_handler(request: Request, exc: CircuitStoreError) -> JSONResponse:
        logger.error("Circuit store unavailable", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=503,
            content=error_body(503, "Circuit store unavailable", str(exc) if settings.debug else None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=500,
            content=error_body(500, "Internal server error", str(exc) if settings.debug else None),
        )

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Liveness plus a Redis ping; a failed ping reports ``degraded``."""
        redis_ok = await ping_redis()
        return HealthResponse(
            status="ok" if redis_ok else "degraded",
            version=settings.app_version,
            redis=redis_ok,
        )

    return app


# Application instance for uvicorn
app = create_app()
