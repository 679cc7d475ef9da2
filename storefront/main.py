"""Main application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import redis
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

from storefront.config import API_VERSION, Settings
from storefront.database import create_db_engine, create_session_factory, init_db
from storefront.errors import GatewayError, StoreError, ValidationError
from storefront.logging_config import setup_logging
from storefront.monitoring import init_telemetry
from storefront.redis_rate_limiter import RedisRateLimiter
from storefront.routers import admin, auth, cart, orders, payments, products, users

logger = logging.getLogger(__name__)

GATEWAY_RETRY_AFTER_SECONDS = 5


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup fails, and the process exits, if the database is unreachable.
    """
    settings: Settings = app.state.settings
    logger.info("Starting application...", extra={"env": settings.env})

    init_db(app.state.engine, app.state.session_factory, settings)

    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    if settings.otel_enabled:
        HTTPXClientInstrumentor().instrument_client(http_client)
    app.state.http_client = http_client
    logger.info("HTTP client initialized")

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application...")
    await http_client.aclose()
    if app.state.redis_client is not None:
        app.state.redis_client.close()
    app.state.engine.dispose()
    logger.info("Application shutdown complete")


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """
    Render a ``StoreError`` as ``{"error", "error_type"}`` with its status.

    Gateway errors also carry ``retryable``, with ``Retry-After`` set when true.
    """
    content = {"error": exc.message, "error_type": type(exc).__name__}
    if isinstance(exc, ValidationError) and exc.field:
        content["field"] = exc.field

    headers = None
    if isinstance(exc, GatewayError):
        content["retryable"] = exc.retryable
        if exc.retryable:
            headers = {"Retry-After": str(GATEWAY_RETRY_AFTER_SECONDS)}

    if exc.status_code >= 500:
        logger.error("Request failed", extra={
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "error": exc.message
        })
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to run with; read from the environment if omitted

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = Settings.from_env()

    setup_logging(settings)
    init_telemetry(settings)

    app = FastAPI(
        title="Storefront Service",
        version=API_VERSION,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.engine = create_db_engine(settings)
    app.state.session_factory = create_session_factory(app.state.engine)
    app.state.redis_client = None

    app.add_exception_handler(StoreError, store_error_handler)

    if settings.rate_limit_enabled:
        redis_client = redis.from_url(settings.redis_url, decode_responses=True)
        if settings.otel_enabled:
            RedisInstrumentor().instrument(redis_client=redis_client)
        app.state.redis_client = redis_client
        app.add_middleware(RedisRateLimiter, redis_client=redis_client, settings=settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url] if settings.is_production else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.otel_enabled:
        FastAPIInstrumentor.instrument_app(app)
        SQLAlchemyInstrumentor().instrument(engine=app.state.engine)

    @app.get("/api/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "version": API_VERSION}

    for module in (auth, products, cart, orders, payments, users, admin):
        app.include_router(module.router, prefix="/api")

    return app


def main() -> None:
    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
