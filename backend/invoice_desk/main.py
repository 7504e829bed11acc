"""
FastAPI application factory and configuration.
"""

import logging
import os
import time
import uuid
from datetime import datetime, UTC
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from prometheus_client import Counter, Histogram, Gauge
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

from . import __version__
from .config.database import (
    async_database_health_check,
    async_engine,
    check_async_database_connection,
    create_database_tables_async,
)
from .config.logging import configure_logging
from .config.observability import (
    instrument_fastapi,
    instrument_sqlalchemy,
    performance_monitor,
    setup_observability,
    trace_operation,
)
from .config.settings import get_settings
from .routers import auth_router, exchange_rate_router, invoice_router, metrics_router, system_router
from .utils.errors import DomainError, ERROR_CODES, error_payload

logger = logging.getLogger(__name__)

# Native Prometheus metrics, always registered regardless of OTEL setup
APP_REQUEST_COUNT = Counter(
    "app_requests_total",
    "Total HTTP requests processed",
    ["method", "path", "status"],
)
APP_REQUEST_LATENCY = Histogram(
    "app_request_duration_seconds",
    "Request latency in seconds",
    ["method", "path", "status"],
)
APP_UPTIME_SECONDS = Gauge(
    "app_uptime_seconds",
    "Application uptime in seconds",
)

APP_START_TIME = datetime.now(UTC)


def _route_path(request: Request) -> str:
    # Route template keeps label cardinality bounded (/api/v1/invoices/{invoice_id})
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class ResponseTimeMiddleware(BaseHTTPMiddleware):
    """Record request latency metrics and expose X-Response-Time."""

    async def dispatch(self, request: Request, call_next):  # noqa: D401
        start_time = time.perf_counter()
        response = await call_next(request)
        duration_s = time.perf_counter() - start_time
        response_time_ms = duration_s * 1000
        response.headers["X-Response-Time"] = f"{response_time_ms:.1f}ms"

        path = _route_path(request)
        status = str(response.status_code)
        performance_monitor.record_request(
            endpoint=path,
            method=request.method,
            duration_ms=response_time_ms,
            status_code=response.status_code,
        )
        APP_REQUEST_COUNT.labels(request.method, path, status).inc()
        APP_REQUEST_LATENCY.labels(request.method, path, status).observe(duration_s)
        APP_UPTIME_SECONDS.set((datetime.now(UTC) - APP_START_TIME).total_seconds())

        if response_time_ms > 500:
            logger.warning(
                "Slow response: %.1fms for %s %s",
                response_time_ms,
                request.method,
                request.url.path,
            )
        return response


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Generate a per-request ID and bind it into the structlog context."""

    async def dispatch(self, request: Request, call_next):  # noqa: D401
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        response.headers["X-Request-ID"] = request_id
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    """Application lifespan management."""
    configure_logging()
    logger.info("Starting up Invoice Desk API %s", __version__)

    if not await check_async_database_connection():
        logger.error("Failed to connect to database")
        raise RuntimeError("Database connection failed")

    # Schema is provisioned externally; AUTO_CREATE_TABLES is a convenience for local runs
    if os.getenv("AUTO_CREATE_TABLES", "false").lower() == "true":
        await create_database_tables_async()
        logger.info("Database tables ensured")

    logger.info("Application startup complete")
    yield
    logger.info("Shutting down Invoice Desk API...")
    await async_engine.dispose()


def create_application() -> FastAPI:
    """Create and configure FastAPI application."""

    application_obj = FastAPI(
        title="Invoice Desk",
        description="USD/INR invoicing with line items and tax computation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/api/v1/openapi.json",
        lifespan=lifespan
    )

    setup_middleware(application_obj)
    setup_exception_handlers(application_obj)
    setup_routes(application_obj)

    # Middleware must be registered before the app starts serving
    if get_settings().ENABLE_TRACING:
        setup_observability()
        instrument_fastapi(application_obj)
        instrument_sqlalchemy(async_engine.sync_engine)

    return application_obj


def setup_middleware(app: FastAPI) -> None:
    """Setup application middleware."""

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ResponseTimeMiddleware)
    app.add_middleware(RequestIDMiddleware)


def setup_exception_handlers(app: FastAPI) -> None:
    """Setup global exception handlers."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors with standardized response."""
        # ctx may hold exception instances; encode anything non-JSON as str
        details = jsonable_encoder(exc.errors(), custom_encoder={Exception: str})
        return JSONResponse(
            status_code=422,
            content=error_payload(
                ERROR_CODES["validation"], "Request validation failed", details, str(request.url.path)
            ),
        )

    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError):
        """Domain errors that were not translated by a router."""
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(exc.code, exc.message, exc.details, str(request.url.path)),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with standardized response."""
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(
                getattr(exc, "code", "HTTP_ERROR"),
                exc.detail,
                getattr(exc, "details", None),
                str(request.url.path),
            ),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(StarletteHTTPException)
    async def starlette_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle Starlette HTTP exceptions (unknown routes, wrong methods)."""
        code = ERROR_CODES["not_found"] if exc.status_code == 404 else "HTTP_ERROR"
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(code, exc.detail, path=str(request.url.path)),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error("Unhandled exception: %s", exc, exc_info=True)
        performance_monitor.record_error()
        return JSONResponse(
            status_code=500,
            content=error_payload(
                ERROR_CODES["internal"], "An unexpected error occurred", path=str(request.url.path)
            ),
        )


def setup_routes(app: FastAPI) -> None:
    """Setup application routes."""

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        with trace_operation("health_check"):
            db_health = await async_database_health_check()
            return {
                "status": "healthy" if db_health["status"] == "healthy" else "unhealthy",
                "timestamp": time.time(),
                "database": db_health,
                "version": __version__,
            }

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "status": "success",
            "data": {
                "message": "Invoice Desk",
                "version": __version__,
                "docs": "/docs",
                "health": "/health"
            },
            "timestamp": time.time()
        }

    app.include_router(auth_router, prefix="/api/v1/auth", tags=["Authentication"])
    app.include_router(invoice_router, prefix="/api/v1/invoices", tags=["Invoices"])
    app.include_router(exchange_rate_router, prefix="/api/v1", tags=["Exchange Rate"])
    app.include_router(system_router, prefix="/api/v1/system", tags=["System"])
    # Prometheus exposition lives outside the API prefix
    app.include_router(metrics_router)


app = create_application()


__all__ = ["app", "create_application"]
