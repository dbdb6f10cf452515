# src/services/replay_service/app/main.py
import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from replay_common.exceptions import EventAuditError
from replay_common.health import create_health_router
from replay_common.logging_utils import (
    correlation_id_var,
    generate_correlation_id,
    request_id_var,
    setup_logging,
    trace_id_var,
)
from replay_common.monitoring import HTTP_REQUEST_LATENCY_SECONDS, HTTP_REQUESTS_TOTAL
from replay_common.replay_endpoint_client import close_replay_endpoint_client, get_replay_endpoint_client
from .routers import housekeeping, replay

SERVICE_PREFIX = "RPL"
SERVICE_NAME = "replay_service"
setup_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events for graceful operation.
    """
    logger.info("Replay Service starting up...")
    get_replay_endpoint_client()
    yield
    logger.info("Replay Service shutting down...")
    await close_replay_endpoint_client()
    logger.info("Replay Service has shut down gracefully.")


app = FastAPI(
    title="Event Audit Replay API",
    description=(
        "Replays failed event records through the downstream event app, and runs "
        "and reports housekeeping retention jobs for the event audit store."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

# --- Prometheus Metrics ---
Instrumentator().instrument(app).expose(app)
logger.info("Prometheus metrics exposed at /metrics")


# Correlation ID Middleware
@app.middleware("http")
async def add_correlation_id_middleware(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-Id") or request.headers.get(
        "X-Correlation-ID"
    )
    if not correlation_id:
        correlation_id = generate_correlation_id(SERVICE_PREFIX)
    request_id = request.headers.get("X-Request-Id") or generate_correlation_id("REQ")
    trace_id = request.headers.get("X-Trace-Id") or uuid4().hex

    correlation_token = correlation_id_var.set(correlation_id)
    request_token = request_id_var.set(request_id)
    trace_token = trace_id_var.set(trace_id)

    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Request-Id"] = request_id
    response.headers["X-Trace-Id"] = trace_id

    correlation_id_var.reset(correlation_token)
    request_id_var.reset(request_token)
    trace_id_var.reset(trace_token)

    return response


@app.middleware("http")
async def emit_http_observability(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start

    labels = {
        "service": SERVICE_NAME,
        "method": request.method,
        "path": request.url.path,
    }
    HTTP_REQUEST_LATENCY_SECONDS.labels(**labels).observe(elapsed)
    HTTP_REQUESTS_TOTAL.labels(status=str(response.status_code), **labels).inc()

    logger.info(
        "http_request_completed",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(elapsed * 1000, 2),
        },
    )
    return response


def _resolve_correlation_id(request: Request) -> str:
    correlation_id = (
        request.headers.get("X-Correlation-Id")
        or request.headers.get("X-Correlation-ID")
        or correlation_id_var.get()
    )
    if correlation_id == "<not-set>":
        correlation_id = generate_correlation_id(SERVICE_PREFIX)
    return correlation_id


@app.exception_handler(EventAuditError)
async def event_audit_exception_handler(request: Request, exc: EventAuditError):
    """Maps request-level domain errors to their status code with the standard payload."""
    correlation_id = _resolve_correlation_id(request)
    logger.warning(
        f"Request rejected: {exc}",
        extra={"error_code": exc.code, "status_code": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": str(exc), "correlation_id": correlation_id},
    )


# Global Exception Handler
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Catches any unhandled exceptions and returns a standardized 500 error response.
    """
    correlation_id = _resolve_correlation_id(request)
    logger.critical(
        f"Unhandled exception for request {request.method} {request.url}",
        exc_info=exc,
        extra={"correlation_id": correlation_id},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred. Please contact support.",
            "correlation_id": correlation_id,
        },
    )


# Create and include the standardized health router.
# This service depends on the database.
health_router = create_health_router("db", "event_tables")
app.include_router(health_router)

# Include the API routers
app.include_router(replay.router)
app.include_router(housekeeping.router)
