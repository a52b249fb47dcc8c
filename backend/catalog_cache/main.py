import os
import time

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.middleware import RequestContextMiddleware
from .core.tracing import (
    configure_tracing,
    instrument_fastapi,
    shutdown_tracing,
    get_trace_id_from_context,
    record_exception,
    set_span_status,
    StatusCode,
)
from .core.cache import initialize_redis, close_redis
from .core.config import get_settings
from .routes import cache, content, health, metrics, views
from .services.origin import close_origin_loader
from .services.warming.scheduler import get_warming_scheduler

# Configure structured logging
# Use JSON output in production (containerized), console output in development
log_level = os.getenv("LOG_LEVEL", "INFO")
json_output = os.getenv("LOG_JSON", "true").lower() == "true"
configure_logging(log_level=log_level, json_output=json_output)

logger = get_logger(__name__)

# Spans are always created; exported only when OTEL_EXPORTER_OTLP_ENDPOINT is set
configure_tracing()

app = FastAPI(
    title="Catalog Content Cache API",
    description="Content delivery cache, cache warming and view tracking for the configuration catalog",
    version=__version__,
)

# CORS for local dev; restrict in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Trace/request IDs and RED metrics (must be after CORS middleware)
app.add_middleware(RequestContextMiddleware)

# Instrument FastAPI with OpenTelemetry (creates automatic spans for HTTP requests)
instrument_fastapi(app)


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    logger.info("app_startup_started")
    settings = get_settings()

    redis_initialized = await initialize_redis()
    if redis_initialized:
        logger.info("app_startup_redis_ready")
    else:
        logger.warning(
            "app_startup_redis_unavailable",
            message="Cache store not available. Content is served from the origin; view tracking and warming are disabled.",
        )

    logger.info("app_startup_origin_configured", backend=settings.origin_backend)

    if settings.warming_schedule_enabled:
        get_warming_scheduler().start()
        logger.info(
            "app_startup_warming_scheduler_started",
            interval_hours=settings.warming_interval_hours,
            offpeak_start_hour=settings.warming_offpeak_start_hour,
            offpeak_end_hour=settings.warming_offpeak_end_hour,
        )

    logger.info("app_startup_completed")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup resources on application shutdown."""
    logger.info("app_shutdown_started")
    await get_warming_scheduler().stop()
    await close_origin_loader()
    await close_redis()
    shutdown_tracing()
    logger.info("app_shutdown_completed")


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    start_time = getattr(request.state, "start_time", time.time())
    trace_id = get_trace_id() or get_trace_id_from_context()

    set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, str(exc.detail))

    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
        latency_ms=int((time.time() - start_time) * 1000),
    )
    response = JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "status_code": exc.status_code,
            "trace_id": trace_id,
        },
        headers=exc.headers,
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions. Internal errors are never exposed."""
    trace_id = get_trace_id() or get_trace_id_from_context()

    record_exception(exc)
    set_span_status(StatusCode.ERROR, str(exc))

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "status_code": 500,
            "trace_id": trace_id,
        }
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


# Include routers
app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(content.router, prefix="/content", tags=["Content"])
app.include_router(cache.router, prefix="/cache", tags=["Cache"])
app.include_router(views.router, prefix="/views", tags=["Views"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
