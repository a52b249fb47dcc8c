"""
Middleware for request correlation.

This middleware:
- Takes the trace ID from X-Trace-ID / X-Request-ID, or the active
  OpenTelemetry span, or generates one
- Generates a unique request ID per request
- Binds both to the logging context for the duration of the request
- Records RED metrics and echoes both IDs in response headers
"""
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import (
    set_trace_id,
    set_request_id,
    generate_trace_id,
    generate_request_id,
    get_logger,
)
from .metrics import record_http_request
from .tracing import get_trace_id_from_context, set_span_attribute

logger = get_logger(__name__)


def _uuid_format(hex_id: str) -> str:
    return f"{hex_id[0:8]}-{hex_id[8:12]}-{hex_id[12:16]}-{hex_id[16:20]}-{hex_id[20:32]}"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind trace/request IDs to each request and record request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("X-Trace-ID") or request.headers.get("X-Request-ID")
        if not trace_id:
            otel_trace_id = get_trace_id_from_context()
            if otel_trace_id and len(otel_trace_id) == 32:
                trace_id = _uuid_format(otel_trace_id)
            else:
                trace_id = generate_trace_id()

        request_id = generate_request_id()
        set_trace_id(trace_id)
        set_request_id(request_id)

        start_time = time.time()
        request.state.start_time = start_time
        logger.debug("request_started", method=request.method, path=request.url.path)

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=500,
                duration_seconds=process_time,
            )
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int(process_time * 1000),
                exc_info=True,
            )
            raise
        else:
            process_time = time.time() - start_time
            set_span_attribute("http.response.latency_ms", int(process_time * 1000))
            record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration_seconds=process_time,
            )
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                latency_ms=int(process_time * 1000),
            )
            response.headers["X-Trace-ID"] = trace_id
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            set_trace_id(None)
            set_request_id(None)
