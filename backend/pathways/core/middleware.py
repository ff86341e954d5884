"""
Request correlation middleware.

A caller-supplied X-Trace-ID is kept (X-Request-ID doubles as the trace ID
when it is the only one sent); otherwise fresh UUIDs are generated. Both IDs
are bound into the logging context while the request runs and echoed in the
response headers. HTTP RED metrics are recorded here for every request.
"""
import time
from typing import Callable, Tuple

from fastapi import Request, Response
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import generate_request_id, generate_trace_id, get_logger, request_context
from .metrics import record_http_request
from .tracing import record_exception, set_span_attribute

logger = get_logger(__name__)

TRACE_HEADER = "X-Trace-ID"
REQUEST_HEADER = "X-Request-ID"


def resolve_request_ids(headers: Headers) -> Tuple[str, str]:
    """(trace_id, request_id) for a request."""
    request_id = headers.get(REQUEST_HEADER) or generate_request_id()
    trace_id = headers.get(TRACE_HEADER) or headers.get(REQUEST_HEADER) or generate_trace_id()
    return trace_id, request_id


class TraceIDMiddleware(BaseHTTPMiddleware):
    """Correlation IDs, request logs and RED metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id, request_id = resolve_request_ids(request.headers)
        start_time = time.time()
        request.state.start_time = start_time

        with request_context(trace_id, request_id):
            logger.info("request_started", method=request.method, path=request.url.path)
            try:
                response = await call_next(request)
            except Exception as e:
                latency = time.time() - start_time
                record_exception(e)
                record_http_request(request.method, request.url.path, 500, latency)
                logger.error(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                    error_type=type(e).__name__,
                    latency_ms=int(latency * 1000),
                    exc_info=True,
                )
                raise

            latency = time.time() - start_time
            set_span_attribute("http.response.latency_ms", int(latency * 1000))
            record_http_request(request.method, request.url.path, response.status_code, latency)
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                latency_ms=int(latency * 1000),
            )

        response.headers[TRACE_HEADER] = trace_id
        response.headers[REQUEST_HEADER] = request_id
        return response
