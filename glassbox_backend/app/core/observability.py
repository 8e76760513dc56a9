"""
Observability middleware and logging setup.

Adds correlation IDs to requests and emits one structured log line per
request. Settlement runs log through the "glassbox.settlement" child logger.
"""

import time
import uuid
import logging
from contextvars import ContextVar
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("glassbox")

# Correlation ID of the request being served, for log records emitted deeper down
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_var.get()
        return True


def configure_logging(level: str = "INFO") -> None:
    """Attach a correlation-aware handler to the "glassbox" logger tree once."""
    if any(isinstance(f, CorrelationIdFilter) for h in logger.handlers for f in h.filters):
        return

    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
    ))
    logger.addHandler(handler)
    logger.setLevel(level.upper())


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        token = correlation_id_var.set(correlation_id)
        start_time = time.time()

        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        process_time = (time.time() - start_time) * 1000  # ms

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = str(process_time)

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(process_time, 2),
            "ip": request.client.host if request.client else "unknown"
        }

        # Log level based on status
        if response.status_code >= 500:
            logger.error("Request failed %s %s", request.method, request.url.path, extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request error %s %s", request.method, request.url.path, extra=log_data)
        else:
            logger.info("Request %s %s", request.method, request.url.path, extra=log_data)

        return response
