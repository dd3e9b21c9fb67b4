"""
Request middleware — correlation IDs, timing, acknowledgement budget.

Provides:
    • X-Request-ID header injection, bound into the alert log context so
      dispatch lines emitted during a request carry the same id
    • X-Process-Time header
    • One structured log entry per request
    • A WARNING when a device-facing incident endpoint answers slower than
      ACK_LATENCY_BUDGET_MS (the device is waiting on that response)
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from guardpulse.app.core.config import settings
from guardpulse.app.core.logging_config import bind_alert_context

logger = logging.getLogger(__name__)

# Endpoints whose dispatch is detached; their responses must stay fast
ACK_CRITICAL_PATHS = (
    "/api/v1/incidents/thrown-away",
    "/api/v1/incidents/fake-shutdown",
)

_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request id / endpoint for downstream loggers and time the request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:16])
        path = request.url.path
        start = time.perf_counter()

        with bind_alert_context(request_id=request_id, endpoint=path):
            try:
                response = await call_next(request)
            except Exception:
                duration_ms = (time.perf_counter() - start) * 1000
                logger.error(
                    "%s %s → 500 (%.1fms)", request.method, path, duration_ms,
                    extra={"duration_ms": duration_ms, "status_code": 500, "endpoint": path},
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

            if path in ACK_CRITICAL_PATHS and duration_ms > settings.ACK_LATENCY_BUDGET_MS:
                logger.warning(
                    "Incident acknowledgement for %s took %.1fms (budget %.0fms)",
                    path, duration_ms, settings.ACK_LATENCY_BUDGET_MS,
                    extra={"duration_ms": duration_ms, "endpoint": path},
                )

            if not path.startswith(_QUIET_PREFIXES):
                log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
                logger.log(
                    log_level,
                    "%s %s → %d (%.1fms)",
                    request.method, path, response.status_code, duration_ms,
                    extra={
                        "duration_ms": duration_ms,
                        "status_code": response.status_code,
                        "endpoint": path,
                    },
                )

        return response
