"""Structured JSON request logging middleware for the PreviewGuard API.

:class:`RequestLoggingMiddleware` records every HTTP request as a single JSON
log entry at ``INFO`` level, enriched with a **correlation ID** propagated
from the incoming ``X-Correlation-ID`` (or ``X-Request-ID``) header, or
generated as a UUID v4 when absent.

The correlation ID is stored on ``request.state.correlation_id`` for route
handlers and echoed back in the ``X-Correlation-ID`` response header.

Register it last so it is the outermost middleware and also logs requests
refused by :class:`~previewguard.api.middleware.auth.ApiKeyMiddleware`::

    app.add_middleware(ApiKeyMiddleware, api_key=settings.api_key)
    app.add_middleware(RequestLoggingMiddleware)

Log entry format
----------------
::

    {
      "event": "http_request",
      "correlation_id": "550e8400-e29b-41d4-a716-446655440000",
      "method": "POST",
      "path": "/convert",
      "status_code": 200,
      "duration_ms": 812.4,
      "run_id": "3f0c2a..."
    }

``run_id`` is the pipeline run identifier when the request started one,
otherwise ``null``.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

# Headers checked (in priority order) for an incoming correlation ID.
_CORRELATION_HEADERS: tuple[str, ...] = ("x-correlation-id", "x-request-id")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Per-request JSON logging with correlation ID propagation."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = self._extract_correlation_id(request)
        request.state.correlation_id = correlation_id

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 2)

        log_entry = {
            "event": "http_request",
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "run_id": getattr(request.state, "run_id", None),
        }
        logger.info(json.dumps(log_entry))

        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @staticmethod
    def _extract_correlation_id(request: Request) -> str:
        for header in _CORRELATION_HEADERS:
            value = request.headers.get(header, "").strip()
            if value:
                return value
        return str(uuid.uuid4())
