"""API key middleware for the PreviewGuard API.

Only ``POST /convert`` is guarded; retrieval of local test artifacts, health
endpoints and ``/metrics`` are public.

The key is presented either as ``X-API-Key: <key>`` or as
``Authorization: Bearer <key>`` (the former wins when both are sent) and is
compared to the configured key with :func:`hmac.compare_digest`.

HTTP responses on failure:

* ``500 Internal Server Error``: no API key is configured on the server.
* ``401 Unauthorized``: the key is missing or does not match.
"""

import hmac
import logging
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

# (method, path) pairs that require a valid key
_GUARDED_ROUTES: frozenset[tuple[str, str]] = frozenset({("POST", "/convert")})


def _presented_key(request: Request) -> str | None:
    """Return the key sent with *request*, or ``None``."""
    key = request.headers.get("X-API-Key", "").strip()
    if key:
        return key
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[len("Bearer "):].strip() or None
    return None


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces the shared API key.

    Args:
        app: The wrapped ASGI application.
        api_key: Expected key.  ``None`` or empty makes every guarded request
            fail with 500 so a misconfigured deployment never runs open.
    """

    def __init__(self, app: ASGIApp, api_key: str | None = None) -> None:
        super().__init__(app)
        self._api_key = api_key or None

    async def dispatch(self, request: Request, call_next: Any) -> Response:  # type: ignore[override]
        path = request.url.path.rstrip("/") or "/"
        if (request.method, path) not in _GUARDED_ROUTES:
            return await call_next(request)

        if self._api_key is None:
            logger.error("API_KEY not configured; refusing %s %s", request.method, path)
            return JSONResponse({"detail": "Server configuration error"}, status_code=500)

        presented = _presented_key(request)
        if presented is None or not hmac.compare_digest(
            presented.encode(), self._api_key.encode()
        ):
            logger.warning(
                "Invalid API key attempt path=%s client=%s",
                path,
                request.client.host if request.client else None,
            )
            return JSONResponse({"detail": "Unauthorized"}, status_code=401)

        return await call_next(request)
