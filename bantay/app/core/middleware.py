"""
Request middleware — correlation id, timing and one access-log line per call.

Requests that touch a single alert or rescue request are tagged with its
code, taken from the path, so access lines line up with the domain logs:

    POST /api/v1/alerts/ALT-20261019-001/publish → 200 (41.2ms) {alert=ALT-20261019-001}
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Any, Dict

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from bantay.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

# health checks and docs are not logged
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")

_CODE_IN_PATH = re.compile(r"/(?P<code>(?P<kind>ALT|RR)-\d{8}-\d{3,})(?:/|$)")


def path_tags(path: str) -> Dict[str, Any]:
    """``alert_code`` or ``request_number`` named in a request path."""
    match = _CODE_IN_PATH.search(path)
    if not match:
        return {}
    key = "alert_code" if match.group("kind") == "ALT" else "request_number"
    return {key: match.group("code")}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Set the log context for the request and write the access line.

    X-User-Id is copied into the context so every log written while
    serving the request names the official or resident behind it.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        path = request.url.path
        set_request_context(request_id=request_id, user_id=request.headers.get("X-User-Id"))

        extra: Dict[str, Any] = {"endpoint": path, **path_tags(path)}
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            extra.update(duration_ms=(time.perf_counter() - start) * 1000, status_code=500)
            logger.error("%s %s → 500", request.method, path, extra=extra)
            set_request_context()
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(_QUIET_PREFIXES):
            extra.update(duration_ms=duration_ms, status_code=response.status_code)
            logger.log(
                logging.WARNING if response.status_code >= 400 else logging.INFO,
                "%s %s → %d (%.1fms)",
                request.method, path, response.status_code, duration_ms,
                extra=extra,
            )
        set_request_context()
        return response
