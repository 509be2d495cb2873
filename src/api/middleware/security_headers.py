"""Security headers middleware.

Every response of the access API depends on the caller's bearer token, so
besides the usual hardening headers responses are marked uncacheable and
`Vary: Authorization`. X-Request-ID is echoed (or generated) for tracing
and exposed to handlers as `request.state.request_id`.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# JSON-only API: nothing may be framed or loaded from responses
_STATIC_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Harden and tag every HTTP response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        response = await call_next(request)

        response.headers.update(_STATIC_HEADERS)
        response.headers[REQUEST_ID_HEADER] = request_id
        vary = response.headers.get("Vary")
        if vary is None:
            response.headers["Vary"] = "Authorization"
        elif "authorization" not in vary.lower():
            response.headers["Vary"] = f"{vary}, Authorization"
        return response
