"""Audit logging middleware.

Logs mutating requests (POST, PUT, DELETE) under /access with the acting
user. Successes are logged at INFO; a 200 whose endpoint set
request.state.audit_outcome (a change kept locally but not saved) is
logged at WARNING with that outcome. Failures and read-only checks are
skipped.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

if TYPE_CHECKING:
    from fastapi import Request, Response

from src.api.auth import current_session

logger = logging.getLogger("src.audit")

_AUDITED_PREFIX = "/access/"
_SKIP_PATHS = {"/access/check", "/access/elements"}
_AUDIT_METHODS = {"POST", "PATCH", "PUT", "DELETE"}


def _extract_resource(path: str) -> tuple[str, str | None]:
    """Extract resource_type and resource_id from path.

    /access/roles/teacher → ("access/roles", "teacher")
    /access/users/7/overrides/grades.edit → ("access/users/7/overrides", "grades.edit")
    """
    parts = [p for p in path.strip("/").split("/") if p]
    resource_type = parts[0] if parts else ""
    resource_id = None
    if len(parts) >= 2:
        resource_type = "/".join(parts[:-1]) if len(parts) > 2 else parts[0]
        resource_id = parts[-1]
    return resource_type, resource_id


class AuditMiddleware(BaseHTTPMiddleware):
    """Middleware that logs mutating access-administration requests."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if (
            request.method not in _AUDIT_METHODS
            or not path.startswith(_AUDITED_PREFIX)
            or path in _SKIP_PATHS
        ):
            return await call_next(request)

        session = current_session(request)
        response = await call_next(request)

        if response.status_code < 200 or response.status_code >= 300:
            return response

        resource_type, resource_id = _extract_resource(path)
        # endpoints answer 200 for changes kept locally but not saved
        outcome = getattr(request.state, "audit_outcome", None)
        level = logging.WARNING if outcome else logging.INFO
        logger.log(
            level,
            "%s %s",
            request.method,
            path,
            extra={
                "user_id": session.user.id if session else None,
                "session_id": session.session_id if session else None,
                "resource": f"{resource_type}:{resource_id}" if resource_id else resource_type,
                "outcome": outcome or str(response.status_code),
            },
        )
        return response
