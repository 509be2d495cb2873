"""Session endpoints and route guards for the BFF API.

Tokens are issued by the school backend; this service only keeps a
SessionContext per token (created on login, destroyed on logout) and
answers route guards from it:

    @router.get("/...", dependencies=[Depends(require_permission("users.view"))])
    async def endpoint(session: SessionContext = Depends(require_access(module="grades"))):
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from src.backend_client.client import SchoolAPIError
from src.permissions.gate import AccessRequirement, RouteOutcome
from src.permissions.models import AuthenticatedUser
from src.permissions.runtime import AccessRuntime
from src.permissions.session import SessionContext

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


def get_runtime(request: Request) -> AccessRuntime:
    runtime: AccessRuntime = request.app.state.access
    return runtime


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:] or None


def current_session(request: Request) -> SessionContext | None:
    """The live session for the request's bearer token, if any."""
    token = bearer_token(request)
    if token is None:
        return None
    return get_runtime(request).sessions.get(token)


def require_access(
    permission: str | None = None,
    permissions: tuple[str, ...] | list[str] = (),
    require_all: bool = False,
    module: str | None = None,
    action: str | None = None,
    fallback_path: str | None = None,
) -> Any:
    """Create a FastAPI dependency enforcing an access requirement.

    Unauthenticated → 401, permissions still loading → 503 with Retry-After,
    denied → 403 with a message naming what is missing.
    """
    requirement = AccessRequirement(
        permission=permission,
        permissions=tuple(permissions),
        require_all=require_all,
        module=module,
        action=action,
    )

    async def _check_access(request: Request) -> SessionContext:
        runtime = get_runtime(request)
        runtime.refresh.ensure_fresh()
        session = current_session(request)
        decision = runtime.gate.check_route(session, requirement, fallback_path)

        if decision.outcome is RouteOutcome.REDIRECT_TO_LOGIN:
            raise HTTPException(
                status_code=401,
                detail="Not authenticated",
                headers={"X-Login-Path": decision.fallback_path},
            )
        if decision.outcome is RouteOutcome.LOADING:
            raise HTTPException(
                status_code=503,
                detail=decision.message,
                headers={"Retry-After": str(runtime.loading_retry_after)},
            )
        if decision.outcome is RouteOutcome.DENY:
            raise HTTPException(status_code=403, detail=decision.message)

        assert session is not None
        return session

    return _check_access


def require_permission(*names: str) -> Any:
    """Shortcut: one name → that permission; several → any of them."""
    if len(names) == 1:
        return require_access(permission=names[0])
    return require_access(permissions=names)


def _user_info(session: SessionContext) -> dict[str, Any]:
    return {
        "id": session.user.id,
        "name": session.user.name,
        "email": session.user.email,
        "role": session.user.role,
    }


@router.post("/login")
async def login(login_data: LoginRequest, request: Request) -> dict[str, Any]:
    """Authenticate against the school backend and open a session.

    The user's grants/denials are fetched in the background; until they
    arrive guarded routes answer 503 (loading), never a premature 403.
    """
    runtime = get_runtime(request)
    try:
        data = await runtime.client.login(login_data.email, login_data.password)
    except SchoolAPIError as exc:
        if exc.status in (401, 403, 422):
            raise HTTPException(status_code=401, detail="Invalid credentials") from exc
        logger.warning("Login failed upstream: %s", exc)
        raise HTTPException(status_code=502, detail="School backend unavailable") from exc

    try:
        user = AuthenticatedUser.from_payload(data["user"])
    except (KeyError, TypeError) as exc:
        raise HTTPException(status_code=502, detail="Malformed login response") from exc

    token = str(data["token"])
    session = runtime.sessions.create(user, token)
    runtime.refresh.invalidate_user_permissions(user.id)

    return {
        "token": token,
        "token_type": "bearer",
        "session_id": session.session_id,
        "user": _user_info(session),
        "is_loading": session.is_loading,
    }


@router.post("/logout")
async def logout(request: Request) -> dict[str, str]:
    """Destroy the session; the backend logout is best-effort."""
    runtime = get_runtime(request)
    token = bearer_token(request)
    if token is None or runtime.sessions.get(token) is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        await runtime.client.logout(token)
    except SchoolAPIError:
        logger.warning("Backend logout failed, session destroyed locally", exc_info=True)

    runtime.sessions.destroy(token)
    return {"status": "logged_out"}


@router.get("/me")
async def get_me(session: SessionContext = Depends(require_access())) -> dict[str, Any]:
    """Current user, role and effective permissions."""
    return {
        "user": _user_info(session),
        "session_id": session.session_id,
        "permissions": sorted(session.effective_permissions()),
    }
