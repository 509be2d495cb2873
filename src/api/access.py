"""Access API: effective permissions, guard checks and administration.

Administrative mutations go through the capability checks in
src.permissions.admin and trigger the matching invalidation so every
live session sees the change on its next query.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from src.api.auth import current_session, get_runtime, require_access, require_permission
from src.backend_client.client import SchoolAPIError
from src.permissions.admin import can_delete_role, can_edit_role, ensure_role_mutable
from src.permissions.errors import (
    OverridePersistenceFailed,
    SystemRoleProtected,
    UserPermissionsUnavailable,
)
from src.permissions.gate import AccessRequirement, RouteOutcome
from src.permissions.runtime import AccessRuntime
from src.permissions.session import SessionContext

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/access", tags=["access"])


# --- Request models ---


class RequirementRequest(BaseModel):
    permission: str | None = None
    permissions: list[str] = Field(default_factory=list)
    require_all: bool = False
    module: str | None = None
    action: str | None = None

    def to_requirement(self) -> AccessRequirement:
        try:
            return AccessRequirement(
                permission=self.permission,
                permissions=tuple(self.permissions),
                require_all=self.require_all,
                module=self.module,
                action=self.action,
            )
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc


class CheckRequest(RequirementRequest):
    cross_check: bool = False
    fallback_path: str | None = None


class ElementSpec(RequirementRequest):
    show_fallback: bool = False


class ElementsRequest(BaseModel):
    elements: dict[str, ElementSpec]


class OverrideRequest(BaseModel):
    mode: Literal["grant", "deny"]


class RolePermissionsUpdate(BaseModel):
    permissions: list[str]


# --- Queries ---


@router.get("/me")
async def get_my_access(
    request: Request, session: SessionContext = Depends(require_access())
) -> dict[str, Any]:
    """Effective permissions of the current session, grouped by module."""
    runtime = get_runtime(request)
    effective = sorted(session.effective_permissions())
    modules: dict[str, list[str]] = {}
    for module in runtime.engine.accessible_modules(session.user):
        modules[module] = session.module_permissions(module)
    override = runtime.sessions.overrides_for(session)
    return {
        "user_id": session.user.id,
        "role": session.user.role,
        "roles": list(session.roles()),
        "primary_role": session.primary_role,
        "permissions": effective,
        "modules": modules,
        "overrides": override.to_dict(),
        "pending_sync": runtime.overrides.has_pending(session.user.id),
        "status": runtime.refresh.user_status(session.user.id).to_dict(),
    }


@router.post("/check")
async def check_access(check: CheckRequest, request: Request) -> dict[str, Any]:
    """Route-guard decision for an arbitrary requirement.

    Returns the decision instead of raising, so clients can render the
    loading indicator or the deny message themselves. With cross_check
    every named permission is also asked of the school backend:
    `server_checks` maps each name to its answer and `server_allowed`
    combines them the way the requirement does (None if the backend
    could not answer). Module and empty requirements cannot be cross-checked.
    """
    runtime = get_runtime(request)
    runtime.refresh.ensure_fresh()
    requirement = check.to_requirement()
    if check.cross_check and (requirement.module or requirement.is_empty):
        raise HTTPException(
            status_code=422, detail="cross_check needs a permission or a permission list"
        )
    session = current_session(request)
    decision = runtime.gate.check_route(session, requirement, check.fallback_path)

    result: dict[str, Any] = {
        "outcome": decision.outcome.value,
        "allowed": decision.allowed,
        "message": decision.message,
        "fallback_path": decision.fallback_path,
    }

    if check.cross_check and session is not None:
        names = [check.permission] if check.permission else list(check.permissions)
        checks = await _cross_check(runtime, session, names)
        result["server_checks"] = checks
        if checks is None:
            result["server_allowed"] = None
        elif check.require_all:
            result["server_allowed"] = all(checks.values())
        else:
            result["server_allowed"] = any(checks.values())

        settled = decision.outcome in (RouteOutcome.ALLOW, RouteOutcome.DENY)
        if settled and result["server_allowed"] not in (None, decision.allowed):
            logger.warning(
                "Local and server permission answers differ",
                extra={
                    "user_id": session.user.id,
                    "permission": ",".join(names),
                    "outcome": decision.outcome.value,
                },
            )
    return result


async def _cross_check(
    runtime: AccessRuntime, session: SessionContext, names: list[str]
) -> dict[str, bool] | None:
    try:
        if len(names) == 1:
            return {names[0]: await runtime.client.check_permission(names[0], session.token)}
        return await runtime.client.check_permissions(names, session.token)
    except SchoolAPIError as exc:
        logger.warning(
            "Permission cross-check failed: %s",
            exc,
            extra={"user_id": session.user.id, "permission": ",".join(names)},
        )
        return None


@router.post("/elements")
async def check_elements(body: ElementsRequest, request: Request) -> dict[str, str]:
    """Element-guard outcome (show / hide / show_fallback) per element key."""
    runtime = get_runtime(request)
    session = current_session(request)
    return {
        key: runtime.gate.check_element(session, spec.to_requirement(), spec.show_fallback).value
        for key, spec in body.elements.items()
    }


@router.post("/refresh")
async def refresh_access(
    request: Request, session: SessionContext = Depends(require_access())
) -> dict[str, Any]:
    """Schedule a re-fetch of the catalog and every live user's overrides."""
    runtime = get_runtime(request)
    runtime.refresh.invalidate_all()
    logger.info("Full permission refresh requested", extra={"user_id": session.user.id})
    return {"status": "scheduled", "resources": runtime.refresh.snapshot()}


# --- Per-user overrides ---


async def _load_target(runtime: AccessRuntime, user_id: str, session: SessionContext) -> None:
    """Load the user's stored overrides before a change; 503 if the backend cannot say."""
    try:
        await runtime.overrides.ensure_loaded(user_id, token=session.token)
    except UserPermissionsUnavailable as exc:
        logger.warning(
            "Override change refused, stored overrides unavailable",
            extra={"user_id": session.user.id, "target_user_id": user_id},
        )
        raise HTTPException(
            status_code=503,
            detail=f"Overrides of user {user_id} could not be loaded: {exc.reason}",
            headers={"Retry-After": str(runtime.loading_retry_after)},
        ) from exc


async def _persist_overrides(
    runtime: AccessRuntime, user_id: str, session: SessionContext, request: Request
) -> dict[str, Any]:
    try:
        override = await runtime.overrides.persist(user_id, token=session.token)
        synced, error = True, None
    except OverridePersistenceFailed as exc:
        override = runtime.overrides.get_overrides(user_id)
        synced, error = False, exc.reason
        request.state.audit_outcome = "sync_failed"

    # Users without a session were only loaded for this change.
    idle = not runtime.overrides.has_pending(user_id) and not runtime.sessions.sessions_for(user_id)
    if synced and idle:
        runtime.overrides.discard(user_id)
    return {
        "user_id": user_id,
        "overrides": override.to_dict(),
        "synced": synced,
        "error": error,
    }


@router.put("/users/{user_id}/overrides/{permission}")
async def set_override(
    user_id: str,
    permission: str,
    body: OverrideRequest,
    request: Request,
    session: SessionContext = Depends(require_permission("permissions.assign")),
) -> dict[str, Any]:
    """Grant or deny one permission to a user, overriding their role."""
    runtime = get_runtime(request)
    await _load_target(runtime, user_id, session)
    if body.mode == "grant":
        runtime.overrides.grant(user_id, permission)
    else:
        runtime.overrides.deny(user_id, permission)
    logger.info(
        "Override %s set",
        body.mode,
        extra={
            "user_id": session.user.id,
            "target_user_id": user_id,
            "permission": permission,
            "session_id": session.session_id,
        },
    )
    return await _persist_overrides(runtime, user_id, session, request)


@router.delete("/users/{user_id}/overrides/{permission}")
async def clear_override(
    user_id: str,
    permission: str,
    request: Request,
    session: SessionContext = Depends(require_permission("permissions.assign")),
) -> dict[str, Any]:
    """Drop a user's override; the role default applies again."""
    runtime = get_runtime(request)
    await _load_target(runtime, user_id, session)
    runtime.overrides.clear_override(user_id, permission)
    logger.info(
        "Override cleared",
        extra={
            "user_id": session.user.id,
            "target_user_id": user_id,
            "permission": permission,
            "session_id": session.session_id,
        },
    )
    return await _persist_overrides(runtime, user_id, session, request)


@router.post("/users/{user_id}/overrides/sync")
async def sync_overrides(
    user_id: str,
    request: Request,
    session: SessionContext = Depends(require_permission("permissions.assign")),
) -> dict[str, Any]:
    """Retry saving overrides whose earlier sync failed."""
    runtime = get_runtime(request)
    if not runtime.overrides.has_pending(user_id):
        return {
            "user_id": user_id,
            "overrides": runtime.overrides.get_overrides(user_id).to_dict(),
            "synced": True,
            "error": None,
        }
    return await _persist_overrides(runtime, user_id, session, request)


# --- Role administration ---


def _known_role(runtime: AccessRuntime, role_name: str) -> Any:
    role = runtime.catalog.get_role(role_name)
    if role is None:
        raise HTTPException(status_code=404, detail=f"Role '{role_name}' not found")
    return role


@router.get("/roles")
async def list_roles(
    request: Request, _session: SessionContext = Depends(require_permission("roles.view"))
) -> list[dict[str, Any]]:
    """Catalog roles with their permissions and whether they can be changed."""
    runtime = get_runtime(request)
    return [
        {
            "name": role.name,
            "permissions": list(runtime.catalog.permissions_for_role(role.name)),
            "editable": can_edit_role(role.name),
            "deletable": can_delete_role(role.name),
        }
        for role in runtime.catalog.roles
    ]


@router.put("/roles/{role_name}")
async def update_role(
    role_name: str,
    body: RolePermissionsUpdate,
    request: Request,
    session: SessionContext = Depends(require_permission("roles.edit")),
) -> dict[str, Any]:
    """Replace a non-system role's permissions."""
    runtime = get_runtime(request)
    try:
        ensure_role_mutable(role_name, "edited")
    except SystemRoleProtected as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    role = _known_role(runtime, role_name)

    try:
        await runtime.client.update_role_permissions(role.id, body.permissions, token=session.token)
    except SchoolAPIError as exc:
        logger.error("Role update failed: %s", exc, extra={"user_id": session.user.id})
        raise HTTPException(status_code=502, detail=exc.message) from exc

    runtime.refresh.invalidate_roles()
    runtime.refresh.invalidate_user_permissions()
    logger.info("Role %s updated", role_name, extra={"user_id": session.user.id})
    return {"status": "updated", "role": role_name, "permissions": body.permissions}


@router.delete("/roles/{role_name}")
async def delete_role(
    role_name: str,
    request: Request,
    session: SessionContext = Depends(require_permission("roles.delete")),
) -> dict[str, str]:
    """Delete a non-system role."""
    runtime = get_runtime(request)
    try:
        ensure_role_mutable(role_name, "deleted")
    except SystemRoleProtected as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    role = _known_role(runtime, role_name)

    try:
        await runtime.client.delete_role(role.id, token=session.token)
    except SchoolAPIError as exc:
        logger.error("Role delete failed: %s", exc, extra={"user_id": session.user.id})
        raise HTTPException(status_code=502, detail=exc.message) from exc

    runtime.refresh.invalidate_roles()
    runtime.refresh.invalidate_user_permissions()
    logger.info("Role %s deleted", role_name, extra={"user_id": session.user.id})
    return {"status": "deleted", "role": role_name}
