"""Mock school backend for local development and testing.

Serves the roles/permissions endpoints and auth on the seeded catalog.
Responses use the backend's {"success": true, "data": ...} envelope.

Run from the repository root:
    uvicorn app:app --app-dir mock-school-api --port 8000
"""

import secrets
import uuid

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from src.permissions.defaults import ALL_PERMISSIONS, ROLE_DEFAULT_PERMISSIONS, permission_groups

app = FastAPI(title="Mock School API", version="0.1.0")

SERVICE_TOKEN = "test-school-service-token"
PASSWORD = "password"

PERMISSIONS = [
    {"id": i, "name": name, "guard_name": "api"} for i, name in enumerate(ALL_PERMISSIONS, start=1)
]
ROLES: dict[int, dict] = {
    i: {"id": i, "name": name, "guard_name": "api", "permissions": list(perms)}
    for i, (name, perms) in enumerate(ROLE_DEFAULT_PERMISSIONS.items(), start=1)
}
USERS: dict[str, dict] = {
    "1": {"id": 1, "name": "Ada Admin", "email": "admin@school.test", "role": "admin"},
    "2": {"id": 2, "name": "Tom Teacher", "email": "teacher@school.test", "role": "teacher"},
    "3": {"id": 3, "name": "Sam Student", "email": "student@school.test", "role": "student"},
}
OVERRIDES: dict[str, dict[str, list[str]]] = {}
TOKENS: dict[str, str] = {}  # token → user id


class LoginBody(BaseModel):
    email: str
    password: str


class OverridesBody(BaseModel):
    custom_permissions: list[str] = []
    denied_permissions: list[str] = []


class RolePermissionsBody(BaseModel):
    permissions: list[str]


class CheckBody(BaseModel):
    permission: str


def _bearer(authorization: str) -> str:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    return authorization.removeprefix("Bearer ")


def verify_token(authorization: str = Header(default="")) -> str | None:
    """Accept the service token or a user token; returns the user id for the latter."""
    token = _bearer(authorization)
    if token == SERVICE_TOKEN:
        return None
    if token not in TOKENS:
        raise HTTPException(status_code=401, detail="Invalid token")
    return TOKENS[token]


def verify_user_token(authorization: str = Header(default="")) -> str:
    token = _bearer(authorization)
    if token not in TOKENS:
        raise HTTPException(status_code=401, detail="Invalid token")
    return TOKENS[token]


def make_response(data: dict | list | None, request: Request) -> JSONResponse:
    request_id = request.headers.get("X-Request-Id", str(uuid.uuid4()))
    return JSONResponse(
        content={"success": True, "data": data},
        headers={"X-Request-Id": request_id},
    )


def _role_by_name(name: str) -> dict | None:
    return next((r for r in ROLES.values() if r["name"] == name), None)


def _effective(user_id: str) -> list[str]:
    user = USERS[user_id]
    role = _role_by_name(user["role"])
    overrides = OVERRIDES.get(user_id, {"custom": [], "denied": []})
    granted = set(role["permissions"] if role else []) | set(overrides["custom"])
    return sorted(granted - set(overrides["denied"]))


# --- Health ---


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "service": "mock-school-api"}


# --- Auth ---


@app.post("/api/auth/login")
async def login(body: LoginBody, request: Request) -> JSONResponse:
    user = next((u for u in USERS.values() if u["email"] == body.email), None)
    if user is None or body.password != PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = secrets.token_hex(16)
    TOKENS[token] = str(user["id"])
    return make_response({"user": user, "token": token}, request)


@app.post("/api/auth/logout")
async def logout(request: Request, authorization: str = Header(default="")) -> JSONResponse:
    TOKENS.pop(_bearer(authorization), None)
    return make_response(None, request)


# --- Roles & permissions ---


@app.get("/api/v1/roles-permissions/roles")
async def list_roles(request: Request, _auth: str | None = Depends(verify_token)) -> JSONResponse:
    return make_response(list(ROLES.values()), request)


@app.get("/api/v1/roles-permissions/permissions")
async def list_permissions(
    request: Request, grouped: bool = False, _auth: str | None = Depends(verify_token)
) -> JSONResponse:
    if grouped:
        by_name = {p["name"]: p for p in PERMISSIONS}
        groups = permission_groups([p["name"] for p in PERMISSIONS])
        return make_response(
            {module: [by_name[n] for n in names] for module, names in groups.items()}, request
        )
    return make_response(PERMISSIONS, request)


@app.get("/api/v1/roles-permissions/user-permissions")
async def user_permissions(
    request: Request, user_id: str = Depends(verify_user_token)
) -> JSONResponse:
    user = USERS[user_id]
    role = _role_by_name(user["role"])
    overrides = OVERRIDES.get(user_id, {"custom": [], "denied": []})
    by_name = {p["name"]: p for p in PERMISSIONS}
    return make_response(
        {
            "user_id": user["id"],
            "roles": [role] if role else [],
            "permissions": [by_name.get(n, {"name": n}) for n in overrides["custom"]],
            "all_permissions": [by_name.get(n, {"name": n}) for n in _effective(user_id)],
            "denied_permissions": overrides["denied"],
        },
        request,
    )


@app.post("/api/v1/roles-permissions/check-permission")
async def check_permission(
    body: CheckBody, request: Request, user_id: str = Depends(verify_user_token)
) -> JSONResponse:
    return make_response(
        {"permission": body.permission, "has_permission": body.permission in _effective(user_id)},
        request,
    )


@app.get("/api/v1/roles-permissions/users/{user_id}/overrides")
async def get_overrides(
    user_id: str, request: Request, _auth: str | None = Depends(verify_token)
) -> JSONResponse:
    if user_id not in USERS:
        raise HTTPException(status_code=404, detail="User not found")
    overrides = OVERRIDES.get(user_id, {"custom": [], "denied": []})
    return make_response(
        {"custom_permissions": overrides["custom"], "denied_permissions": overrides["denied"]},
        request,
    )


@app.put("/api/v1/roles-permissions/users/{user_id}/overrides")
async def save_overrides(
    user_id: str,
    body: OverridesBody,
    request: Request,
    _auth: str | None = Depends(verify_token),
) -> JSONResponse:
    if user_id not in USERS:
        raise HTTPException(status_code=404, detail="User not found")
    denied = sorted(set(body.denied_permissions))
    OVERRIDES[user_id] = {
        "custom": sorted(set(body.custom_permissions) - set(denied)),
        "denied": denied,
    }
    return make_response(OVERRIDES[user_id], request)


@app.put("/api/v1/roles-permissions/roles/{role_id}/permissions")
async def update_role_permissions(
    role_id: int,
    body: RolePermissionsBody,
    request: Request,
    _auth: str | None = Depends(verify_token),
) -> JSONResponse:
    if role_id not in ROLES:
        raise HTTPException(status_code=404, detail="Role not found")
    ROLES[role_id]["permissions"] = list(dict.fromkeys(body.permissions))
    return make_response(ROLES[role_id], request)


@app.delete("/api/v1/roles-permissions/roles/{role_id}")
async def delete_role(
    role_id: int, request: Request, _auth: str | None = Depends(verify_token)
) -> JSONResponse:
    role = ROLES.get(role_id)
    if role is None:
        raise HTTPException(status_code=404, detail="Role not found")
    if any(u["role"] == role["name"] for u in USERS.values()):
        raise HTTPException(status_code=422, detail="Role is assigned to users")
    del ROLES[role_id]
    return make_response(None, request)
