"""School backend HTTP client with circuit breaker and retry.

Integrates with the school REST API for the roles/permissions catalog,
the authenticated user's grants and denials, and role administration.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any

import aiohttp
from aiobreaker import CircuitBreaker, CircuitBreakerError
from pydantic import ValidationError

from src.permissions.models import Permission, Role, UserPermissions

logger = logging.getLogger(__name__)

ROLES_PERMISSIONS_PREFIX = "/v1/roles-permissions"

# Retry config
_MAX_RETRIES = 2
_RETRY_DELAYS = [1.0, 2.0]  # exponential backoff
_RETRYABLE_STATUSES = {429, 503}

# Circuit breaker
_school_breaker = CircuitBreaker(fail_max=5, timeout_duration=timedelta(seconds=30))


class SchoolAPIError(Exception):
    """Raised when a school backend call fails."""

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"School API {status}: {message}")


class SchoolAPIClient:
    """HTTP client for the school backend.

    Features:
      - Circuit breaker (aiobreaker: fail_max=5, reset after 30s)
      - Retry with exponential backoff (1s, 2s) for 429/503
      - Request timeout: 5 seconds
      - X-Request-Id header for distributed tracing
      - Per-call bearer token (user token for user-scoped endpoints,
        service token otherwise)
    """

    def __init__(self, base_url: str, service_token: str = "", timeout: int = 5) -> None:
        self._base_url = base_url.rstrip("/")
        self._service_token = service_token
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    async def open(self) -> None:
        """Open the HTTP session."""
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "X-Requested-With": "XMLHttpRequest",
            },
        )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    # --- Catalog ---

    async def get_roles(self, token: str | None = None) -> list[Role]:
        """All roles with their permission names.

        Maps to: GET /v1/roles-permissions/roles
        """
        data = await self._get(f"{ROLES_PERMISSIONS_PREFIX}/roles", token=token)
        return _parse_list(Role, data or [])

    async def get_permissions(self, token: str | None = None) -> list[Permission]:
        """All permissions.

        Maps to: GET /v1/roles-permissions/permissions
        The backend may group the list by module ({module: [...]}); it is flattened here.
        """
        data = await self._get(f"{ROLES_PERMISSIONS_PREFIX}/permissions", token=token)
        if isinstance(data, dict):
            data = [item for group in data.values() for item in group]
        return _parse_list(Permission, data or [])

    async def get_user_permissions(self, token: str) -> UserPermissions:
        """Roles, direct grants and denials of the user owning `token`.

        Maps to: GET /v1/roles-permissions/user-permissions
        """
        data = await self._get(f"{ROLES_PERMISSIONS_PREFIX}/user-permissions", token=token)
        try:
            return UserPermissions.model_validate(data or {})
        except ValidationError as exc:
            raise SchoolAPIError(502, f"Malformed user-permissions payload: {exc}") from exc

    async def check_permission(self, permission: str, token: str) -> bool:
        """Server-side cross-check of a single permission.

        Maps to: POST /v1/roles-permissions/check-permission
        """
        data = await self._request(
            "POST",
            f"{ROLES_PERMISSIONS_PREFIX}/check-permission",
            json_data={"permission": permission},
            token=token,
        )
        if isinstance(data, dict):
            return bool(data.get("has_permission", False))
        return False

    async def check_permissions(self, permissions: list[str], token: str) -> dict[str, bool]:
        """Cross-check several permissions concurrently; raises on the first failure."""
        results = await asyncio.gather(*(self.check_permission(p, token) for p in permissions))
        return dict(zip(permissions, results))

    # --- Administration ---

    async def get_user_overrides(
        self, user_id: str, token: str | None = None
    ) -> tuple[list[str], list[str]]:
        """Stored (custom, denied) permission names of any user.

        Maps to: GET /v1/roles-permissions/users/{id}/overrides
        """
        data = await self._get(f"{ROLES_PERMISSIONS_PREFIX}/users/{user_id}/overrides", token=token)
        if not isinstance(data, dict):
            raise SchoolAPIError(502, "Malformed user overrides payload")
        custom = data.get("custom_permissions") or []
        denied = data.get("denied_permissions") or []
        if not isinstance(custom, list) or not isinstance(denied, list):
            raise SchoolAPIError(502, "Malformed user overrides payload")
        return [str(name) for name in custom], [str(name) for name in denied]

    async def save_user_overrides(
        self, user_id: str, custom: list[str], denied: list[str], token: str | None = None
    ) -> None:
        """Persist a user's grants and denials.

        Maps to: PUT /v1/roles-permissions/users/{id}/overrides
        """
        await self._request(
            "PUT",
            f"{ROLES_PERMISSIONS_PREFIX}/users/{user_id}/overrides",
            json_data={"custom_permissions": custom, "denied_permissions": denied},
            token=token,
        )

    async def update_role_permissions(
        self, role_id: int | str, permissions: list[str], token: str | None = None
    ) -> None:
        """Replace a role's permission list.

        Maps to: PUT /v1/roles-permissions/roles/{id}/permissions
        """
        await self._request(
            "PUT",
            f"{ROLES_PERMISSIONS_PREFIX}/roles/{role_id}/permissions",
            json_data={"permissions": permissions},
            token=token,
        )

    async def delete_role(self, role_id: int | str, token: str | None = None) -> None:
        """Maps to: DELETE /v1/roles-permissions/roles/{id}"""
        await self._request("DELETE", f"{ROLES_PERMISSIONS_PREFIX}/roles/{role_id}", token=token)

    # --- Authentication collaborator ---

    async def login(self, email: str, password: str) -> dict[str, Any]:
        """Exchange credentials for {user, token}.

        Maps to: POST /auth/login
        """
        data = await self._request(
            "POST", "/auth/login", json_data={"email": email, "password": password}
        )
        if not isinstance(data, dict) or "token" not in data or "user" not in data:
            raise SchoolAPIError(502, "Malformed login response")
        return data

    async def logout(self, token: str) -> None:
        """Maps to: POST /auth/logout"""
        await self._request("POST", "/auth/logout", token=token)

    # --- HTTP helpers ---

    async def _get(
        self, path: str, params: dict[str, Any] | None = None, token: str | None = None
    ) -> Any:
        """Make a GET request with circuit breaker and retry."""
        return await self._request("GET", path, params=params, token=token)

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> Any:
        """Make an HTTP request with circuit breaker, retry, and error handling."""
        if self._session is None:
            raise RuntimeError("SchoolAPIClient not opened, call open() first")

        url = f"{self._base_url}{path}"
        request_id = str(uuid.uuid4())

        try:
            body = await _school_breaker.call_async(
                self._request_with_retry,
                method,
                url,
                request_id,
                params=params,
                json_data=json_data,
                token=token or self._service_token,
            )
        except CircuitBreakerError:
            logger.error("Circuit breaker OPEN for school API")
            raise SchoolAPIError(503, "School backend temporarily unavailable") from None

        return self._unwrap(body)

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        request_id: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        token: str = "",
    ) -> Any:
        """Execute request with retry for 429/503."""
        last_exc: Exception | None = None

        for attempt in range(_MAX_RETRIES + 1):
            try:
                return await self._do_request(
                    method, url, request_id, params=params, json_data=json_data, token=token
                )
            except SchoolAPIError as exc:
                last_exc = exc
                if exc.status not in _RETRYABLE_STATUSES:
                    raise
                if attempt < _MAX_RETRIES:
                    delay = _RETRY_DELAYS[attempt]
                    logger.warning(
                        "School API %d, retry %d/%d in %.1fs: %s",
                        exc.status,
                        attempt + 1,
                        _MAX_RETRIES,
                        delay,
                        url,
                    )
                    await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    async def _do_request(
        self,
        method: str,
        url: str,
        request_id: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        token: str = "",
    ) -> Any:
        """Execute a single HTTP request."""
        assert self._session is not None

        headers = {"X-Request-Id": request_id}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            async with self._session.request(
                method, url, params=params, json=json_data, headers=headers
            ) as resp:
                if resp.status == 401:
                    logger.warning("School API rejected credentials for %s %s", method, url)

                if resp.status >= 400:
                    body = await resp.text()
                    raise SchoolAPIError(resp.status, body[:200])

                if resp.status == 204:
                    return None
                return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SchoolAPIError(503, f"Connection error: {exc}") from exc

    @staticmethod
    def _unwrap(body: Any) -> Any:
        """Strip the backend's {"success", "data"} envelope."""
        if not isinstance(body, dict) or "success" not in body:
            return body
        if not body["success"]:
            raise SchoolAPIError(400, str(body.get("message") or body.get("error") or "Request failed"))
        return body.get("data")


def _parse_list(model: Any, items: Any) -> list[Any]:
    if not isinstance(items, list):
        raise SchoolAPIError(502, f"Expected a list of {model.__name__} records")
    try:
        return [model.model_validate(item) for item in items]
    except ValidationError as exc:
        raise SchoolAPIError(502, f"Malformed {model.__name__} record: {exc}") from exc
