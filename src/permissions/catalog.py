"""Catalog store: the process-wide roles/permissions snapshot.

Pattern: synchronous reads (hot path in every permission query) + async
reload from the school backend. A failed reload keeps the previous
snapshot; before the first successful load the catalog is empty, so
nothing resolves true.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType

from src.backend_client.client import SchoolAPIClient, SchoolAPIError
from src.permissions.errors import CatalogUnavailable
from src.permissions.models import Permission, Role

logger = logging.getLogger(__name__)

ROLES = "roles"
PERMISSIONS = "permissions"


class RolePermissionMapping:
    """Role name → ordered, duplicate-free permission names.

    Lookups are exact and case-sensitive. No role hierarchy: every role
    carries its own explicit list.
    """

    def __init__(self, mapping: Mapping[str, Iterable[str]] | None = None) -> None:
        self._by_role: Mapping[str, tuple[str, ...]] = MappingProxyType(
            {role: tuple(dict.fromkeys(names)) for role, names in (mapping or {}).items()}
        )

    @classmethod
    def from_roles(cls, roles: Iterable[Role]) -> RolePermissionMapping:
        return cls({role.name: role.permissions for role in roles})

    def permissions_for_role(self, role_name: str) -> tuple[str, ...]:
        """Permission names granted by `role_name`; empty for unknown roles."""
        return self._by_role.get(role_name, ())

    def role_names(self) -> list[str]:
        return list(self._by_role)

    def __len__(self) -> int:
        return len(self._by_role)


class CatalogStore:
    """Cached roles and permissions fetched from the school backend."""

    def __init__(
        self,
        client: SchoolAPIClient,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._clock = clock

        self._roles: tuple[Role, ...] = ()
        self._permissions: tuple[Permission, ...] = ()
        self._mapping = RolePermissionMapping()
        self._loaded_at: dict[str, float | None] = {ROLES: None, PERMISSIONS: None}

        # Last-response-wins bookkeeping: a response is applied only if it was
        # issued after the one currently applied.
        self._issued: dict[str, int] = {ROLES: 0, PERMISSIONS: 0}
        self._applied: dict[str, int] = {ROLES: 0, PERMISSIONS: 0}
        self._version = 0

    # --- Snapshot reads (sync) ---

    @property
    def roles(self) -> tuple[Role, ...]:
        return self._roles

    @property
    def permissions(self) -> tuple[Permission, ...]:
        return self._permissions

    @property
    def mapping(self) -> RolePermissionMapping:
        return self._mapping

    @property
    def version(self) -> int:
        """Incremented every time a new snapshot is applied."""
        return self._version

    @property
    def is_loaded(self) -> bool:
        """Both roles and permissions have loaded successfully at least once."""
        return all(ts is not None for ts in self._loaded_at.values())

    def loaded_at(self, resource: str) -> float | None:
        return self._loaded_at[resource]

    def permissions_for_role(self, role_name: str) -> tuple[str, ...]:
        return self._mapping.permissions_for_role(role_name)

    def get_role(self, role_name: str) -> Role | None:
        for role in self._roles:
            if role.name == role_name:
                return role
        return None

    def is_stale(self, resource: str | None = None) -> bool:
        """True if never loaded or older than the freshness window."""
        resources = [resource] if resource else [ROLES, PERMISSIONS]
        now = self._clock()
        for name in resources:
            ts = self._loaded_at[name]
            if ts is None or now - ts > self._ttl:
                return True
        return False

    # --- Loading (async) ---

    async def load_catalog(self) -> tuple[tuple[Role, ...], tuple[Permission, ...]]:
        """Fetch roles and permissions concurrently.

        Raises CatalogUnavailable if either half fails; the half that
        succeeded is still applied.
        """
        results = await asyncio.gather(
            self.load_roles(), self.load_permissions(), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return self._roles, self._permissions

    async def load_roles(self) -> tuple[Role, ...]:
        """Fetch the role list (with embedded permission names)."""
        generation = self._issue(ROLES)
        try:
            roles = await self._client.get_roles()
        except SchoolAPIError as exc:
            logger.warning("Roles fetch failed: %s", exc, extra={"resource": ROLES})
            raise CatalogUnavailable(ROLES, str(exc)) from exc

        if self._accept(ROLES, generation):
            self._roles = tuple(_unique_by_name(roles, ROLES))
            self._mapping = RolePermissionMapping.from_roles(self._roles)
            logger.info("Roles catalog refreshed: %d roles", len(self._roles))
        return self._roles

    async def load_permissions(self) -> tuple[Permission, ...]:
        """Fetch the permission list."""
        generation = self._issue(PERMISSIONS)
        try:
            permissions = await self._client.get_permissions()
        except SchoolAPIError as exc:
            logger.warning("Permissions fetch failed: %s", exc, extra={"resource": PERMISSIONS})
            raise CatalogUnavailable(PERMISSIONS, str(exc)) from exc

        if self._accept(PERMISSIONS, generation):
            self._permissions = tuple(_unique_by_name(permissions, PERMISSIONS))
            logger.info("Permissions catalog refreshed: %d permissions", len(self._permissions))
        return self._permissions

    def _issue(self, resource: str) -> int:
        self._issued[resource] += 1
        return self._issued[resource]

    def _accept(self, resource: str, generation: int) -> bool:
        if generation <= self._applied[resource]:
            logger.debug(
                "Discarding superseded %s response (generation %d <= %d)",
                resource,
                generation,
                self._applied[resource],
            )
            return False
        self._applied[resource] = generation
        self._loaded_at[resource] = self._clock()
        self._version += 1
        return True


def _unique_by_name(items: Iterable[Role] | Iterable[Permission], resource: str) -> list:
    seen: dict[str, Role | Permission] = {}
    for item in items:
        if item.name in seen:
            logger.warning("Duplicate %s entry ignored: %s", resource, item.name)
            continue
        seen[item.name] = item
    return list(seen.values())
