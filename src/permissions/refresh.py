"""Refresh/invalidation controller.

Keeps the catalog and the per-user overrides from going stale after
administrative changes. invalidate_*() never blocks: it marks the resource
stale and schedules a re-fetch on the running event loop. A failed re-fetch
leaves the previous snapshot in place (FAILED, snapshot kept); only the
very first load fails closed, because until then the stores hold nothing.

Fetch errors are recorded and logged here and never reach query call sites.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

from src.permissions.catalog import PERMISSIONS, ROLES, CatalogStore
from src.permissions.errors import PermissionDataUnavailable
from src.permissions.overrides import UserOverrideStore
from src.permissions.session import SessionManager

logger = logging.getLogger(__name__)

USER_PREFIX = "user:"


class Freshness(str, enum.Enum):
    FRESH = "fresh"
    STALE = "stale"
    LOADING = "loading"
    FAILED = "failed"


@dataclass(frozen=True)
class ResourceStatus:
    freshness: Freshness = Freshness.STALE
    loaded_at: float | None = None
    last_error: str | None = None

    @property
    def has_snapshot(self) -> bool:
        return self.loaded_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "freshness": self.freshness.value,
            "loaded_at": self.loaded_at,
            "last_error": self.last_error,
        }


def user_resource(user_id: str) -> str:
    return f"{USER_PREFIX}{user_id}"


class RefreshController:
    """Coordinates re-fetching of the catalog and user overrides."""

    def __init__(
        self,
        catalog: CatalogStore,
        overrides: UserOverrideStore,
        sessions: SessionManager,
        user_ttl_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._catalog = catalog
        self._overrides = overrides
        self._sessions = sessions
        self._user_ttl = user_ttl_seconds
        self._clock = clock
        self._status: dict[str, ResourceStatus] = {}
        self._inflight: dict[str, int] = {}
        self._forgotten: set[str] = set()
        self._tasks: set[asyncio.Task[bool]] = set()
        sessions.on_user_gone(self.forget_user)

    # --- Status ---

    def status(self, resource: str) -> ResourceStatus:
        return self._status.get(resource, ResourceStatus())

    def user_status(self, user_id: str) -> ResourceStatus:
        return self.status(user_resource(user_id))

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {name: status.to_dict() for name, status in sorted(self._status.items())}

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # --- Invalidation (non-blocking) ---

    def invalidate_roles(self) -> None:
        self._invalidate(ROLES, self._catalog.load_roles)

    def invalidate_permissions(self) -> None:
        self._invalidate(PERMISSIONS, self._catalog.load_permissions)

    def invalidate_user_permissions(self, user_id: str | None = None) -> None:
        """Re-fetch overrides for one user, or for every user with a live session."""
        seen: set[str] = set()
        for session in self._sessions.active():
            uid = session.user.id
            if uid in seen or (user_id is not None and uid != user_id):
                continue
            seen.add(uid)
            token = session.token
            self._invalidate(
                user_resource(uid),
                lambda uid=uid, token=token: self._overrides.refresh(uid, token),
            )

    def forget_user(self, user_id: str) -> None:
        """Drop the status of a user with no live session left."""
        resource = user_resource(user_id)
        self._status.pop(resource, None)
        if self._inflight.get(resource):
            # fetches still running must not record a status on finish
            self._forgotten.add(resource)

    def invalidate_all(self) -> None:
        self.invalidate_roles()
        self.invalidate_permissions()
        self.invalidate_user_permissions()

    def ensure_fresh(self) -> None:
        """Schedule re-fetch of whatever is past its freshness window."""
        if self._catalog.is_stale(ROLES):
            self.invalidate_roles()
        if self._catalog.is_stale(PERMISSIONS):
            self.invalidate_permissions()
        now = self._clock()
        for session in self._sessions.active():
            status = self.user_status(session.user.id)
            if status.freshness is Freshness.LOADING:
                continue
            if status.loaded_at is None or now - status.loaded_at > self._user_ttl:
                self.invalidate_user_permissions(session.user.id)

    # --- Awaitable loads ---

    async def load_catalog(self) -> bool:
        """Load roles and permissions now; False if either failed."""
        results = await asyncio.gather(
            self._run(ROLES, self._catalog.load_roles),
            self._run(PERMISSIONS, self._catalog.load_permissions),
        )
        return all(results)

    async def load_user(self, user_id: str, token: str) -> bool:
        return await self._run(
            user_resource(user_id), lambda: self._overrides.refresh(user_id, token)
        )

    async def wait_idle(self) -> None:
        """Wait for every scheduled fetch to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()

    # --- Internals ---

    def _invalidate(self, resource: str, loader: Callable[[], Awaitable[Any]]) -> None:
        current = self.status(resource)
        if current.freshness is not Freshness.LOADING:
            self._status[resource] = replace(current, freshness=Freshness.STALE)
        self._schedule(resource, loader)

    def _schedule(
        self, resource: str, loader: Callable[[], Awaitable[Any]]
    ) -> asyncio.Task[bool] | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: stays STALE until ensure_fresh() runs inside one
            logger.debug("No running loop, %s marked stale only", resource)
            return None
        task = loop.create_task(self._run(resource, loader))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, resource: str, loader: Callable[[], Awaitable[Any]]) -> bool:
        self._inflight[resource] = self._inflight.get(resource, 0) + 1
        self._forgotten.discard(resource)
        self._status[resource] = replace(self.status(resource), freshness=Freshness.LOADING)
        started = time.perf_counter()
        try:
            await loader()
        except asyncio.CancelledError:
            self._finish(resource, Freshness.STALE)
            raise
        except PermissionDataUnavailable as exc:
            self._finish(resource, Freshness.FAILED, error=exc.reason)
            logger.warning(
                "Refresh of %s failed, keeping previous snapshot: %s",
                resource,
                exc.reason,
                extra={"resource": resource},
            )
            return False
        except Exception as exc:
            self._finish(resource, Freshness.FAILED, error=str(exc))
            logger.exception("Unexpected error refreshing %s", resource, extra={"resource": resource})
            return False

        self._finish(resource, Freshness.FRESH)
        logger.debug(
            "Refreshed %s",
            resource,
            extra={"resource": resource, "duration_ms": int((time.perf_counter() - started) * 1000)},
        )
        return True

    def _finish(self, resource: str, freshness: Freshness, error: str | None = None) -> None:
        remaining = self._inflight[resource] - 1
        if remaining > 0:
            self._inflight[resource] = remaining
        else:
            del self._inflight[resource]
        if resource in self._forgotten:
            if not remaining:
                self._forgotten.discard(resource)
            return
        current = self.status(resource)
        loaded_at = self._clock() if freshness is Freshness.FRESH else current.loaded_at
        if remaining > 0:
            # A newer fetch is still running; record the result but stay LOADING
            freshness = Freshness.LOADING
        self._status[resource] = ResourceStatus(
            freshness=freshness, loaded_at=loaded_at, last_error=error
        )
