"""Per-user permission overrides: explicit grants and explicit denials.

Every mutation replaces the user's snapshot (copy-on-write), so a query
never observes a half-applied change. A name is never both granted and
denied: grant() drops it from the denials, deny() drops it from the grants.

Mutations are local and synchronous and need the user's stored overrides
loaded first (ensure_loaded), so a save never starts from an empty
snapshot. persist() pushes them to the backend; on failure the local state
is kept and OverridePersistenceFailed tells the caller, who may retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from src.backend_client.client import SchoolAPIClient, SchoolAPIError
from src.permissions.errors import (
    OverridePersistenceFailed,
    OverridesNotLoaded,
    UserPermissionsUnavailable,
)
from src.permissions.models import UserPermissions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserOverride:
    """Immutable snapshot of one user's grants and denials."""

    custom: frozenset[str] = field(default_factory=frozenset)
    denied: frozenset[str] = field(default_factory=frozenset)

    def with_grant(self, name: str) -> UserOverride:
        return UserOverride(custom=self.custom | {name}, denied=self.denied - {name})

    def with_denial(self, name: str) -> UserOverride:
        return UserOverride(custom=self.custom - {name}, denied=self.denied | {name})

    def without(self, name: str) -> UserOverride:
        return UserOverride(custom=self.custom - {name}, denied=self.denied - {name})

    def status_of(self, name: str) -> str:
        """Override status of `name`: denied, custom, or role (no override)."""
        if name in self.denied:
            return "denied"
        if name in self.custom:
            return "custom"
        return "role"

    def to_dict(self) -> dict[str, Any]:
        return {"custom": sorted(self.custom), "denied": sorted(self.denied)}


EMPTY_OVERRIDE = UserOverride()


class UserOverrideStore:
    """Holds overrides keyed by user id.

    Every remote fetch takes a number from one store-wide counter that is
    never reset. A response is installed only if its number is above the
    user's floor, which is raised by each install, by local mutations and
    by discard() while fetches are still in flight.
    """

    def __init__(self, client: SchoolAPIClient) -> None:
        self._client = client
        self._overrides: dict[str, UserOverride] = {}
        self._loaded: set[str] = set()
        self._pending: set[str] = set()
        self._roles: dict[str, tuple[str, ...]] = {}
        self._generation = 0
        self._applied: dict[str, int] = {}
        self._inflight: dict[str, int] = {}
        self._versions: dict[str, int] = {}

    # --- Reads ---

    def get_overrides(self, user_id: str) -> UserOverride:
        return self._overrides.get(user_id, EMPTY_OVERRIDE)

    def is_loaded(self, user_id: str) -> bool:
        """True once the user's stored overrides are known locally."""
        return user_id in self._loaded

    def has_pending(self, user_id: str) -> bool:
        """True if local changes have not been saved to the backend yet."""
        return user_id in self._pending

    def reported_roles(self, user_id: str) -> tuple[str, ...]:
        """Role names the backend reported for the user, primary role first."""
        return self._roles.get(user_id, ())

    def version(self, user_id: str) -> int:
        return self._versions.get(user_id, 0)

    # --- Local mutations ---

    def grant(self, user_id: str, name: str) -> UserOverride:
        """Grant `name` to the user regardless of role; removes a denial."""
        return self._replace(user_id, self.get_overrides(user_id).with_grant(name))

    def deny(self, user_id: str, name: str) -> UserOverride:
        """Deny `name` to the user regardless of role or grant; removes a grant."""
        return self._replace(user_id, self.get_overrides(user_id).with_denial(name))

    def clear_override(self, user_id: str, name: str) -> UserOverride:
        """Drop any override for `name`; the role default applies again."""
        return self._replace(user_id, self.get_overrides(user_id).without(name))

    def _replace(self, user_id: str, override: UserOverride) -> UserOverride:
        if user_id not in self._loaded:
            raise OverridesNotLoaded(user_id)
        if override == self.get_overrides(user_id):
            return override
        self._overrides[user_id] = override
        self._pending.add(user_id)
        # Responses requested before this change describe the old state.
        self._applied[user_id] = self._generation
        self._bump(user_id)
        return override

    # --- Remote sync ---

    def load(self, user_id: str, custom: list[str], denied: list[str]) -> bool:
        """Install a snapshot fetched from the backend.

        Skipped while the user has unsaved local changes. A name present in
        both lists counts as denied. Returns True if applied.
        """
        return self._install(user_id, custom, denied, self._next_generation())

    async def refresh(self, user_id: str, token: str) -> UserPermissions:
        """Fetch GET /user-permissions for the user and load it.

        Last issued response wins: a response requested before the currently
        applied one, or before the user was discarded, is dropped.
        """
        generation = self._begin_fetch(user_id)
        try:
            payload = await self._client.get_user_permissions(token)
            if self._install(user_id, payload.custom_names, payload.denied_permissions, generation):
                self._roles[user_id] = tuple(payload.role_names)
        except SchoolAPIError as exc:
            logger.warning(
                "User permissions fetch failed: %s", exc, extra={"user_id": user_id}
            )
            raise UserPermissionsUnavailable("user permissions", str(exc)) from exc
        finally:
            self._end_fetch(user_id)
        return payload

    async def ensure_loaded(self, user_id: str, token: str | None = None) -> UserOverride:
        """Make the user's stored overrides known locally before a mutation.

        Users already loaded are returned as they are. Others are fetched
        from GET /users/{id}/overrides; UserPermissionsUnavailable is raised
        if that fails, with nothing changed.
        """
        if user_id in self._loaded:
            return self.get_overrides(user_id)

        generation = self._begin_fetch(user_id)
        try:
            custom, denied = await self._client.get_user_overrides(user_id, token=token)
            self._install(user_id, custom, denied, generation)
        except SchoolAPIError as exc:
            logger.warning(
                "Stored overrides fetch failed: %s", exc, extra={"target_user_id": user_id}
            )
            raise UserPermissionsUnavailable("user overrides", str(exc)) from exc
        finally:
            self._end_fetch(user_id)

        if user_id not in self._loaded:
            # discard() ran while the request was in flight
            raise UserPermissionsUnavailable("user overrides", "discarded while loading")
        return self.get_overrides(user_id)

    async def persist(self, user_id: str, token: str | None = None) -> UserOverride:
        """Save the user's current overrides to the backend.

        Raises OverridePersistenceFailed on failure; local state is kept
        and the user stays pending.
        """
        override = self.get_overrides(user_id)
        try:
            await self._client.save_user_overrides(
                user_id, sorted(override.custom), sorted(override.denied), token=token
            )
        except SchoolAPIError as exc:
            logger.error(
                "Override sync failed, local changes kept: %s",
                exc,
                extra={"target_user_id": user_id},
            )
            raise OverridePersistenceFailed(user_id, str(exc)) from exc

        # A mutation made while the request was in flight is still unsaved.
        if self.get_overrides(user_id) == override:
            self._pending.discard(user_id)
        logger.info("Overrides saved", extra={"target_user_id": user_id})
        return override

    def discard(self, user_id: str) -> None:
        """Forget everything about the user (logout, or admin work finished)."""
        self._overrides.pop(user_id, None)
        self._loaded.discard(user_id)
        self._pending.discard(user_id)
        self._roles.pop(user_id, None)
        self._versions.pop(user_id, None)
        if self._inflight.get(user_id):
            # fetches still in flight were requested before the discard
            self._applied[user_id] = self._generation
        else:
            self._applied.pop(user_id, None)

    def _install(self, user_id: str, custom: list[str], denied: list[str], generation: int) -> bool:
        if generation <= self._applied.get(user_id, 0):
            logger.debug("Dropping superseded overrides snapshot", extra={"user_id": user_id})
            return False
        if user_id in self._pending:
            logger.info(
                "Keeping unsaved local overrides, remote snapshot ignored",
                extra={"user_id": user_id},
            )
            return False
        self._applied[user_id] = generation
        denied_set = frozenset(denied)
        self._overrides[user_id] = UserOverride(
            custom=frozenset(custom) - denied_set, denied=denied_set
        )
        self._loaded.add(user_id)
        self._bump(user_id)
        return True

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _begin_fetch(self, user_id: str) -> int:
        self._inflight[user_id] = self._inflight.get(user_id, 0) + 1
        return self._next_generation()

    def _end_fetch(self, user_id: str) -> None:
        remaining = self._inflight.get(user_id, 0) - 1
        if remaining > 0:
            self._inflight[user_id] = remaining
            return
        self._inflight.pop(user_id, None)
        # a floor left by discard() is only needed while fetches are in flight
        if user_id not in self._loaded:
            self._applied.pop(user_id, None)

    def _bump(self, user_id: str) -> None:
        self._versions[user_id] = self._versions.get(user_id, 0) + 1
