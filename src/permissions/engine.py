"""Permission resolution.

effective = (role permissions ∪ custom grants) − denials

Denial always wins. A custom grant needs no matching role entry. Unknown
roles resolve to no permissions. While the catalog or the user's overrides
are still loading every query answers False (fail-closed), so callers must
check is_loading() before treating False as a real denial.
"""

from __future__ import annotations

from collections.abc import Iterable

from src.permissions.catalog import CatalogStore
from src.permissions.models import AuthenticatedUser, module_of
from src.permissions.overrides import UserOverrideStore


def effective_permissions(
    role_permissions: Iterable[str],
    custom: Iterable[str] = (),
    denied: Iterable[str] = (),
) -> frozenset[str]:
    """Resolve the effective permission set."""
    return (frozenset(role_permissions) | frozenset(custom)) - frozenset(denied)


def has_module_permission(permissions: Iterable[str], module: str) -> bool:
    """True if any permission belongs to `module`."""
    return any(module_of(name) == module for name in permissions)


class ResolutionEngine:
    """Answers permission queries against the current store snapshots. No I/O."""

    def __init__(self, catalog: CatalogStore, overrides: UserOverrideStore) -> None:
        self._catalog = catalog
        self._overrides = overrides

    def is_loading(self, user: AuthenticatedUser | None = None) -> bool:
        """True until the catalog (and the user's overrides, if given) have loaded."""
        if not self._catalog.is_loaded:
            return True
        return user is not None and not self._overrides.is_loaded(user.id)

    def effective_permissions(self, user: AuthenticatedUser | None) -> frozenset[str]:
        if not _usable(user) or self.is_loading(user):
            return frozenset()
        assert user is not None
        override = self._overrides.get_overrides(user.id)
        return effective_permissions(
            self._catalog.permissions_for_role(user.role), override.custom, override.denied
        )

    def has_permission(self, user: AuthenticatedUser | None, name: str) -> bool:
        return name in self.effective_permissions(user)

    def has_any_permission(self, user: AuthenticatedUser | None, names: Iterable[str]) -> bool:
        """True if at least one name is held; False for an empty list."""
        effective = self.effective_permissions(user)
        return any(name in effective for name in names)

    def has_all_permissions(self, user: AuthenticatedUser | None, names: Iterable[str]) -> bool:
        """True if every name is held; vacuously True for an empty list.

        Absent users and loading data still answer False.
        """
        if not _usable(user) or self.is_loading(user):
            return False
        effective = self.effective_permissions(user)
        return all(name in effective for name in names)

    def can_access(
        self, user: AuthenticatedUser | None, module: str, action: str | None = None
    ) -> bool:
        """Module access.

        With an action this is has_permission(module.action); without one the
        user needs at least one permission under the module.
        """
        if action:
            return self.has_permission(user, f"{module}.{action}")
        return has_module_permission(self.effective_permissions(user), module)

    def module_permissions(self, user: AuthenticatedUser | None, module: str) -> list[str]:
        """Sorted effective permission names under `module`."""
        return sorted(name for name in self.effective_permissions(user) if module_of(name) == module)

    def accessible_modules(self, user: AuthenticatedUser | None) -> list[str]:
        return sorted({module_of(name) for name in self.effective_permissions(user)})

    def roles(self, user: AuthenticatedUser | None) -> tuple[str, ...]:
        """Role names of the user, primary first.

        As the backend last reported them with the user's permissions;
        the login role until then.
        """
        if not _usable(user):
            return ()
        assert user is not None
        reported = self._overrides.reported_roles(user.id)
        if reported:
            return reported
        return (user.role,) if user.role else ()


def _usable(user: AuthenticatedUser | None) -> bool:
    return user is not None and user.is_authenticated
