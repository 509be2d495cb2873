"""Exceptions raised by the access core.

Absence of a permission is never an exception: queries answer False.
Only infrastructure failures and forbidden administrative mutations raise.
"""

from __future__ import annotations


class AccessCoreError(Exception):
    """Base class for access core errors."""


class PermissionDataUnavailable(AccessCoreError):
    """Raised when permission data could not be fetched from the school backend."""

    def __init__(self, resource: str, reason: str) -> None:
        self.resource = resource
        self.reason = reason
        super().__init__(f"{resource} unavailable: {reason}")


class CatalogUnavailable(PermissionDataUnavailable):
    """Roles or permissions catalog fetch failed (network, backend or payload error)."""


class UserPermissionsUnavailable(PermissionDataUnavailable):
    """The per-user grants/denials fetch failed."""


class OverridePersistenceFailed(AccessCoreError):
    """A grant/deny was applied locally but could not be saved to the backend.

    The local change is kept; the user stays marked as pending so the
    sync can be retried.
    """

    def __init__(self, user_id: str, reason: str) -> None:
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"Overrides for user {user_id} not saved: {reason}")


class OverridesNotLoaded(AccessCoreError):
    """A grant/deny targeted a user whose stored overrides are not known locally.

    Mutating from an empty snapshot would overwrite the backend's lists on
    the next save, so the overrides must be loaded first.
    """

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"Overrides for user {user_id} are not loaded")


class SystemRoleProtected(AccessCoreError):
    """An administrative mutation targeted a system role."""

    def __init__(self, role_name: str, operation: str) -> None:
        self.role_name = role_name
        self.operation = operation
        super().__init__(f"System role '{role_name}' cannot be {operation}")
