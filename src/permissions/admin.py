"""Capability checks at the administrative-mutation boundary.

System roles (admin, super-admin, system) are resolved like any other role
but cannot be edited or deleted through the administrative surface.
"""

from __future__ import annotations

from src.permissions.defaults import SYSTEM_ROLES
from src.permissions.errors import SystemRoleProtected


def is_system_role(role_name: str) -> bool:
    return role_name.lower() in SYSTEM_ROLES


def can_edit_role(role_name: str) -> bool:
    return not is_system_role(role_name)


def can_delete_role(role_name: str) -> bool:
    return not is_system_role(role_name)


def ensure_role_mutable(role_name: str, operation: str = "edited") -> None:
    """Raise SystemRoleProtected if `role_name` is a system role."""
    if is_system_role(role_name):
        raise SystemRoleProtected(role_name, operation)
