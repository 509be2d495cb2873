"""Data model for roles, permissions and the authenticated user.

Wire records (Permission, Role, UserPermissions) are pydantic models so a
malformed backend payload fails validation instead of leaking half-parsed
data into the engine. Internal snapshots are frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field, field_validator

GENERAL_MODULE = "general"
DEFAULT_ACTION = "access"


def split_permission(name: str) -> tuple[str, str]:
    """Split `module.action` at the first dot.

    A bare word belongs to the `general` module and is its own action:
    "backup" → ("general", "backup"). "grades." → ("grades", "access").
    """
    if "." in name:
        module, action = name.split(".", 1)
        return module, action or DEFAULT_ACTION
    return GENERAL_MODULE, name or DEFAULT_ACTION


def module_of(name: str) -> str:
    """Module prefix of a permission name (text before the first dot)."""
    return split_permission(name)[0]


class Permission(BaseModel):
    id: int | str = 0
    name: str = Field(min_length=1)
    guard_name: str = "api"
    description: str | None = None

    @property
    def module(self) -> str:
        return split_permission(self.name)[0]

    @property
    def action(self) -> str:
        return split_permission(self.name)[1]


class Role(BaseModel):
    id: int | str = 0
    name: str = Field(min_length=1)
    guard_name: str = "api"
    description: str | None = None
    permissions: list[str] = Field(default_factory=list)

    @field_validator("permissions", mode="before")
    @classmethod
    def _permission_names(cls, value: Any) -> Any:
        """Accept either bare names or embedded permission records."""
        if value is None:
            return []
        if isinstance(value, list):
            return [item.get("name") if isinstance(item, dict) else item for item in value]
        return value


class UserPermissions(BaseModel):
    """Payload of GET /user-permissions for the authenticated user."""

    user_id: int | str | None = None
    roles: list[Role] = Field(default_factory=list)
    permissions: list[Permission] = Field(default_factory=list)
    denied_permissions: list[str] = Field(default_factory=list)

    @property
    def role_names(self) -> list[str]:
        """Role names as the backend ordered them; the first is the primary role."""
        return [r.name for r in self.roles]

    @property
    def custom_names(self) -> list[str]:
        return [p.name for p in self.permissions]


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity handed over by the authentication collaborator. Read-only."""

    id: str
    role: str
    is_authenticated: bool = True
    name: str = ""
    email: str = ""

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> AuthenticatedUser:
        """Build from the backend's login/me user record."""
        role = data.get("role") or ""
        if not role and data.get("roles"):
            first = data["roles"][0]
            role = first.get("name", "") if isinstance(first, dict) else str(first)
        return cls(
            id=str(data["id"]),
            role=role,
            name=data.get("name", ""),
            email=data.get("email", ""),
        )
