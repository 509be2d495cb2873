"""Unit tests for system role protection."""

from __future__ import annotations

import pytest

from src.permissions.admin import can_delete_role, can_edit_role, ensure_role_mutable, is_system_role
from src.permissions.engine import ResolutionEngine
from src.permissions.errors import SystemRoleProtected
from src.permissions.overrides import UserOverrideStore
from tests.unit.factories import make_user


class TestSystemRoles:
    """Test the administrative capability checks."""

    @pytest.mark.parametrize("role", ["admin", "super-admin", "system", "Admin", "SYSTEM"])
    def test_system_roles_protected(self, role: str) -> None:
        assert is_system_role(role)
        assert not can_edit_role(role)
        assert not can_delete_role(role)

    @pytest.mark.parametrize("role", ["teacher", "student", "administrator", "sys"])
    def test_regular_roles_mutable(self, role: str) -> None:
        assert not is_system_role(role)
        assert can_edit_role(role)
        assert can_delete_role(role)
        ensure_role_mutable(role)

    def test_ensure_raises(self) -> None:
        with pytest.raises(SystemRoleProtected) as exc_info:
            ensure_role_mutable("super-admin", "deleted")
        assert exc_info.value.role_name == "super-admin"
        assert "cannot be deleted" in str(exc_info.value)

    def test_system_role_still_resolves(
        self, engine: ResolutionEngine, overrides: UserOverrideStore
    ) -> None:
        overrides.load("1", [], [])
        assert engine.has_permission(make_user("1", "admin"), "roles.delete")
