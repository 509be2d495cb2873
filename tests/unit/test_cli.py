"""Unit tests for the CLI tool."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from src.cli.main import _mask_secret, app
from src.config import SchoolAPISettings, Settings
from src.permissions.catalog import RolePermissionMapping
from src.permissions.errors import CatalogUnavailable

runner = CliRunner()


class TestVersion:
    """Test 'version' command."""

    def test_shows_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "School Access Core v" in result.output


class TestConfigCheck:
    """Test 'config check' command."""

    def test_valid_config_passes(self) -> None:
        settings = Settings(school_api=SchoolAPISettings(service_token="svc-token"))
        with patch("src.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["config", "check"])
        assert result.exit_code == 0
        assert "passed" in result.output.lower() or "✅" in result.output

    def test_invalid_config_fails(self) -> None:
        settings = Settings(school_api=SchoolAPISettings(service_token=""))
        with patch("src.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["config", "check"])
        assert result.exit_code == 1
        assert "SCHOOL_API_SERVICE_TOKEN" in result.output


class TestConfigShow:
    """Test 'config show' command."""

    def test_shows_config(self) -> None:
        settings = Settings(school_api=SchoolAPISettings(service_token="svc-very-secret-token"))
        with patch("src.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        # Secret should be masked
        assert "svc-very-secret-token" not in result.output
        assert "SCHOOL_API_SERVICE_TOKEN=svc-ve***" in result.output

    def test_shows_sections(self) -> None:
        settings = Settings()
        with patch("src.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "[school_api]" in result.output
        assert "[permissions]" in result.output
        assert "[server]" in result.output

    def test_single_section(self) -> None:
        with patch("src.cli.main.get_settings", return_value=Settings()):
            result = runner.invoke(app, ["config", "show", "--section", "permissions"])
        assert result.exit_code == 0
        assert "PERMISSIONS_CATALOG_TTL_SECONDS=600" in result.output
        assert "[school_api]" not in result.output

    def test_unknown_section(self) -> None:
        with patch("src.cli.main.get_settings", return_value=Settings()):
            result = runner.invoke(app, ["config", "show", "-s", "database"])
        assert result.exit_code == 1


class TestMaskSecret:
    """Test secret masking utility."""

    def test_mask_long_secret(self) -> None:
        assert _mask_secret("svc-token-12345") == "svc-to***"

    def test_mask_short_secret(self) -> None:
        assert _mask_secret("abc") == "***"


class TestRolesList:
    """Test 'roles list' command."""

    def test_offline_lists_seeded_roles(self) -> None:
        result = runner.invoke(app, ["roles", "list", "--offline"])
        assert result.exit_code == 0
        lines = result.output.splitlines()
        admin = next(line for line in lines if line.startswith("admin "))
        assert admin.endswith("yes")
        assert any(line.startswith("teacher ") for line in lines)

    def test_empty_catalog(self) -> None:
        with patch(
            "src.cli.permissions._fetch_mapping",
            new_callable=AsyncMock,
            return_value=RolePermissionMapping(),
        ):
            result = runner.invoke(app, ["roles", "list"])
        assert result.exit_code == 0
        assert "No roles found." in result.output

    def test_backend_unavailable(self) -> None:
        with patch(
            "src.cli.permissions._fetch_mapping",
            new_callable=AsyncMock,
            side_effect=CatalogUnavailable("roles", "School API 503: down"),
        ):
            result = runner.invoke(app, ["roles", "list"])
        assert result.exit_code == 1
        assert "Catalog unavailable" in result.output


class TestPermsCheck:
    """Test 'perms check' command."""

    def test_role_permissions_granted(self) -> None:
        result = runner.invoke(
            app, ["perms", "check", "--role", "teacher", "--offline", "grades.edit", "students.view"]
        )
        assert result.exit_code == 0
        assert "grades.edit (role)" in result.output

    def test_missing_permission_exits_1(self) -> None:
        result = runner.invoke(
            app, ["perms", "check", "-r", "student", "--offline", "grades.view", "users.delete"]
        )
        assert result.exit_code == 1
        assert "users.delete (not granted)" in result.output
        assert "1 of 2 permission(s) missing for role 'student'" in result.output

    def test_denial_beats_grant(self) -> None:
        result = runner.invoke(
            app,
            [
                "perms", "check", "-r", "teacher", "--offline",
                "-g", "finance.view", "-d", "grades.edit", "-d", "finance.view",
                "finance.view", "grades.edit",
            ],
        )
        assert result.exit_code == 1
        assert "finance.view (denied)" in result.output
        assert "grades.edit (denied)" in result.output

    def test_custom_grant(self) -> None:
        result = runner.invoke(
            app, ["perms", "check", "-r", "student", "--offline", "-g", "reports.view", "reports.view"]
        )
        assert result.exit_code == 0
        assert "reports.view (custom)" in result.output

    def test_unknown_role_has_nothing(self) -> None:
        result = runner.invoke(app, ["perms", "check", "-r", "ghost", "--offline", "grades.view"])
        assert result.exit_code == 1


class TestPermsModules:
    """Test 'perms modules' command."""

    def test_groups_by_module(self) -> None:
        with patch(
            "src.cli.permissions._fetch_mapping",
            new_callable=AsyncMock,
            return_value=RolePermissionMapping({"teacher": ["grades.view", "grades.edit", "backup"]}),
        ):
            result = runner.invoke(app, ["perms", "modules", "--role", "teacher"])
        assert result.exit_code == 0
        assert "[general]" in result.output
        assert "[grades]" in result.output
        assert "grades.edit, grades.view" in result.output

    def test_no_permissions(self) -> None:
        result = runner.invoke(
            app, ["perms", "modules", "--role", "ghost", "--offline"]
        )
        assert result.exit_code == 0
        assert "Role 'ghost' has no effective permissions." in result.output
