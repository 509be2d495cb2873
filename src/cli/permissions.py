"""CLI commands for inspecting roles and resolving permissions.

Usage:
    school-access roles list [--offline]
    school-access perms check --role teacher [--grant X] [--deny Y] NAME...
    school-access perms modules --role teacher [--grant X] [--deny Y]

--offline resolves against the seeded role defaults instead of the
school backend's catalog.
"""

from __future__ import annotations

import asyncio

import typer

from src.backend_client.client import SchoolAPIClient
from src.config import get_settings
from src.permissions.admin import is_system_role
from src.permissions.catalog import CatalogStore, RolePermissionMapping
from src.permissions.defaults import ROLE_DEFAULT_PERMISSIONS, permission_groups
from src.permissions.engine import effective_permissions
from src.permissions.errors import CatalogUnavailable
from src.permissions.overrides import UserOverride

roles_app = typer.Typer(help="Role catalog commands")
perms_app = typer.Typer(help="Permission resolution commands")


async def _fetch_mapping() -> RolePermissionMapping:
    """Load the role catalog from the school backend."""
    settings = get_settings()
    client = SchoolAPIClient(
        settings.school_api.url,
        service_token=settings.school_api.service_token,
        timeout=settings.school_api.timeout,
    )
    await client.open()
    try:
        catalog = CatalogStore(client)
        await catalog.load_roles()
        return catalog.mapping
    finally:
        await client.close()


def _load_mapping(offline: bool) -> RolePermissionMapping:
    if offline:
        return RolePermissionMapping(ROLE_DEFAULT_PERMISSIONS)
    try:
        return asyncio.run(_fetch_mapping())
    except CatalogUnavailable as exc:
        typer.echo(typer.style(f"❌ Catalog unavailable: {exc.reason}", fg=typer.colors.RED))
        raise typer.Exit(code=1) from exc


def _resolve(
    mapping: RolePermissionMapping, role: str, grant: list[str], deny: list[str]
) -> tuple[frozenset[str], UserOverride]:
    override = UserOverride()
    for name in grant:
        override = override.with_grant(name)
    for name in deny:
        override = override.with_denial(name)
    perms = effective_permissions(mapping.permissions_for_role(role), override.custom, override.denied)
    return perms, override


@roles_app.command("list")
def roles_list(
    offline: bool = typer.Option(False, "--offline", help="Use seeded role defaults"),
) -> None:
    """List roles with their permission counts."""
    mapping = _load_mapping(offline)
    if not len(mapping):
        typer.echo("No roles found.")
        return

    typer.echo(f"{'Role':<20} {'Permissions':>11}  System")
    typer.echo("-" * 40)
    for role in mapping.role_names():
        flag = "yes" if is_system_role(role) else ""
        typer.echo(f"{role:<20} {len(mapping.permissions_for_role(role)):>11}  {flag}")


@perms_app.command("check")
def perms_check(
    names: list[str] = typer.Argument(..., help="Permission names to check"),
    role: str = typer.Option(..., "--role", "-r", help="Role to resolve"),
    grant: list[str] = typer.Option([], "--grant", "-g", help="Extra granted permission"),
    deny: list[str] = typer.Option([], "--deny", "-d", help="Denied permission"),
    offline: bool = typer.Option(False, "--offline", help="Use seeded role defaults"),
) -> None:
    """Resolve permissions for a role plus overrides. Exits 1 if any is missing."""
    mapping = _load_mapping(offline)
    perms, override = _resolve(mapping, role, grant, deny)

    missing = 0
    for name in names:
        source = override.status_of(name)
        if name in perms:
            typer.echo(typer.style(f"✅ {name} ({source})", fg=typer.colors.GREEN))
        else:
            missing += 1
            reason = "denied" if source == "denied" else "not granted"
            typer.echo(typer.style(f"❌ {name} ({reason})", fg=typer.colors.RED))

    if missing:
        typer.echo(f"\n{missing} of {len(names)} permission(s) missing for role '{role}'.")
        raise typer.Exit(code=1)


@perms_app.command("modules")
def perms_modules(
    role: str = typer.Option(..., "--role", "-r", help="Role to resolve"),
    grant: list[str] = typer.Option([], "--grant", "-g", help="Extra granted permission"),
    deny: list[str] = typer.Option([], "--deny", "-d", help="Denied permission"),
    offline: bool = typer.Option(False, "--offline", help="Use seeded role defaults"),
) -> None:
    """Show accessible modules and their effective permissions."""
    mapping = _load_mapping(offline)
    perms, _ = _resolve(mapping, role, grant, deny)
    if not perms:
        typer.echo(f"Role '{role}' has no effective permissions.")
        return

    for module, module_perms in sorted(permission_groups(sorted(perms)).items()):
        typer.echo(typer.style(f"[{module}]", fg=typer.colors.CYAN, bold=True))
        typer.echo("  " + ", ".join(module_perms))
