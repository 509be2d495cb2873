"""School Access Core admin CLI: main entry point.

Usage:
    school-access version
    school-access config check
    school-access config show [--section school_api]
    school-access roles list [--offline]
    school-access perms check --role teacher grades.edit
    school-access perms modules --role teacher
"""

from __future__ import annotations

import typer

from src.cli.permissions import perms_app, roles_app
from src.config import Settings, get_settings

app = typer.Typer(
    name="school-access",
    help="School Access Core administration CLI",
    no_args_is_help=True,
)

config_app = typer.Typer(help="Configuration inspection")
app.add_typer(config_app, name="config")
app.add_typer(roles_app, name="roles")
app.add_typer(perms_app, name="perms")

_VERSION = "0.1.0"

# Tokens issued by the school backend; only the first 6 chars are shown
_SECRET_FIELDS = {"service_token", "password", "token"}


def _mask_secret(value: str, visible_chars: int = 6) -> str:
    """Mask a secret value, keeping first few characters visible."""
    if len(value) <= visible_chars:
        return "***"
    return value[:visible_chars] + "***"


def _collect_config_display(settings: Settings) -> list[tuple[str, str, str]]:
    """(section, ENV_VAR_NAME, display value) for every sub-setting."""
    rows: list[tuple[str, str, str]] = []
    for section, sub_settings in settings:
        prefix = sub_settings.model_config.get("env_prefix", "")
        for key, value in sub_settings:
            display = str(value)
            if key in _SECRET_FIELDS and display:
                display = _mask_secret(display)
            rows.append((section, f"{prefix}{key}".upper(), display))
    return rows


@app.command()
def version() -> None:
    """Show application version."""
    typer.echo(f"School Access Core v{_VERSION}")


@config_app.command("check")
def config_check() -> None:
    """Validate configuration; exits 1 listing every problem found."""
    result = get_settings().validate_required()

    if not result.ok:
        for err in result.errors:
            line = f"❌ {err.field}: {err.message}."
            if err.hint:
                line += f"  Hint: {err.hint}"
            typer.echo(typer.style(line, fg=typer.colors.RED))
        typer.echo(f"\n{len(result.errors)} error(s) found.")
        raise typer.Exit(code=1)

    typer.echo(typer.style("✅ All configuration checks passed", fg=typer.colors.GREEN))


@config_app.command("show")
def config_show(
    section: str | None = typer.Option(None, "--section", "-s", help="Only this section"),
) -> None:
    """Show the effective configuration as environment variables (secrets masked)."""
    rows = _collect_config_display(get_settings())
    if section is not None:
        rows = [row for row in rows if row[0] == section]
        if not rows:
            typer.echo(typer.style(f"❌ Unknown section: {section}", fg=typer.colors.RED))
            raise typer.Exit(code=1)

    shown: set[str] = set()
    for name, env_name, value in rows:
        if name not in shown:
            if shown:
                typer.echo("")
            typer.echo(typer.style(f"[{name}]", fg=typer.colors.CYAN, bold=True))
            shown.add(name)
        typer.echo(f"  {env_name}={value}")


if __name__ == "__main__":
    app()
