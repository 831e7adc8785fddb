"""CLI entry point for the theme commit gate.

Commands:
- themegate commit-msg: Run the gate on a commit message file (the git hook)
- themegate init: Write a default .themegate/config.yaml
- themegate install: Install the commit-msg git hook
- themegate version: Show version information
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
import pydantic
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel

from themegate.core.config import (
    DEFAULT_CONFIG_YAML,
    GateSettings,
    default_config_path,
    load_settings,
)
from themegate.core.models import ConfigurationError, HookInstallError
from themegate.core.preflight import PreflightGate, resolve_git_dir
from themegate.core.supervision import SupervisedRun
from themegate.hooks import install_hook

console = Console()


def get_repo_path() -> Path:
    """Get the repository path (current directory; git runs hooks from the top level)."""
    return Path.cwd()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _apply_overrides(
    settings: GateSettings, timeout: float | None, port: int | None
) -> GateSettings:
    """Apply command-line overrides on top of file settings."""
    overrides: dict[str, float | int] = {}
    if timeout is not None:
        overrides["timeout_seconds"] = timeout
    if port is not None:
        overrides["port"] = port
    if not overrides:
        return settings
    try:
        return GateSettings.model_validate({**settings.model_dump(), **overrides})
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid option: {problems}") from e


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """themegate - commit gate for storefront theme repositories.

    Starts the theme dev server for a bounded window, watches it for
    startup errors, then runs the theme check before allowing a commit.
    """
    pass


@main.command("commit-msg")
@click.argument("message_file", required=False)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: .themegate/config.yaml)",
)
@click.option("--timeout", type=float, default=None, help="Monitoring window in seconds")
@click.option("--port", type=int, default=None, help="Dev server port to reap on failure")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def commit_msg(
    message_file: str | None,
    config_path: Path | None,
    timeout: float | None,
    port: int | None,
    verbose: bool,
) -> None:
    """Validate a commit. MESSAGE_FILE is the path git passes to commit-msg hooks.

    Exits 0 to let the commit proceed and 1 to abort it.

    Example:
        themegate commit-msg .git/COMMIT_EDITMSG
    """
    _configure_logging(verbose)

    if not message_file:
        console.print("[red]Error:[/red] No commit message file provided")
        sys.exit(1)

    repo_path = get_repo_path()
    try:
        settings = _apply_overrides(load_settings(repo_path, config_path), timeout, port)
        gate = PreflightGate(
            resolve_git_dir(repo_path),
            skip_flags=settings.skip_flags,
            marker_name=settings.marker_name,
        )
        decision = gate.evaluate(Path(message_file))
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)
    except OSError as e:
        console.print(f"[red]Error writing skip marker:[/red] {escape(str(e))}")
        sys.exit(1)

    console.print(Panel(escape(decision.message.strip()), title="Commit message"))

    if decision.skip:
        console.print(f"[yellow]Found skip flag in commit message ({escape(decision.flag)})[/yellow]")
        console.print("[yellow bold]WARNING: Theme validation will be SKIPPED![/yellow bold]")
        console.print(f"[dim]Skip marker written to {decision.marker_path}[/dim]")
        console.print("[green]Proceeding without theme development check...[/green]")
        sys.exit(0)

    console.print("[green]No skip flag found, running theme validation...[/green]")

    try:
        result = SupervisedRun(settings, console=console).run()
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
        sys.exit(1)

    if result.allowed:
        console.print("[green]Commit proceeding...[/green]")
    sys.exit(result.exit_code)


@main.command()
def init() -> None:
    """Write a default .themegate/config.yaml."""
    config_path = default_config_path(get_repo_path())

    if config_path.exists():
        console.print("[yellow]Project already initialized[/yellow]")
        return

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_YAML, encoding="utf-8")

    console.print(
        Panel(
            "[green]Project initialized![/green]\n\n"
            f"Created: {config_path}\n"
            "Edit dev_command / check_command to match your theme tooling.",
            title="themegate Initialized",
        )
    )


@main.command()
@click.option("--force", is_flag=True, help="Overwrite an existing commit-msg hook")
def install(force: bool) -> None:
    """Install the commit-msg git hook."""
    try:
        hook_path = install_hook(get_repo_path(), force=force)
    except HookInstallError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)
    console.print(f"[green]✓ Installed git commit-msg hook:[/green] {hook_path}")


@main.command()
def version() -> None:
    """Show version information."""
    from themegate import __version__

    console.print(f"themegate v{__version__}")
    console.print("Theme commit gate")


if __name__ == "__main__":
    main()
