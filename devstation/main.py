"""
devstation — CLI entrypoint.

Usage:
    devstation --help
    devstation setup --dry-run
    devstation teardown --force
    devstation status
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from devstation import __version__
from devstation.core.observability.logging_config import (
    ENV_FILE,
    ENV_FILE_LEVEL,
    resolve_level,
    setup_logging,
)


@click.group()
@click.version_option(version=__version__, prog_name="devstation")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Do not mirror the run log to the terminal.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to devstation.yml (default: ~/.config/devstation/devstation.yml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """devstation — set up and tear down a developer workstation."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get(ENV_FILE),
        log_file_level=os.environ.get(ENV_FILE_LEVEL),
    )


@cli.command()
@click.option("--dry-run", is_flag=True, help="Show what would run without changing anything.")
@click.pass_context
def setup(ctx: click.Context, dry_run: bool) -> None:
    """Provision this machine: toolchain, identity, shell, runtimes, apps."""
    from devstation.core.use_cases.setup import run_setup

    result = run_setup(
        config_path=ctx.obj.get("config_path"),
        dry_run=dry_run,
        echo=not ctx.obj.get("quiet", False),
    )

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None  # guaranteed after error check above

    click.echo()
    if dry_run:
        click.secho(f"🔍 Dry run complete: {report.summary}", fg="cyan", bold=True)
    elif report.failed:
        click.secho(f"⚠️  Setup finished with {report.failed} failed step(s): {report.summary}",
                    fg="yellow", bold=True)
    else:
        click.secho(f"✅ Setup complete: {report.summary}", fg="green", bold=True)
    click.echo(f"   Log: {result.log_path}")
    click.echo()


@cli.command()
@click.option("--force", is_flag=True, help="Remove everything without asking.")
@click.pass_context
def teardown(ctx: click.Context, force: bool) -> None:
    """Undo setup: remove apps, runtimes, dotfiles, keys and Homebrew."""
    from devstation.core.use_cases.teardown import run_teardown

    result = run_teardown(
        config_path=ctx.obj.get("config_path"),
        force=force,
        echo=not ctx.obj.get("quiet", False),
    )

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None

    click.echo()
    if report.failed:
        click.secho(f"⚠️  Teardown finished with {report.failed} failed step(s): {report.summary}",
                    fg="yellow", bold=True)
    else:
        click.secho(f"✅ Teardown complete: {report.summary}", fg="green", bold=True)
    click.echo(f"   Log: {result.log_path}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show which setup steps are already satisfied."""
    from devstation.core.use_cases.status import get_status

    result = get_status(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    click.secho(f"\n🖥  Workstation: {result.home}", fg="cyan", bold=True)
    current = None
    for entry in result.steps:
        if entry.stage != current:
            current = entry.stage
            click.echo()
            click.secho(f"   {current}", fg="white", bold=True)
        if entry.satisfied:
            click.secho(f"     ✓ {entry.step}", fg="green")
        elif entry.satisfied is None:
            click.secho(f"     ? {entry.step}  ({entry.detail})", fg="yellow")
        else:
            click.echo(f"     • {entry.step}")

    click.echo()
    click.echo(f"   {result.satisfied_count}/{len(result.steps)} steps satisfied")
    click.echo()


if __name__ == "__main__":
    cli()
