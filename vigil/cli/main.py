"""Top-level CLI entry point for Vigil."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from vigil import __version__


@click.group()
@click.version_option(version=__version__, prog_name="vigil")
@click.option(
    "--config",
    type=click.Path(),
    default=None,
    envvar="VIGIL_CONFIG",
    help="Path to vigil.yaml",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Vigil -- staleness detection and cascading invalidation for decisions."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# Register sub-commands
from vigil.cli.config_cmd import config_group  # noqa: E402
from vigil.cli.decision_cmd import (  # noqa: E402
    assumption_group,
    check_cmd,
    decision_group,
    mark_cmd,
)
from vigil.cli.evaluate_cmd import evaluate_cmd  # noqa: E402
from vigil.cli.sweep_cmd import settle_cmd, sweep_cmd  # noqa: E402

cli.add_command(assumption_group, "assumption")
cli.add_command(check_cmd, "check")
cli.add_command(config_group, "config")
cli.add_command(decision_group, "decision")
cli.add_command(evaluate_cmd, "evaluate")
cli.add_command(mark_cmd, "mark")
cli.add_command(settle_cmd, "settle")
cli.add_command(sweep_cmd, "sweep")


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Initialize Vigil: create the database and an example config."""
    from vigil.config.loader import load_config, resolve_path
    from vigil.storage.database import Database
    from vigil.storage.migrations import ensure_schema

    config = load_config(ctx.obj.get("config_path"))

    vigil_dir = Path("~/.vigil").expanduser()
    vigil_dir.mkdir(parents=True, exist_ok=True)

    db_path = resolve_path(config.database.path)
    click.echo(f"  Database: {db_path}")

    with Database(db_path) as db:
        version = ensure_schema(db)
        click.echo(f"  Schema version: {version}")

    # Copy example config if none exists
    user_config = vigil_dir / "config.yaml"
    if not user_config.exists():
        example = Path(__file__).parent.parent.parent / "vigil.yaml.example"
        if example.exists():
            import shutil
            shutil.copy2(example, user_config)
            click.echo(f"  Copied example config to {user_config}")

    click.echo("\nVigil initialized successfully.")
    click.echo("Next steps:")
    click.echo("  1. Run: vigil decision add D1 --tenant acme   (to register decisions)")
    click.echo("  2. Run: vigil sweep acme --once               (to score stale decisions)")
