"""Config CLI commands: show, validate."""

from __future__ import annotations

import click


@click.group("config")
def config_group() -> None:
    """Manage configuration."""
    pass


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Print the resolved configuration."""
    import json

    from vigil.config.loader import find_config_file, load_config

    source = find_config_file(ctx.obj.get("config_path"))
    config = load_config(ctx.obj.get("config_path"))
    click.echo(f"# source: {source or 'defaults'}", err=True)
    click.echo(json.dumps(config.model_dump(), indent=2, default=str))


@config_group.command("validate")
@click.pass_context
def config_validate(ctx: click.Context) -> None:
    """Validate vigil.yaml against the schema."""
    from vigil.config.loader import load_config

    try:
        config = load_config(ctx.obj.get("config_path"))
    except Exception as e:
        click.echo(f"Config validation failed: {e}", err=True)
        raise SystemExit(1) from None

    click.echo("Config is valid.")
    click.echo(f"  Version: {config.version}")
    click.echo(
        f"  Staleness: stale after {config.staleness.stale_hours:g}h, "
        f"expiry window +/-{config.staleness.expiry_window_days:g}d"
    )
    timeout = config.evaluation.timeout_seconds
    click.echo(
        f"  Evaluation: timeout={'none' if timeout is None else f'{timeout:g}s'}, "
        f"leases={'on' if config.evaluation.use_leases else 'off'}"
    )
    click.echo(f"  Alerts: {'enabled' if config.alerts.enabled else 'disabled'}")
    click.echo(f"  Database: {config.database.path}")
