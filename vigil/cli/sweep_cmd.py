"""CLI commands: vigil sweep / vigil settle - tenant-wide staleness passes."""

from __future__ import annotations

import json
import logging

import click

logger = logging.getLogger(__name__)


@click.command("sweep")
@click.argument("tenant_id")
@click.option("--once", is_flag=True, help="Run one sweep and exit (cron-friendly)")
@click.option("--interval", type=int, default=None, help="Poll interval in seconds")
@click.option("--limit", type=int, default=None, help="Max decisions per sweep")
@click.option("--json", "as_json", is_flag=True, help="Print the sweep result as JSON")
@click.pass_context
def sweep_cmd(
    ctx: click.Context,
    tenant_id: str,
    once: bool,
    interval: int | None,
    limit: int | None,
    as_json: bool,
) -> None:
    """Rescore every stale or dirty decision of TENANT_ID.

    By default runs as a polling daemon. Use --once for a single pass
    (suitable for cron jobs).
    """
    from vigil.cli.runtime import open_runtime, record_run
    from vigil.engine.sweep import run_daemon, run_sweep

    with open_runtime(ctx) as rt:
        review = rt.config.alerts.enabled
        if not once:
            run_daemon(
                rt.orchestrator,
                rt.gateway,
                tenant_id,
                interval=interval,
                on_cycle=(lambda _: rt.recorder.check_needs_review(tenant_id)) if review else None,
            )
            return

        result = run_sweep(rt.orchestrator, rt.gateway, tenant_id, limit=limit)
        reminders = rt.recorder.check_needs_review(tenant_id) if review else []
        record_run(
            rt.db,
            "sweep",
            tenant_id=tenant_id,
            evaluated=result.batch.evaluated,
            skipped=result.batch.skipped,
            failed=result.batch.failed,
            errors=result.batch.errors,
            rounds=1,
        )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    elif not result.candidates:
        click.echo("No decisions need evaluation")
    else:
        for decision_id in result.candidates:
            click.echo(f"  {decision_id:<20} {result.reasons[decision_id]}")
        click.echo(
            f"\n{result.batch.evaluated} evaluated ({result.batch.changed} changed), "
            f"{result.batch.skipped} skipped, {result.batch.failed} failed"
        )
    if reminders and not as_json:
        click.echo(f"{len(reminders)} review reminder(s) recorded")

    if result.batch.failed:
        raise SystemExit(1)


@click.command("settle")
@click.argument("tenant_id")
@click.option("--max-rounds", type=int, default=None, help="Give up after this many rounds")
@click.option("--json", "as_json", is_flag=True, help="Print the settle report as JSON")
@click.pass_context
def settle_cmd(
    ctx: click.Context, tenant_id: str, max_rounds: int | None, as_json: bool
) -> None:
    """Sweep TENANT_ID repeatedly until no rescore changes a verdict."""
    from vigil.cli.runtime import open_runtime, record_run
    from vigil.engine.sweep import settle

    with open_runtime(ctx) as rt:
        report = settle(rt.orchestrator, rt.gateway, tenant_id, max_rounds=max_rounds)
        record_run(
            rt.db,
            "settle",
            tenant_id=tenant_id,
            evaluated=report.evaluated,
            skipped=sum(r.batch.skipped for r in report.rounds),
            failed=report.failed,
            errors=report.errors,
            rounds=len(report.rounds),
            status="converged" if report.converged else "not_converged",
        )

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        for i, sweep in enumerate(report.rounds, 1):
            click.echo(
                f"  round {i}: {len(sweep.candidates)} candidate(s), "
                f"{sweep.batch.changed} changed, {sweep.batch.failed} failed"
            )
        state = "converged" if report.converged else "did NOT converge"
        click.echo(f"\n{tenant_id} {state} after {len(report.rounds)} round(s)")

    if not report.converged:
        raise SystemExit(1)
