"""CLI command: vigil evaluate - rescore specific decisions."""

from __future__ import annotations

import json
from datetime import datetime

import click


def parse_as_of(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"not an ISO-8601 timestamp: {value}") from None


@click.command("evaluate")
@click.argument("decision_ids", nargs=-1, required=True)
@click.option("--force", is_flag=True, help="Rescore even if the decision is fresh")
@click.option("--as-of", "as_of", default=None, help="Reference time (ISO-8601, default now)")
@click.option("--timeout", type=float, default=None, help="Per-decision budget in seconds")
@click.option("--email", is_flag=True, help="Email any resulting alerts")
@click.option("--json", "as_json", is_flag=True, help="Print the batch result as JSON")
@click.pass_context
def evaluate_cmd(
    ctx: click.Context,
    decision_ids: tuple[str, ...],
    force: bool,
    as_of: str | None,
    timeout: float | None,
    email: bool,
    as_json: bool,
) -> None:
    """Evaluate DECISION_IDS in order, skipping fresh ones unless --force."""
    from vigil.cli.runtime import open_runtime, record_run

    when = parse_as_of(as_of)
    with open_runtime(ctx, email=email) as rt:
        batch = rt.orchestrator.evaluate_batch(
            list(decision_ids), force=force, as_of=when, timeout=timeout
        )
        record_run(
            rt.db,
            "evaluate",
            tenant_id=None,
            evaluated=batch.evaluated,
            skipped=batch.skipped,
            failed=batch.failed,
            errors=batch.errors,
        )

    if as_json:
        click.echo(json.dumps(batch.to_dict(), indent=2))
    else:
        for outcome in batch.outcomes:
            if outcome.evaluated and outcome.result is not None:
                click.echo(
                    f"  {outcome.decision_id:<20} evaluated  "
                    f"health={outcome.result.new_health:<3} "
                    f"{outcome.result.new_lifecycle.value}"
                    f"{'  (changed)' if outcome.changes_detected else ''}"
                )
            elif outcome.status == "skipped":
                click.echo(f"  {outcome.decision_id:<20} skipped    {outcome.reason}")
            else:
                click.echo(
                    f"  {outcome.decision_id:<20} FAILED     "
                    f"[{outcome.error_kind}] {outcome.error}"
                )
        click.echo(
            f"\n{batch.evaluated} evaluated, {batch.skipped} skipped, {batch.failed} failed"
        )

    if batch.failed:
        raise SystemExit(1)
