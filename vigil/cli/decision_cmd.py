"""Decision CLI commands: check, mark, and decision / assumption management."""

from __future__ import annotations

import json

import click

from vigil.cli.evaluate_cmd import parse_as_of


@click.command("check")
@click.argument("decision_id")
@click.option("--as-of", "as_of", default=None, help="Reference time (ISO-8601, default now)")
@click.pass_context
def check_cmd(ctx: click.Context, decision_id: str, as_of: str | None) -> None:
    """Show whether DECISION_ID needs evaluation, and why."""
    from vigil.cli.runtime import open_runtime

    with open_runtime(ctx) as rt:
        verdict = rt.orchestrator.check(decision_id, as_of=parse_as_of(as_of))

    click.echo(json.dumps(verdict.to_dict(), indent=2))
    if verdict.reason.value == "decision_not_found":
        raise SystemExit(1)


@click.command("mark")
@click.option("--assumption", "assumptions", multiple=True, help="Assumption id that changed")
@click.option("--constraint", "constraints", multiple=True, help="Constraint id that changed")
@click.option("--decision", "decisions", multiple=True,
              help="Decision id that changed (marks its dependents)")
@click.option("--dirty", "dirty", multiple=True, help="Decision id to mark directly")
@click.pass_context
def mark_cmd(
    ctx: click.Context,
    assumptions: tuple[str, ...],
    constraints: tuple[str, ...],
    decisions: tuple[str, ...],
    dirty: tuple[str, ...],
) -> None:
    """Propagate a change: mark affected decisions as needing evaluation."""
    from vigil.cli.runtime import open_runtime
    from vigil.events import AssumptionChanged, ConstraintChanged, DependencyChanged

    if not (assumptions or constraints or decisions or dirty):
        click.echo("Nothing to mark. Pass --assumption, --constraint, --decision or --dirty.")
        raise SystemExit(1)

    with open_runtime(ctx) as rt:
        for assumption_id in assumptions:
            rt.bus.publish(AssumptionChanged(assumption_id))
        for constraint_id in constraints:
            rt.bus.publish(ConstraintChanged(constraint_id))
        for decision_id in decisions:
            rt.bus.publish(DependencyChanged(decision_id))
        if dirty:
            rt.propagator.mark_for_evaluation(dirty, reason="cli")

    total = 0
    for report in rt.propagator.reports:
        total += report.marked
        status = f"error: {report.error}" if report.error else f"{report.marked} marked"
        click.echo(f"  {report.event_kind:<20} {report.source_id:<20} {status}")
    click.echo(f"\n{total} decision(s) marked for evaluation")


# ---------------------------------------------------------------------------
# decision group
# ---------------------------------------------------------------------------

@click.group("decision")
def decision_group() -> None:
    """Manage decisions and their dependencies."""
    pass


@decision_group.command("add")
@click.argument("decision_id")
@click.option("--tenant", "tenant_id", required=True, help="Owning tenant")
@click.option("--title", default="", help="Short description")
@click.option("--expiry", default=None, help="Expiry date (ISO-8601)")
@click.pass_context
def decision_add(
    ctx: click.Context, decision_id: str, tenant_id: str, title: str, expiry: str | None
) -> None:
    """Register a new decision (STABLE, health 100, never evaluated)."""
    from vigil.cli.runtime import open_runtime
    from vigil.storage.queries import get_decision, upsert_decision

    with open_runtime(ctx) as rt:
        if get_decision(rt.db, decision_id):
            click.echo(f"Decision {decision_id} already exists")
            raise SystemExit(1)
        upsert_decision(
            rt.db, decision_id, tenant_id, title=title, expiry_date=parse_as_of(expiry)
        )
    click.echo(f"Added decision {decision_id}")


@decision_group.command("depend")
@click.argument("source_id")
@click.argument("target_id")
@click.pass_context
def decision_depend(ctx: click.Context, source_id: str, target_id: str) -> None:
    """Record that SOURCE_ID depends on TARGET_ID."""
    from vigil.cli.runtime import open_runtime
    from vigil.storage.queries import add_dependency, get_decision

    with open_runtime(ctx) as rt:
        missing = [d for d in (source_id, target_id) if not get_decision(rt.db, d)]
        if missing:
            click.echo(f"Decision {missing[0]} not found")
            raise SystemExit(1)
        add_dependency(rt.db, source_id, target_id)
        rt.propagator.mark_for_evaluation([source_id], reason="dependency_added")
    click.echo(f"{source_id} now depends on {target_id}")


@decision_group.command("show")
@click.argument("decision_id")
@click.pass_context
def decision_show(ctx: click.Context, decision_id: str) -> None:
    """Print a decision with its dependencies and dependents."""
    from vigil.cli.runtime import open_runtime

    with open_runtime(ctx) as rt:
        decision = rt.gateway.get_decision(decision_id)
        if decision is None:
            click.echo(f"Decision {decision_id} not found")
            raise SystemExit(1)
        edges = rt.gateway.get_dependency_edges(decision_id)
        data = decision.to_dict()
        data["depends_on"] = [
            e.target_decision_id for e in edges if e.source_decision_id == decision_id
        ]
        data["dependents"] = [
            e.source_decision_id for e in edges if e.target_decision_id == decision_id
        ]
        data["assumptions"] = [a.id for a in rt.gateway.get_linked_assumptions(decision_id)]
        data["constraints"] = [c.id for c in rt.gateway.get_linked_constraints(decision_id)]
    click.echo(json.dumps(data, indent=2))


# ---------------------------------------------------------------------------
# assumption group
# ---------------------------------------------------------------------------

@click.group("assumption")
def assumption_group() -> None:
    """Manage assumptions."""
    pass


@assumption_group.command("add")
@click.argument("assumption_id")
@click.option("--tenant", "tenant_id", required=True, help="Owning tenant")
@click.option("--description", default="", help="What is being assumed")
@click.option("--universal", is_flag=True, help="Applies to every decision of the tenant")
@click.option("--link", "links", multiple=True, help="Decision id to link to")
@click.pass_context
def assumption_add(
    ctx: click.Context,
    assumption_id: str,
    tenant_id: str,
    description: str,
    universal: bool,
    links: tuple[str, ...],
) -> None:
    """Register an assumption, optionally linking it to decisions."""
    from vigil.cli.runtime import open_runtime
    from vigil.storage.queries import get_decision, link_assumption, upsert_assumption

    with open_runtime(ctx) as rt:
        missing = [d for d in links if not get_decision(rt.db, d)]
        if missing:
            click.echo(f"Decision {missing[0]} not found")
            raise SystemExit(1)
        upsert_assumption(
            rt.db,
            assumption_id,
            tenant_id,
            description=description,
            scope="UNIVERSAL" if universal else "DECISION_SPECIFIC",
        )
        for decision_id in links:
            link_assumption(rt.db, decision_id, assumption_id)
        if links:
            rt.propagator.mark_for_evaluation(links, reason="assumption_linked")
    click.echo(f"Added assumption {assumption_id}")


@assumption_group.command("status")
@click.argument("assumption_id")
@click.argument("status", type=click.Choice(["VALID", "SHAKY", "BROKEN"], case_sensitive=False))
@click.pass_context
def assumption_status(ctx: click.Context, assumption_id: str, status: str) -> None:
    """Set an assumption's STATUS and mark its linked decisions."""
    from vigil.cli.runtime import open_runtime
    from vigil.engine.types import utc_now
    from vigil.events import AssumptionChanged
    from vigil.storage.queries import set_assumption_status

    with open_runtime(ctx) as rt:
        if not set_assumption_status(rt.db, assumption_id, status.upper(), utc_now()):
            click.echo(f"Assumption {assumption_id} not found")
            raise SystemExit(1)
        rt.bus.publish(AssumptionChanged(assumption_id))
        marked = sum(r.marked for r in rt.propagator.reports)
    click.echo(f"{assumption_id} is now {status.upper()}; {marked} decision(s) marked")
