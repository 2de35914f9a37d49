"""Wiring shared by CLI commands: database, gateway, bus, engine."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator

import click

from vigil.config.loader import load_config, resolve_path
from vigil.config.schema import VigilConfig
from vigil.engine.orchestrator import EvaluationOrchestrator
from vigil.engine.propagation import InvalidationPropagator
from vigil.engine.types import utc_now
from vigil.events import EventBus
from vigil.output.alerts import NotificationRecorder
from vigil.storage.database import Database
from vigil.storage.gateway import SqliteGateway
from vigil.storage.migrations import ensure_schema
from vigil.storage.queries import insert_evaluation_run, update_evaluation_run

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: VigilConfig
    db: Database
    gateway: SqliteGateway
    bus: EventBus
    orchestrator: EvaluationOrchestrator
    propagator: InvalidationPropagator
    recorder: NotificationRecorder


def build_runtime(db: Database, config: VigilConfig, *, email: bool = False) -> Runtime:
    """Wire the propagator and notification recorder onto one bus."""
    gateway = SqliteGateway(
        db,
        expiry_window_days=config.staleness.expiry_window_days,
        expiry_check_hours=config.staleness.expiry_check_hours,
    )
    bus = EventBus()
    propagator = InvalidationPropagator(gateway)
    propagator.register(bus)
    recorder = NotificationRecorder(db, config, email=email)
    recorder.register(bus)
    orchestrator = EvaluationOrchestrator(gateway, bus=bus, config=config)
    return Runtime(config, db, gateway, bus, orchestrator, propagator, recorder)


@contextmanager
def open_runtime(ctx: click.Context, *, email: bool = False) -> Generator[Runtime, None, None]:
    config = load_config(ctx.obj.get("config_path"))
    with Database(resolve_path(config.database.path)) as db:
        ensure_schema(db)
        yield build_runtime(db, config, email=email)


def record_run(
    db: Database,
    kind: str,
    *,
    tenant_id: str | None,
    evaluated: int,
    skipped: int,
    failed: int,
    errors: list[str],
    rounds: int = 0,
    status: str | None = None,
) -> str:
    """Persist a finished run to ``evaluation_runs``. Returns the run id."""
    run_id = str(uuid.uuid4())[:8]
    insert_evaluation_run(db, run_id, kind, tenant_id=tenant_id)
    update_evaluation_run(
        db,
        run_id,
        completed_at=utc_now(),
        status=status or ("completed" if not failed else "completed_with_errors"),
        evaluated=evaluated,
        skipped=skipped,
        failed=failed,
        rounds=rounds,
        errors=errors,
    )
    return run_id
