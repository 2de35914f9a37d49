"""Shared test fixtures for Vigil.

Provides databases, a fixed clock, decision factories, and wired
engine components across all test modules.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from vigil.config.loader import ENV_OVERRIDES
from vigil.engine.orchestrator import EvaluationOrchestrator
from vigil.engine.propagation import InvalidationPropagator
from vigil.engine.types import Decision, Lifecycle
from vigil.events import EventBus
from vigil.storage.database import Database
from vigil.storage.gateway import SqliteGateway
from vigil.storage.migrations import ensure_schema
from vigil.storage.queries import (
    add_dependency,
    link_assumption,
    upsert_assumption,
    upsert_decision,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
"""Fixed reference time used by every clock-dependent test."""

TENANT = "acme"


def make_decision(id: str = "D1", **overrides: Any) -> Decision:
    """Decision record reviewed at NOW, evaluated an hour ago (fresh)."""
    fields: dict[str, Any] = {
        "id": id,
        "tenant_id": TENANT,
        "created_at": NOW - timedelta(days=90),
        "last_reviewed_at": NOW,
        "last_evaluated_at": NOW - timedelta(hours=1),
    }
    fields.update(overrides)
    return Decision(**fields)


# ---------------------------------------------------------------------------
# Core infrastructure
# ---------------------------------------------------------------------------

@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's VIGIL_* variables out of the tests."""
    for var in ("VIGIL_CONFIG", *ENV_OVERRIDES):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def test_db(tmp_path: Path) -> Database:
    """Database with schema applied, using temp file."""
    db = Database(tmp_path / "test.db")
    ensure_schema(db)
    yield db
    db.close()


@pytest.fixture
def memory_db() -> Database:
    """In-memory database for fast unit tests."""
    db = Database(":memory:")
    ensure_schema(db)
    yield db
    db.close()


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def add_decision(memory_db: Database) -> Callable[..., str]:
    """Insert a decision into ``memory_db``.

    Defaults: tenant ``acme``, STABLE, health 100, reviewed at NOW (no decay
    at NOW), evaluated an hour before NOW, not dirty.
    """

    def _add(id: str, **kwargs: Any) -> str:
        lifecycle = kwargs.pop("lifecycle", Lifecycle.STABLE)
        kwargs.setdefault("created_at", NOW - timedelta(days=90))
        kwargs.setdefault("last_reviewed_at", NOW)
        kwargs.setdefault("last_evaluated_at", NOW - timedelta(hours=1))
        upsert_decision(
            memory_db,
            id,
            kwargs.pop("tenant_id", TENANT),
            lifecycle=Lifecycle(lifecycle).value,
            **kwargs,
        )
        return id

    return _add


@pytest.fixture
def add_assumption(memory_db: Database) -> Callable[..., str]:
    """Insert an assumption and link it to ``linked`` decision ids."""

    def _add(id: str, linked: tuple[str, ...] = (), **kwargs: Any) -> str:
        upsert_assumption(memory_db, id, kwargs.pop("tenant_id", TENANT), **kwargs)
        for decision_id in linked:
            link_assumption(memory_db, decision_id, id)
        return id

    return _add


@pytest.fixture
def depend(memory_db: Database) -> Callable[[str, str], None]:
    """``depend(source, target)``: source depends on target."""

    def _depend(source: str, target: str) -> None:
        add_dependency(memory_db, source, target)

    return _depend


# ---------------------------------------------------------------------------
# Wired components
# ---------------------------------------------------------------------------

@pytest.fixture
def gateway(memory_db: Database) -> SqliteGateway:
    return SqliteGateway(memory_db)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def propagator(gateway: SqliteGateway, bus: EventBus) -> InvalidationPropagator:
    p = InvalidationPropagator(gateway)
    p.register(bus)
    return p


@pytest.fixture
def orchestrator(
    gateway: SqliteGateway,
    bus: EventBus,
    propagator: InvalidationPropagator,
    clock: Callable[[], datetime],
) -> EvaluationOrchestrator:
    """Orchestrator whose rescores propagate through ``propagator``."""
    return EvaluationOrchestrator(gateway, bus=bus, clock=clock, holder="test-holder")
