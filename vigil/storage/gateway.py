"""Persistence gateway: the storage seam the engine talks to.

``PersistenceGateway`` is the protocol the oracle, propagator and
orchestrator depend on.  ``SqliteGateway`` implements it over the named
queries in ``vigil.storage.queries`` and turns rows into domain records.
``sqlite3.Error`` never escapes: it is re-raised as ``UpstreamError``.
"""

from __future__ import annotations

import functools
import json
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Protocol, TypeVar, runtime_checkable

from vigil.config.defaults import STALENESS
from vigil.engine.errors import UpstreamError
from vigil.engine.staleness import StalenessCheck, check_staleness
from vigil.engine.types import (
    Assumption,
    AssumptionScope,
    AssumptionStatus,
    Constraint,
    Decision,
    DependencyEdge,
    EvaluationResult,
    Lifecycle,
    as_utc,
    utc_now,
)
from vigil.storage import queries
from vigil.storage.database import Database

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


@runtime_checkable
class PersistenceGateway(Protocol):
    """Reads and writes the engine needs from durable storage."""

    def get_decision(self, decision_id: str) -> Decision | None: ...

    def get_linked_assumptions(self, decision_id: str) -> list[Assumption]: ...

    def get_universal_assumptions(self, tenant_id: str) -> list[Assumption]: ...

    def get_linked_constraints(self, decision_id: str) -> list[Constraint]: ...

    def get_dependency_targets(self, decision_id: str) -> list[str]: ...

    def get_dependents(self, decision_id: str) -> list[str]: ...

    def get_decisions_for_assumption(self, assumption_id: str) -> list[str]: ...

    def get_decisions_for_constraint(self, constraint_id: str) -> list[str]: ...

    def update_decision_after_evaluation(
        self, decision_id: str, result: EvaluationResult, evaluated_at: datetime
    ) -> bool: ...

    def mark_dirty(
        self, decision_ids: Iterable[str], exclude_lifecycle: Lifecycle = Lifecycle.RETIRED
    ) -> int: ...

    def list_decisions_needing_evaluation(
        self,
        tenant_id: str,
        stale_hours: float = 24,
        limit: int = 100,
        now: datetime | None = None,
    ) -> list[tuple[str, StalenessCheck]]: ...

    def acquire_lease(
        self, decision_id: str, holder: str, now: datetime, ttl_seconds: float
    ) -> bool: ...

    def release_lease(self, decision_id: str, holder: str) -> None: ...


def _wrap_storage_errors(func: F) -> F:
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except sqlite3.Error as e:
            raise UpstreamError(f"{func.__name__} failed: {e}") from e
    return wrapper  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

def decision_from_row(row: dict[str, Any]) -> Decision:
    created = queries.from_db_time(row["created_at"])
    return Decision(
        id=row["id"],
        tenant_id=row["tenant_id"],
        title=row.get("title") or "",
        health=int(row["health"]),
        lifecycle=Lifecycle(row["lifecycle"]),
        needs_evaluation=bool(row["needs_evaluation"]),
        last_evaluated_at=queries.from_db_time(row.get("last_evaluated_at")),
        last_reviewed_at=queries.from_db_time(row.get("last_reviewed_at")) or created,
        expiry_date=queries.from_db_time(row.get("expiry_date")),
        created_at=created,
        invalidated_reason=row.get("invalidated_reason"),
        metadata=json.loads(row["metadata"]) if row.get("metadata") else {},
    )


def assumption_from_row(row: dict[str, Any]) -> Assumption:
    return Assumption(
        id=row["id"],
        tenant_id=row["tenant_id"],
        status=AssumptionStatus(row["status"]),
        scope=AssumptionScope(row["scope"]),
        description=row.get("description") or "",
        validated_at=queries.from_db_time(row.get("validated_at")),
    )


def constraint_from_row(row: dict[str, Any]) -> Constraint:
    return Constraint(
        id=row["id"],
        name=row.get("name") or "",
        rule_expression=row.get("rule_expression") or "",
        is_immutable=bool(row["is_immutable"]),
    )


# ---------------------------------------------------------------------------
# SQLite adapter
# ---------------------------------------------------------------------------

class SqliteGateway:
    """``PersistenceGateway`` over a vigil SQLite database."""

    def __init__(
        self,
        db: Database,
        *,
        expiry_window_days: float = STALENESS["expiry_window_days"],
        expiry_check_hours: float = STALENESS["expiry_check_hours"],
    ):
        self.db = db
        self.expiry_window_days = expiry_window_days
        self.expiry_check_hours = expiry_check_hours

    # -- reads --------------------------------------------------------------

    @_wrap_storage_errors
    def get_decision(self, decision_id: str) -> Decision | None:
        row = queries.get_decision(self.db, decision_id)
        return decision_from_row(row) if row else None

    @_wrap_storage_errors
    def get_linked_assumptions(self, decision_id: str) -> list[Assumption]:
        return [assumption_from_row(r) for r in queries.get_linked_assumptions(self.db, decision_id)]

    @_wrap_storage_errors
    def get_universal_assumptions(self, tenant_id: str) -> list[Assumption]:
        return [assumption_from_row(r) for r in queries.get_universal_assumptions(self.db, tenant_id)]

    @_wrap_storage_errors
    def get_linked_constraints(self, decision_id: str) -> list[Constraint]:
        return [constraint_from_row(r) for r in queries.get_linked_constraints(self.db, decision_id)]

    @_wrap_storage_errors
    def get_dependency_targets(self, decision_id: str) -> list[str]:
        return queries.get_dependency_target_ids(self.db, decision_id)

    @_wrap_storage_errors
    def get_dependents(self, decision_id: str) -> list[str]:
        return queries.get_dependent_ids(self.db, decision_id)

    @_wrap_storage_errors
    def get_dependency_edges(self, decision_id: str) -> list[DependencyEdge]:
        return [
            DependencyEdge(r["source_decision_id"], r["target_decision_id"])
            for r in queries.get_dependency_edges(self.db, decision_id)
        ]

    @_wrap_storage_errors
    def get_decisions_for_assumption(self, assumption_id: str) -> list[str]:
        return queries.get_decision_ids_for_assumption(self.db, assumption_id)

    @_wrap_storage_errors
    def get_decisions_for_constraint(self, constraint_id: str) -> list[str]:
        return queries.get_decision_ids_for_constraint(self.db, constraint_id)

    # -- writes -------------------------------------------------------------

    @_wrap_storage_errors
    def update_decision_after_evaluation(
        self, decision_id: str, result: EvaluationResult, evaluated_at: datetime
    ) -> bool:
        return queries.update_decision_after_evaluation(
            self.db,
            decision_id,
            health=result.new_health,
            lifecycle=result.new_lifecycle.value,
            invalidated_reason=result.invalidated_reason,
            evaluated_at=evaluated_at,
        )

    @_wrap_storage_errors
    def mark_dirty(
        self, decision_ids: Iterable[str], exclude_lifecycle: Lifecycle = Lifecycle.RETIRED
    ) -> int:
        return queries.mark_decisions_dirty(
            self.db, list(decision_ids), exclude_lifecycle=Lifecycle(exclude_lifecycle).value
        )

    # -- sweep --------------------------------------------------------------

    @_wrap_storage_errors
    def list_decisions_needing_evaluation(
        self,
        tenant_id: str,
        stale_hours: float = STALENESS["stale_hours"],
        limit: int = 100,
        now: datetime | None = None,
    ) -> list[tuple[str, StalenessCheck]]:
        """Decisions of ``tenant_id`` the staleness rules say must be rescored.

        SQL narrows the candidates; ``check_staleness`` gives the final
        verdict and reason, so both paths agree on what "stale" means.
        """
        now = as_utc(now) if now is not None else utc_now()
        window = timedelta(days=self.expiry_window_days)
        rows = queries.list_evaluation_candidates(
            self.db,
            tenant_id,
            stale_before=now - timedelta(hours=stale_hours),
            expiry_from=now - window,
            expiry_to=now + window,
            expiry_checked_before=now - timedelta(hours=self.expiry_check_hours),
            limit=limit,
        )
        found = []
        for row in rows:
            decision = decision_from_row(row)
            check = check_staleness(
                decision,
                now,
                stale_hours=stale_hours,
                expiry_window_days=self.expiry_window_days,
                expiry_check_hours=self.expiry_check_hours,
            )
            if check.required:
                found.append((decision.id, check))
        return found

    # -- leases -------------------------------------------------------------

    @_wrap_storage_errors
    def acquire_lease(
        self, decision_id: str, holder: str, now: datetime, ttl_seconds: float
    ) -> bool:
        now = as_utc(now)
        return queries.acquire_lease(
            self.db,
            decision_id,
            holder,
            now=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    @_wrap_storage_errors
    def release_lease(self, decision_id: str, holder: str) -> None:
        if not queries.release_lease(self.db, decision_id, holder):
            logger.debug("Lease on %s was not held by %s", decision_id, holder)
