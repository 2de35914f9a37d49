"""Named query functions for database operations."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from vigil.engine.types import as_utc, utc_now
from vigil.storage.database import Database


def to_db_time(value: datetime | None) -> str | None:
    """Serialize a timestamp as fixed-width ISO UTC (sortable as text)."""
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return as_utc(datetime.fromisoformat(value))


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------

def upsert_decision(
    db: Database,
    id: str,
    tenant_id: str,
    *,
    title: str = "",
    health: int = 100,
    lifecycle: str = "STABLE",
    needs_evaluation: bool = False,
    last_evaluated_at: datetime | None = None,
    last_reviewed_at: datetime | None = None,
    expiry_date: datetime | None = None,
    created_at: datetime | None = None,
    invalidated_reason: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Insert or update a decision record.

    New decisions default to STABLE, health 100, not dirty, never evaluated.
    ``last_reviewed_at`` defaults to ``created_at``.
    """
    created = created_at or utc_now()
    reviewed = last_reviewed_at or created
    db.execute(
        """INSERT INTO decisions (
            id, tenant_id, title, health, lifecycle, needs_evaluation,
            last_evaluated_at, last_reviewed_at, expiry_date, created_at,
            invalidated_reason, metadata
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            tenant_id=excluded.tenant_id, title=excluded.title,
            health=excluded.health, lifecycle=excluded.lifecycle,
            needs_evaluation=excluded.needs_evaluation,
            last_evaluated_at=excluded.last_evaluated_at,
            last_reviewed_at=excluded.last_reviewed_at,
            expiry_date=excluded.expiry_date,
            invalidated_reason=excluded.invalidated_reason,
            metadata=excluded.metadata
        """,
        (
            id, tenant_id, title, health, lifecycle, int(needs_evaluation),
            to_db_time(last_evaluated_at), to_db_time(reviewed),
            to_db_time(expiry_date), to_db_time(created),
            invalidated_reason, json.dumps(metadata) if metadata else None,
        ),
    )
    db.conn.commit()


def get_decision(db: Database, decision_id: str) -> dict[str, Any] | None:
    row = db.fetchone("SELECT * FROM decisions WHERE id = ?", (decision_id,))
    return dict(row) if row else None


def list_decisions(db: Database, tenant_id: str | None = None) -> list[dict[str, Any]]:
    """List decisions, optionally for one tenant, ordered by id."""
    if tenant_id is not None:
        rows = db.fetchall(
            "SELECT * FROM decisions WHERE tenant_id = ? ORDER BY id", (tenant_id,)
        )
    else:
        rows = db.fetchall("SELECT * FROM decisions ORDER BY id")
    return [dict(r) for r in rows]


def update_decision_after_evaluation(
    db: Database,
    decision_id: str,
    *,
    health: int,
    lifecycle: str,
    invalidated_reason: str | None,
    evaluated_at: datetime,
) -> bool:
    """Write a scoring verdict and clear the dirty flag in one statement.

    Guarded by ``lifecycle != 'RETIRED'``. Returns False if no row matched.
    """
    with db.transaction() as cur:
        cur.execute(
            """UPDATE decisions
            SET health = ?, lifecycle = ?, invalidated_reason = ?,
                last_evaluated_at = ?, needs_evaluation = 0
            WHERE id = ? AND lifecycle != 'RETIRED'""",
            (health, lifecycle, invalidated_reason, to_db_time(evaluated_at), decision_id),
        )
        return cur.rowcount > 0


def mark_decisions_dirty(
    db: Database,
    decision_ids: list[str],
    exclude_lifecycle: str = "RETIRED",
) -> int:
    """Set ``needs_evaluation`` on every listed decision not in ``exclude_lifecycle``.

    A conditional bulk write, never read-then-write, so concurrent marks
    commute. Returns the number of rows marked.
    """
    ids = sorted(set(decision_ids))
    if not ids:
        return 0
    with db.transaction():
        return db.execute_in(
            "UPDATE decisions SET needs_evaluation = 1 "
            "WHERE id IN ({ids}) AND lifecycle != ?",
            ids,
            (exclude_lifecycle,),
        )


def list_evaluation_candidates(
    db: Database,
    tenant_id: str,
    *,
    stale_before: datetime,
    expiry_from: datetime,
    expiry_to: datetime,
    expiry_checked_before: datetime,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """Pre-filter decisions a staleness sweep should look at.

    Dirty first, then never evaluated, then oldest evaluation first.
    """
    rows = db.fetchall(
        """SELECT * FROM decisions
        WHERE tenant_id = ?
          AND lifecycle != 'RETIRED'
          AND (
            needs_evaluation = 1
            OR last_evaluated_at IS NULL
            OR last_evaluated_at < ?
            OR (expiry_date IS NOT NULL
                AND expiry_date BETWEEN ? AND ?
                AND last_evaluated_at < ?)
          )
        ORDER BY needs_evaluation DESC, last_evaluated_at ASC, id ASC
        LIMIT ?""",
        (
            tenant_id,
            to_db_time(stale_before),
            to_db_time(expiry_from),
            to_db_time(expiry_to),
            to_db_time(expiry_checked_before),
            limit,
        ),
    )
    return [dict(r) for r in rows]


# ---------------------------------------------------------------------------
# Assumptions
# ---------------------------------------------------------------------------

def upsert_assumption(
    db: Database,
    id: str,
    tenant_id: str,
    *,
    status: str = "VALID",
    scope: str = "DECISION_SPECIFIC",
    description: str = "",
    validated_at: datetime | None = None,
) -> None:
    db.execute(
        """INSERT INTO assumptions (id, tenant_id, description, status, scope, validated_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            tenant_id=excluded.tenant_id, description=excluded.description,
            status=excluded.status, scope=excluded.scope,
            validated_at=excluded.validated_at
        """,
        (id, tenant_id, description, status, scope, to_db_time(validated_at)),
    )
    db.conn.commit()


def get_assumption(db: Database, assumption_id: str) -> dict[str, Any] | None:
    row = db.fetchone("SELECT * FROM assumptions WHERE id = ?", (assumption_id,))
    return dict(row) if row else None


def set_assumption_status(
    db: Database,
    assumption_id: str,
    status: str,
    validated_at: datetime | None = None,
) -> bool:
    """Change an assumption's status. Returns True if a row was updated."""
    cursor = db.execute(
        "UPDATE assumptions SET status = ?, validated_at = COALESCE(?, validated_at) WHERE id = ?",
        (status, to_db_time(validated_at), assumption_id),
    )
    db.conn.commit()
    return cursor.rowcount > 0


def link_assumption(db: Database, decision_id: str, assumption_id: str) -> None:
    db.execute(
        "INSERT OR IGNORE INTO decision_assumptions (decision_id, assumption_id) VALUES (?, ?)",
        (decision_id, assumption_id),
    )
    db.conn.commit()


def get_linked_assumptions(db: Database, decision_id: str) -> list[dict[str, Any]]:
    rows = db.fetchall(
        """SELECT a.* FROM assumptions a
        JOIN decision_assumptions da ON da.assumption_id = a.id
        WHERE da.decision_id = ?
        ORDER BY a.id""",
        (decision_id,),
    )
    return [dict(r) for r in rows]


def get_universal_assumptions(db: Database, tenant_id: str) -> list[dict[str, Any]]:
    rows = db.fetchall(
        "SELECT * FROM assumptions WHERE tenant_id = ? AND scope = 'UNIVERSAL' ORDER BY id",
        (tenant_id,),
    )
    return [dict(r) for r in rows]


def get_decision_ids_for_assumption(db: Database, assumption_id: str) -> list[str]:
    rows = db.fetchall(
        "SELECT decision_id FROM decision_assumptions WHERE assumption_id = ? ORDER BY decision_id",
        (assumption_id,),
    )
    return [r["decision_id"] for r in rows]


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------

def upsert_constraint(
    db: Database,
    id: str,
    *,
    name: str = "",
    rule_expression: str = "",
    is_immutable: bool = True,
) -> None:
    db.execute(
        """INSERT INTO constraints (id, name, rule_expression, is_immutable)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name=excluded.name, rule_expression=excluded.rule_expression,
            is_immutable=excluded.is_immutable
        """,
        (id, name, rule_expression, int(is_immutable)),
    )
    db.conn.commit()


def link_constraint(db: Database, decision_id: str, constraint_id: str) -> None:
    db.execute(
        "INSERT OR IGNORE INTO decision_constraints (decision_id, constraint_id) VALUES (?, ?)",
        (decision_id, constraint_id),
    )
    db.conn.commit()


def get_linked_constraints(db: Database, decision_id: str) -> list[dict[str, Any]]:
    rows = db.fetchall(
        """SELECT c.* FROM constraints c
        JOIN decision_constraints dc ON dc.constraint_id = c.id
        WHERE dc.decision_id = ?
        ORDER BY c.id""",
        (decision_id,),
    )
    return [dict(r) for r in rows]


def get_decision_ids_for_constraint(db: Database, constraint_id: str) -> list[str]:
    rows = db.fetchall(
        "SELECT decision_id FROM decision_constraints WHERE constraint_id = ? ORDER BY decision_id",
        (constraint_id,),
    )
    return [r["decision_id"] for r in rows]


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def add_dependency(db: Database, source_decision_id: str, target_decision_id: str) -> None:
    """Record that ``source`` depends on ``target``."""
    db.execute(
        "INSERT OR IGNORE INTO dependencies (source_decision_id, target_decision_id) VALUES (?, ?)",
        (source_decision_id, target_decision_id),
    )
    db.conn.commit()


def remove_dependency(db: Database, source_decision_id: str, target_decision_id: str) -> bool:
    cursor = db.execute(
        "DELETE FROM dependencies WHERE source_decision_id = ? AND target_decision_id = ?",
        (source_decision_id, target_decision_id),
    )
    db.conn.commit()
    return cursor.rowcount > 0


def get_dependency_target_ids(db: Database, decision_id: str) -> list[str]:
    rows = db.fetchall(
        "SELECT target_decision_id FROM dependencies WHERE source_decision_id = ? "
        "ORDER BY target_decision_id",
        (decision_id,),
    )
    return [r["target_decision_id"] for r in rows]


def get_dependency_edges(db: Database, decision_id: str) -> list[dict[str, Any]]:
    """Edges touching ``decision_id`` in either direction."""
    rows = db.fetchall(
        "SELECT source_decision_id, target_decision_id FROM dependencies "
        "WHERE source_decision_id = ? OR target_decision_id = ? "
        "ORDER BY source_decision_id, target_decision_id",
        (decision_id, decision_id),
    )
    return [dict(r) for r in rows]


def get_dependent_ids(db: Database, decision_id: str) -> list[str]:
    """Decisions that directly depend on ``decision_id`` (one hop)."""
    rows = db.fetchall(
        "SELECT source_decision_id FROM dependencies WHERE target_decision_id = ? "
        "ORDER BY source_decision_id",
        (decision_id,),
    )
    return [r["source_decision_id"] for r in rows]


# ---------------------------------------------------------------------------
# Leases
# ---------------------------------------------------------------------------

def acquire_lease(
    db: Database,
    decision_id: str,
    holder: str,
    *,
    now: datetime,
    expires_at: datetime,
) -> bool:
    """Claim ``decision_id`` for ``holder`` unless someone else holds a live claim."""
    with db.transaction() as cur:
        cur.execute(
            """INSERT INTO evaluation_leases (decision_id, holder, expires_at)
            VALUES (?, ?, ?)
            ON CONFLICT(decision_id) DO UPDATE SET
                holder=excluded.holder, expires_at=excluded.expires_at
            WHERE evaluation_leases.expires_at <= ?
               OR evaluation_leases.holder = excluded.holder""",
            (decision_id, holder, to_db_time(expires_at), to_db_time(now)),
        )
        return cur.rowcount > 0


def release_lease(db: Database, decision_id: str, holder: str) -> bool:
    cursor = db.execute(
        "DELETE FROM evaluation_leases WHERE decision_id = ? AND holder = ?",
        (decision_id, holder),
    )
    db.conn.commit()
    return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Evaluation Runs
# ---------------------------------------------------------------------------

def insert_evaluation_run(
    db: Database,
    run_id: str,
    kind: str,
    *,
    tenant_id: str | None = None,
    started_at: datetime | None = None,
) -> str:
    db.execute(
        "INSERT INTO evaluation_runs (run_id, kind, tenant_id, started_at) VALUES (?, ?, ?, ?)",
        (run_id, kind, tenant_id, to_db_time(started_at or utc_now())),
    )
    db.conn.commit()
    return run_id


def update_evaluation_run(db: Database, run_id: str, **kwargs: Any) -> None:
    """Update a run with results. ``errors`` lists are stored as JSON."""
    if "errors" in kwargs and not isinstance(kwargs["errors"], str):
        kwargs["errors"] = json.dumps(kwargs["errors"])
    if isinstance(kwargs.get("completed_at"), datetime):
        kwargs["completed_at"] = to_db_time(kwargs["completed_at"])
    sets = ", ".join(f"{k} = ?" for k in kwargs)
    values = list(kwargs.values()) + [run_id]
    db.execute(f"UPDATE evaluation_runs SET {sets} WHERE run_id = ?", tuple(values))
    db.conn.commit()


def list_evaluation_runs(db: Database, limit: int = 20) -> list[dict[str, Any]]:
    rows = db.fetchall(
        "SELECT * FROM evaluation_runs ORDER BY started_at DESC LIMIT ?",
        (limit,),
    )
    return [dict(r) for r in rows]


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

def insert_notification(
    db: Database,
    decision_id: str,
    type: str,
    severity: str,
    title: str,
    message: str,
    *,
    metadata: dict[str, Any] | None = None,
    created_at: datetime | None = None,
) -> int:
    cursor = db.execute(
        """INSERT INTO notifications
            (decision_id, type, severity, title, message, metadata, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            decision_id, type, severity, title, message,
            json.dumps(metadata) if metadata else None,
            to_db_time(created_at or utc_now()),
        ),
    )
    db.conn.commit()
    return cursor.lastrowid or 0


def mark_notification_emailed(db: Database, notification_id: int) -> None:
    db.execute("UPDATE notifications SET email_sent = 1 WHERE id = ?", (notification_id,))
    db.conn.commit()


def list_notifications(
    db: Database,
    decision_id: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    if decision_id is not None:
        rows = db.fetchall(
            "SELECT * FROM notifications WHERE decision_id = ? ORDER BY id DESC LIMIT ?",
            (decision_id, limit),
        )
    else:
        rows = db.fetchall(
            "SELECT * FROM notifications ORDER BY id DESC LIMIT ?", (limit,)
        )
    return [dict(r) for r in rows]


def has_notification_since(
    db: Database, decision_id: str, type: str, since: datetime | None
) -> bool:
    """True if ``decision_id`` already has a ``type`` notification after ``since``."""
    row = db.fetchone(
        "SELECT 1 FROM notifications WHERE decision_id = ? AND type = ? "
        "AND (? IS NULL OR created_at >= ?) LIMIT 1",
        (decision_id, type, to_db_time(since), to_db_time(since)),
    )
    return row is not None
