"""Core domain types for the evaluation engine.

  - ``Lifecycle``, ``AssumptionStatus``, ``AssumptionScope`` enums
  - ``Decision``, ``Assumption``, ``Constraint``, ``DependencyEdge`` records
  - ``EvaluationContext``: everything the scoring engine may look at
  - ``EvaluationResult``: the verdict the scoring engine returns
  - ``EvaluationStep``: one explained phase of a scoring run

Records are frozen dataclasses.  Timestamps are timezone-aware UTC; use
``as_utc()`` at the boundary when a caller may hand in naive datetimes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Lifecycle(str, Enum):
    """Decision state machine value. RETIRED is terminal."""
    STABLE = "STABLE"
    UNDER_REVIEW = "UNDER_REVIEW"
    AT_RISK = "AT_RISK"
    INVALIDATED = "INVALIDATED"
    RETIRED = "RETIRED"

    @property
    def is_terminal(self) -> bool:
        return self is Lifecycle.RETIRED


class AssumptionStatus(str, Enum):
    VALID = "VALID"
    SHAKY = "SHAKY"
    BROKEN = "BROKEN"


class AssumptionScope(str, Enum):
    UNIVERSAL = "UNIVERSAL"
    DECISION_SPECIFIC = "DECISION_SPECIFIC"


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive input is taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Decision:
    """The unit of evaluation."""

    id: str
    tenant_id: str
    created_at: datetime
    last_reviewed_at: datetime
    title: str = ""
    health: int = 100
    lifecycle: Lifecycle = Lifecycle.STABLE
    needs_evaluation: bool = False
    last_evaluated_at: datetime | None = None
    expiry_date: datetime | None = None
    invalidated_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_retired(self) -> bool:
        return self.lifecycle is Lifecycle.RETIRED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "health": self.health,
            "lifecycle": self.lifecycle.value,
            "needs_evaluation": self.needs_evaluation,
            "last_evaluated_at": _iso(self.last_evaluated_at),
            "last_reviewed_at": _iso(self.last_reviewed_at),
            "expiry_date": _iso(self.expiry_date),
            "created_at": _iso(self.created_at),
            "invalidated_reason": self.invalidated_reason,
        }


@dataclass(frozen=True)
class Assumption:
    id: str
    tenant_id: str
    status: AssumptionStatus = AssumptionStatus.VALID
    scope: AssumptionScope = AssumptionScope.DECISION_SPECIFIC
    description: str = ""
    validated_at: datetime | None = None

    @property
    def is_universal(self) -> bool:
        return self.scope is AssumptionScope.UNIVERSAL


@dataclass(frozen=True)
class Constraint:
    """Read-only scoring input; never mutated by the engine."""
    id: str
    rule_expression: str = ""
    name: str = ""
    is_immutable: bool = True


@dataclass(frozen=True)
class DependencyEdge:
    """``source_decision_id`` depends on ``target_decision_id``."""
    source_decision_id: str
    target_decision_id: str


# ---------------------------------------------------------------------------
# Evaluation input / output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EvaluationContext:
    """Everything a scoring run may read, assembled fresh per run.

    ``as_of`` is supplied by the caller; scoring engines must not read a
    clock of their own.
    """

    decision: Decision
    assumptions: tuple[Assumption, ...]
    constraints: tuple[Constraint, ...]
    dependencies: tuple[Decision, ...]
    as_of: datetime


@dataclass(frozen=True)
class EvaluationStep:
    """One explained phase of a scoring run."""
    step: str
    passed: bool
    details: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "passed": self.passed,
            "details": self.details,
            "timestamp": _iso(self.timestamp),
        }


@dataclass(frozen=True)
class EvaluationResult:
    """Verdict from a scoring engine.

    ``changes_detected`` is true iff health or lifecycle differ from the
    decision snapshot the engine was given.
    """

    decision_id: str
    new_health: int
    new_lifecycle: Lifecycle
    changes_detected: bool
    invalidated_reason: str | None = None
    trace: tuple[EvaluationStep, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "new_health": self.new_health,
            "new_lifecycle": self.new_lifecycle.value,
            "changes_detected": self.changes_detected,
            "invalidated_reason": self.invalidated_reason,
            "trace": [s.to_dict() for s in self.trace],
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
