"""Staleness detection, scoring, and cascading invalidation.

Public API:
  check_staleness             - Oracle verdict for one decision -> StalenessCheck
  StalenessOracle             - check_staleness bound to config and a gateway
  DeterministicScoringEngine  - Default rule-based ScoringEngine
  Decision, EvaluationResult  - Core records

The orchestrator, propagator and sweep live in their own modules
(``vigil.engine.orchestrator``, ``.propagation``, ``.sweep``).
"""

from vigil.engine.errors import (
    DataIntegrityError,
    DecisionNotFoundError,
    EvaluationConflictError,
    EvaluationTimeoutError,
    UpstreamError,
    VigilError,
)
from vigil.engine.scoring import DeterministicScoringEngine, ScoringEngine
from vigil.engine.staleness import (
    StalenessCheck,
    StalenessOracle,
    StalenessReason,
    check_staleness,
)
from vigil.engine.types import (
    Assumption,
    AssumptionScope,
    AssumptionStatus,
    Constraint,
    Decision,
    DependencyEdge,
    EvaluationContext,
    EvaluationResult,
    EvaluationStep,
    Lifecycle,
)

__all__ = [
    "Assumption",
    "AssumptionScope",
    "AssumptionStatus",
    "Constraint",
    "DataIntegrityError",
    "Decision",
    "DecisionNotFoundError",
    "DependencyEdge",
    "DeterministicScoringEngine",
    "EvaluationConflictError",
    "EvaluationContext",
    "EvaluationResult",
    "EvaluationStep",
    "EvaluationTimeoutError",
    "Lifecycle",
    "ScoringEngine",
    "StalenessCheck",
    "StalenessOracle",
    "StalenessReason",
    "UpstreamError",
    "VigilError",
    "check_staleness",
]
